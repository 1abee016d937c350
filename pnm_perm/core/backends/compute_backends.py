"""
計算後端基類與工廠
提供統一的計算接口，呼叫端不需區分 GPU/CPU

核心特性：
- 統一後端介面 (導率、線性求解、D3Q19格子)
- 啟動時能力探測 (probe)，失敗即降級
- run(workload) 執行期故障轉移到 CPU 後端
- 模組層級加速器所有權鎖，同一時間只有一個模擬器持有 GPU
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, TypeVar

import numpy as np

from ...config import config
from ...config.config_manager import SimulationSettings
from ...error_handling import DeviceUnavailableError, PermeabilityError, SimulationErrorHandler
from ...utils.logger import SimulationLogger

backend_logger = SimulationLogger("compute_backends")

# GPU 執行環境為行程層級資源
ACCELERATOR_LOCK = threading.Lock()

T = TypeVar("T")


def hagen_poiseuille_conductance(radius_um: np.ndarray, length_um: np.ndarray,
                                 viscosity: float) -> np.ndarray:
    """喉道導率 g = πr⁴/(8μL) (SI)，長度下限 MIN_THROAT_LENGTH_UM"""
    r = np.asarray(radius_um, dtype=np.float64) * config.MICRON_TO_M
    length = np.maximum(np.asarray(length_um, dtype=np.float64), config.MIN_THROAT_LENGTH_UM)
    return np.pi * r ** 4 / (8.0 * viscosity * length * config.MICRON_TO_M)


class LatticeKernels(ABC):
    """
    D3Q19格子求解器介面

    格子狀態僅存在於單次 LBM 執行期間，由後端的 create_lattice 建立。
    """

    def __init__(self, shape, fluid: np.ndarray):
        self.shape = tuple(int(s) for s in shape)
        self.n_cells = int(np.prod(self.shape))
        self.fluid = np.asarray(fluid, dtype=bool).ravel()

    @abstractmethod
    def set_pressure_boundaries(self, cells: np.ndarray, densities: np.ndarray) -> None:
        """指定固定密度格點 (空陣列 = 封閉盒)"""

    @abstractmethod
    def step(self) -> None:
        """碰撞 → 串流/bounce-back → 壓力邊界"""

    @abstractmethod
    def max_velocity_change(self) -> float:
        """與上次呼叫相比的最大速度分量變化"""

    @abstractmethod
    def density(self) -> np.ndarray:
        """(n,) 密度"""

    @abstractmethod
    def velocity(self) -> np.ndarray:
        """(n, 3) 速度"""

    @abstractmethod
    def distributions(self) -> np.ndarray:
        """扁平分布函數 (n·19,)"""

    def total_mass(self) -> float:
        return float(self.density()[self.fluid].sum())

    def close(self) -> None:
        pass


class ComputeBackend(ABC):
    """
    計算後端基類

    - CPUBackend: numpy/scipy 參考實現，永遠可用
    - TaichiBackend: GPU 平行實現，失敗時轉交 fallback
    """

    def __init__(self, backend_type: str, settings: Optional[SimulationSettings] = None):
        self.backend_type = backend_type
        self.settings = settings or SimulationSettings()
        self.fallback: Optional["ComputeBackend"] = None
        self.is_initialized = False
        self.creation_time = time.time()
        self.operation_count = 0

    @property
    @abstractmethod
    def is_gpu(self) -> bool:
        pass

    @property
    def max_iterations(self) -> int:
        """線性求解器迭代上限"""
        if self.is_gpu:
            return self.settings.gpu_max_iterations
        return self.settings.cpu_max_iterations

    @property
    def max_grid(self) -> int:
        return self.settings.max_grid(self.is_gpu)

    @abstractmethod
    def probe(self) -> None:
        """
        能力探測：配置小緩衝區並執行簡單 kernel

        Raises:
            DeviceUnavailableError: 裝置不可用
        """

    @abstractmethod
    def compute_conductances(self, radius_um: np.ndarray, length_um: np.ndarray,
                             viscosity: float) -> np.ndarray:
        pass

    @abstractmethod
    def solve_linear(self, matrix, b: np.ndarray, x0: np.ndarray,
                     error_handler: Optional[SimulationErrorHandler] = None):
        """求解 Ax=b，回傳 SolverResult"""

    @abstractmethod
    def create_lattice(self, shape, fluid: np.ndarray, omega: float) -> LatticeKernels:
        pass

    @abstractmethod
    def get_platform_info(self) -> Dict[str, Any]:
        pass

    def run(self, workload: Callable[["ComputeBackend"], T],
            error_handler: Optional[SimulationErrorHandler] = None) -> T:
        """
        在本後端執行 workload(backend)

        GPU 執行失敗時記錄 DeviceUnavailable 並在 fallback 上重跑。
        CPU 後端的例外與領域錯誤 (PermeabilityError) 直接向上傳遞。
        """
        self.operation_count += 1
        if self.fallback is None:
            return workload(self)
        try:
            return workload(self)
        except PermeabilityError as exc:
            if not isinstance(exc, DeviceUnavailableError):
                raise
            if error_handler is not None:
                error_handler.handle_error(exc)
            return workload(self.fallback)
        except Exception as exc:
            error = DeviceUnavailableError(
                f"{self.backend_type} 執行失敗，改用 {self.fallback.backend_type}: {exc}",
                {"backend": self.backend_type},
            )
            if error_handler is not None:
                error_handler.handle_error(error)
            else:
                backend_logger.warning(f"⚠️ {error}", self.backend_type)
            return workload(self.fallback)

    def close(self) -> None:
        """釋放後端資源"""
        if self.fallback is not None:
            self.fallback.close()
        self.is_initialized = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def create_backend(prefer_gpu: bool = True, settings: Optional[SimulationSettings] = None,
                   error_handler: Optional[SimulationErrorHandler] = None,
                   arch: Any = None) -> ComputeBackend:
    """
    建立計算後端

    prefer_gpu 時嘗試 Taichi GPU 後端並探測能力；任何失敗
    (Taichi 載入、執行環境、探測、加速器已被其他模擬器佔用) 都降級為 CPU 後端。

    Args:
        prefer_gpu: 是否優先使用 GPU
        settings: 數值設定
        error_handler: 記錄 DeviceUnavailable
        arch: 指定 Taichi arch (測試用，例如 ti.cpu)
    """
    from .cpu_backend import CPUBackend

    settings = settings or SimulationSettings()
    cpu = CPUBackend(settings)
    if not prefer_gpu:
        backend_logger.info("🖥️ 使用 CPU 後端", cpu.backend_type)
        return cpu

    try:
        from .gpu_backend import TaichiBackend
        backend = TaichiBackend(settings, fallback=cpu, arch=arch)
        backend.probe()
    except Exception as exc:
        if isinstance(exc, DeviceUnavailableError):
            error = exc
        elif isinstance(exc, ImportError):
            error = DeviceUnavailableError(f"Taichi 無法載入: {exc}", {"backend": "taichi"})
        else:
            error = DeviceUnavailableError(f"GPU 後端初始化失敗: {exc}", {"backend": "taichi"})
        if error_handler is not None:
            error_handler.handle_error(error)
        else:
            backend_logger.warning(f"⚠️ {error}，降級至 CPU")
        return cpu

    backend_logger.info(f"🚀 使用 {backend.get_platform_info()['display_name']} 後端", backend.backend_type)
    return backend
