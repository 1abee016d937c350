"""
CPU計算後端 - 參考實現
numpy/scipy 實現的導率、Gauss-Seidel 求解與 D3Q19 格子，永遠可用
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import numpy as np
import psutil

from ...config.config_manager import SimulationSettings
from ...error_handling import SimulationErrorHandler
from .. import lbm_algorithms as lbm
from ..linear_solver import gauss_seidel
from .compute_backends import (
    ComputeBackend, LatticeKernels, backend_logger, hagen_poiseuille_conductance,
)


def _x_slabs(nx: int, threads: int, cells_per_plane: int) -> List[slice]:
    """沿 x 切分的格點範圍 (扁平索引連續)"""
    bounds = np.linspace(0, nx, min(threads, nx) + 1).astype(int)
    return [
        slice(int(a) * cells_per_plane, int(b) * cells_per_plane)
        for a, b in zip(bounds[:-1], bounds[1:]) if b > a
    ]


class CPULattice(LatticeKernels):
    """
    numpy D3Q19 格子

    碰撞與串流各自切成 x 方向的 slab 交給執行緒池，
    兩階段之間等待所有 slab 完成 (barrier)。
    """

    def __init__(self, shape, fluid: np.ndarray, omega: float, threads: int = 1):
        super().__init__(shape, fluid)
        self.omega = float(omega)
        nx, ny, nz = self.shape

        self.f = lbm.initial_distributions(self.n_cells, self.fluid)
        self.f_post = np.zeros_like(self.f)
        self.sources, self.valid = lbm.build_streaming_sources(self.shape, self.fluid)
        self.slabs = _x_slabs(nx, max(1, threads), ny * nz)
        self.pool = ThreadPoolExecutor(max_workers=len(self.slabs)) if len(self.slabs) > 1 else None

        self.boundary_cells = np.zeros(0, dtype=np.int64)
        self.boundary_density = np.zeros(0)
        self._previous_u = np.zeros((self.n_cells, 3))

    def set_pressure_boundaries(self, cells: np.ndarray, densities: np.ndarray) -> None:
        self.boundary_cells = np.asarray(cells, dtype=np.int64)
        self.boundary_density = np.asarray(densities, dtype=np.float64)
        lbm.apply_pressure_boundary(self.f, self.boundary_cells, self.boundary_density)

    def _collide_slab(self, cells: slice) -> None:
        self.f_post[cells] = lbm.bgk_collide(self.f[cells], self.fluid[cells], self.omega)

    def _stream_slab(self, cells: slice) -> None:
        lbm.pull_stream(self.f_post, self.f, self.sources, self.valid, cells)

    def _for_each_slab(self, func) -> None:
        if self.pool is None:
            for cells in self.slabs:
                func(cells)
        else:
            # list() 取回所有結果，即兩階段之間的 barrier
            list(self.pool.map(func, self.slabs))

    def step(self) -> None:
        self._for_each_slab(self._collide_slab)
        self._for_each_slab(self._stream_slab)
        lbm.apply_pressure_boundary(self.f, self.boundary_cells, self.boundary_density)

    def max_velocity_change(self) -> float:
        u = self.velocity()
        change = float(np.max(np.abs(u[self.fluid] - self._previous_u[self.fluid]), initial=0.0))
        self._previous_u = u
        return change

    def density(self) -> np.ndarray:
        return self.f.sum(axis=1)

    def velocity(self) -> np.ndarray:
        _, u = lbm.macroscopic(self.f)
        return u

    def distributions(self) -> np.ndarray:
        return self.f.ravel()

    def close(self) -> None:
        if self.pool is not None:
            self.pool.shutdown(wait=True)
            self.pool = None


class CPUBackend(ComputeBackend):
    """
    CPU專用計算後端

    - 導率: numpy 向量化
    - 線性求解: Gauss-Seidel (scipy 三角求解)
    - LBM: numpy slab 並行
    """

    def __init__(self, settings: Optional[SimulationSettings] = None):
        super().__init__("cpu", settings)
        self.cpu_threads = max(1, min(self.settings.cpu_threads, psutil.cpu_count(logical=True) or 1))
        self.is_initialized = True
        backend_logger.info(f"✅ CPU後端初始化完成 (Threads={self.cpu_threads})", self.backend_type)

    @property
    def is_gpu(self) -> bool:
        return False

    def probe(self) -> None:
        return None

    def compute_conductances(self, radius_um, length_um, viscosity: float) -> np.ndarray:
        return hagen_poiseuille_conductance(radius_um, length_um, viscosity)

    def solve_linear(self, matrix, b, x0, error_handler: Optional[SimulationErrorHandler] = None):
        return gauss_seidel(
            matrix, b, x0,
            tolerance=self.settings.solver_tolerance,
            max_iterations=self.settings.cpu_max_iterations,
            error_handler=error_handler,
        )

    def create_lattice(self, shape, fluid, omega: float) -> CPULattice:
        return CPULattice(shape, fluid, omega, threads=self.cpu_threads)

    def get_platform_info(self) -> Dict[str, Any]:
        cores = psutil.cpu_count(logical=False)
        memory_gb = psutil.virtual_memory().total // (1024 ** 3)
        return {
            'backend_name': 'cpu',
            'display_name': f'🖥️ CPU ({cores} cores, {memory_gb}GB RAM)',
            'cpu_cores': cores,
            'memory_gb': memory_gb,
            'threads': self.cpu_threads,
            'gpu_acceleration': False,
        }
