"""
滲透率模擬器
擁有計算後端，依序執行各方法並統一套用迂曲度修正

流程 (進度 5/15/40/70/100%)：
1. 驗證輸入，計算共用幾何 (長度、截面積、入口/出口孔隙)
2. Darcy 與 Kozeny-Carman 並行
3. Lattice-Boltzmann (附 Kozeny-Carman 交叉驗證比值)
4. Navier-Stokes (沿用 Darcy k 作為初始速度)

任何單一方法的例外都被記錄並標記為 failed，其他方法繼續執行。
"""

import dataclasses
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Union

from .config import config
from .config.config_manager import SimulationSettings, load_settings
from .core.backends import create_backend
from .error_handling import InvalidInputError, SimulationErrorHandler
from .network import FlowAxis, PoreNetworkModel
from .physics import DarcyMethod, KozenyCarmanMethod, LatticeBoltzmannMethod, NavierStokesMethod
from .physics.base import PermeabilityMethod
from .physics.geometry import SimulationContext, compute_sample_geometry
from .results import Method, MethodResult, SimulationResult, SimulationResultBuilder
from .utils.logger import SimulationLogger

logger = SimulationLogger(__name__, "PermeabilitySimulator")


class ProgressSink:
    """進度接收端，report(percent) 由子類實作"""

    def report(self, percent: int) -> None:
        pass


class CallableProgressSink(ProgressSink):
    """把一般函式包裝成 ProgressSink"""

    def __init__(self, callback: Callable[[int], Any]):
        self.callback = callback

    def report(self, percent: int) -> None:
        self.callback(percent)


class ProgressReporter:
    """
    單調遞增的進度回報

    較小或重複的百分比不轉送；接收端的例外只記錄，不影響計算。
    """

    def __init__(self, sink: Union[ProgressSink, Callable[[int], Any], None]):
        if sink is not None and not isinstance(sink, ProgressSink):
            sink = CallableProgressSink(sink)
        self.sink = sink
        self.last = 0

    def report(self, percent: int) -> None:
        percent = int(percent)
        if self.sink is None or percent <= self.last:
            return
        self.last = percent
        try:
            self.sink.report(percent)
        except Exception as exc:
            logger.warning(f"⚠️ 進度回報失敗 ({percent}%): {exc}")


class PermeabilitySimulator:
    """
    孔隙網絡滲透率模擬器

    使用方式：

        with PermeabilitySimulator(prefer_gpu=False) as sim:
            result = sim.simulate(model, "x", 1e-3, 2000.0, 1000.0, 1.5,
                                  kozeny_carman=True)

    Args:
        prefer_gpu: 優先使用 Taichi GPU 後端
        settings: 數值設定 (預設 load_settings()，可由 PNM_PERM_CONFIG 指定)
        arch: 指定 Taichi arch (測試用)
        progress: 預設進度接收端
    """

    def __init__(self, prefer_gpu: bool = True, settings: Optional[SimulationSettings] = None,
                 arch: Any = None, progress=None):
        self.settings = settings or load_settings()
        self.progress = progress
        self.startup_errors = SimulationErrorHandler("PermeabilitySimulator")
        self.backend = create_backend(prefer_gpu, self.settings, self.startup_errors, arch)
        self._method_pool = ThreadPoolExecutor(
            max_workers=max(1, self.settings.method_workers), thread_name_prefix="pnm-method")
        self._job_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pnm-simulation")
        self._run_lock = threading.Lock()
        self._closed = False
        logger.info(f"🔧 模擬器就緒 (backend={self.backend.backend_type})")

    # ------------------------------------------------------------------
    # 公開介面
    # ------------------------------------------------------------------

    def simulate(self, model: PoreNetworkModel, axis, viscosity: float,
                 inlet_pressure: float, outlet_pressure: float, tortuosity: float = 1.0,
                 darcy: bool = True, lattice_boltzmann: bool = False,
                 kozeny_carman: bool = False, navier_stokes: bool = False,
                 progress=None) -> SimulationResult:
        """
        執行滲透率模擬 (阻塞)

        Raises:
            InvalidInputError: 空網絡或黏度非正/非有限
        """
        if self._closed:
            raise RuntimeError("模擬器已關閉")
        axis = FlowAxis.parse(axis)
        self._validate(model, viscosity)
        reporter = ProgressReporter(progress if progress is not None else self.progress)

        with self._run_lock:
            return self._simulate(model, axis, float(viscosity), float(inlet_pressure),
                                  float(outlet_pressure), float(tortuosity),
                                  {
                                      Method.DARCY: darcy,
                                      Method.LATTICE_BOLTZMANN: lattice_boltzmann,
                                      Method.KOZENY_CARMAN: kozeny_carman,
                                      Method.NAVIER_STOKES: navier_stokes,
                                  },
                                  reporter)

    def submit(self, *args, **kwargs) -> "Future[SimulationResult]":
        """在背景執行 simulate()，回傳 Future"""
        if self._closed:
            raise RuntimeError("模擬器已關閉")
        return self._job_pool.submit(self.simulate, *args, **kwargs)

    def close(self) -> None:
        """釋放執行緒池與後端 (GPU 執行環境)"""
        if self._closed:
            return
        self._closed = True
        self._job_pool.shutdown(wait=True)
        self._method_pool.shutdown(wait=True)
        self.backend.close()
        logger.info("🧹 模擬器已關閉")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # 內部流程
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(model: PoreNetworkModel, viscosity: float) -> None:
        if model is None or model.pore_count == 0:
            raise InvalidInputError("孔隙網絡沒有孔隙")
        if model.throat_count == 0:
            raise InvalidInputError("孔隙網絡沒有喉道")
        try:
            value = float(viscosity)
        except (TypeError, ValueError):
            raise InvalidInputError(f"黏度不是數值: {viscosity!r}")
        if not math.isfinite(value) or value <= 0:
            raise InvalidInputError(f"黏度必須為正有限值: {viscosity}", {"viscosity": viscosity})

    def _simulate(self, model: PoreNetworkModel, axis: FlowAxis, viscosity: float,
                  inlet_pressure: float, outlet_pressure: float, tortuosity: float,
                  selected: Dict[Method, bool], reporter: ProgressReporter) -> SimulationResult:
        handler = SimulationErrorHandler("PermeabilitySimulator")
        handler.extend(self.startup_errors.records())
        reporter.report(config.PROGRESS_START)

        geometry = compute_sample_geometry(model, axis, self.settings.boundary_fraction)
        builder = SimulationResultBuilder(axis, viscosity, inlet_pressure, outlet_pressure, tortuosity)
        builder.set_geometry(geometry.length, geometry.area, geometry.inlet_pores, geometry.outlet_pores)
        context = SimulationContext(
            model=model,
            axis=axis,
            viscosity=viscosity,
            inlet_pressure=inlet_pressure,
            outlet_pressure=outlet_pressure,
            geometry=geometry,
            error_handler=handler,
        )
        logger.info(
            f"🚀 開始模擬: {model.pore_count} 孔隙, {model.throat_count} 喉道, 軸={axis.value}, "
            f"L={geometry.length:.4e} m, A={geometry.area:.4e} m², "
            f"入口 {len(geometry.inlet_pores)} / 出口 {len(geometry.outlet_pores)}"
        )
        reporter.report(config.PROGRESS_GEOMETRY)

        # Darcy 與 Kozeny-Carman 互不相依，可並行
        want_kc = selected[Method.KOZENY_CARMAN] or selected[Method.LATTICE_BOLTZMANN]
        futures = {}
        if selected[Method.DARCY]:
            futures[Method.DARCY] = self._method_pool.submit(
                self._run_method, DarcyMethod(self.backend, self.settings), context)
        if want_kc:
            futures[Method.KOZENY_CARMAN] = self._method_pool.submit(
                self._run_method, KozenyCarmanMethod(self.backend, self.settings), context)
        for future in futures.values():
            builder.add(future.result())
        reporter.report(config.PROGRESS_DARCY)

        if selected[Method.LATTICE_BOLTZMANN]:
            lbm_result = self._method_pool.submit(
                self._run_method, LatticeBoltzmannMethod(self.backend, self.settings), context).result()
            builder.add(self._cross_validate(lbm_result, builder.get(Method.KOZENY_CARMAN)))
        reporter.report(config.PROGRESS_LBM)

        if selected[Method.NAVIER_STOKES]:
            darcy_result = builder.get(Method.DARCY)
            if darcy_result is not None and not darcy_result.failed:
                ns_context = dataclasses.replace(context, darcy_permeability=darcy_result.permeability_darcy)
            else:
                ns_context = context
            builder.add(self._method_pool.submit(
                self._run_method, NavierStokesMethod(self.backend, self.settings), ns_context).result())

        for method in Method:
            result = builder.get(method)
            if result is not None:
                builder.add(result.with_tortuosity(tortuosity))

        builder.add_errors(handler.records())
        result = builder.build()
        self._log_summary(result)
        reporter.report(config.PROGRESS_DONE)
        return result

    def _run_method(self, method: PermeabilityMethod, context: SimulationContext) -> MethodResult:
        """執行單一方法；例外轉為 failed 結果"""
        try:
            return method.compute(context)
        except Exception as exc:
            record = context.error_handler.handle_exception(exc, method.method.value)
            logger.error(f"❌ {method.method.display_name} 失敗: {exc}")
            return MethodResult.failure(method.method, record.message)

    @staticmethod
    def _cross_validate(lbm_result: MethodResult, kc_result: Optional[MethodResult]) -> MethodResult:
        """LBM 與 Kozeny-Carman 的比值寫入 LBM 診斷資訊"""
        if lbm_result.failed or kc_result is None or kc_result.failed:
            return lbm_result
        if kc_result.permeability_darcy <= 0:
            return lbm_result
        ratio = lbm_result.permeability_darcy / kc_result.permeability_darcy
        logger.info(f"📊 LBM/Kozeny-Carman 比值: {ratio:.4g}")
        return lbm_result.with_diagnostics(kozeny_carman_ratio=ratio)

    @staticmethod
    def _log_summary(result: SimulationResult) -> None:
        for method, method_result in result.methods().items():
            if method_result.failed:
                logger.warning(f"⚠️ {method.display_name}: 失敗 ({method_result.error})")
            else:
                logger.info(
                    f"✅ {method.display_name}: k={method_result.permeability_millidarcy:.6g} mD, "
                    f"修正後 {method_result.corrected_permeability_millidarcy:.6g} mD"
                )
