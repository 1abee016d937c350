"""
Taichi GPU計算後端 - 平行實現
導率、平行 Jacobi 與 D3Q19 格子 kernel，資料以扁平 device ndarray 儲存

ti.init(arch=ti.gpu) 找不到 GPU 時會靜默回落到 CPU，因此初始化後
檢查實際 arch，並以小緩衝區 + 簡單 kernel 探測裝置。
"""

import math
from typing import Any, Dict, Optional

import numpy as np
import scipy.sparse as sp
import taichi as ti

from ...config import config
from ...config.config_manager import SimulationSettings
from ...error_handling import DeviceUnavailableError, SimulationErrorHandler
from .. import lbm_algorithms as lbm
from ..linear_solver import SolverResult, report_non_convergence
from .compute_backends import ACCELERATOR_LOCK, ComputeBackend, LatticeKernels, backend_logger

_Q = config.Q_3D
_CX = [int(c) for c in config.CX_3D]
_CY = [int(c) for c in config.CY_3D]
_CZ = [int(c) for c in config.CZ_3D]
_W = [float(w) for w in config.WEIGHTS_3D]
_OPP = [int(o) for o in config.OPPOSITE_3D]

_PROBE_SIZE = 16

f64_array = ti.types.ndarray(dtype=ti.f64, ndim=1)
i32_array = ti.types.ndarray(dtype=ti.i32, ndim=1)


# ===========================================
# 探測與導率
# ===========================================

@ti.kernel
def _probe_kernel(buf: f64_array, n: ti.i32):
    for i in range(n):
        buf[i] = 2.0 * i


@ti.kernel
def _conductance_kernel(radius: f64_array, length: f64_array, g: f64_array, m: ti.i32,
                        viscosity: ti.f64, min_length: ti.f64, to_meter: ti.f64):
    for t in range(m):
        r = radius[t] * to_meter
        L = ti.max(length[t], min_length) * to_meter
        g[t] = math.pi * r * r * r * r / (8.0 * viscosity * L)


# ===========================================
# 平行 Jacobi (CSR)
# ===========================================

@ti.kernel
def _jacobi_sweep(indptr: i32_array, indices: i32_array, data: f64_array, b: f64_array,
                  x_old: f64_array, x_new: f64_array, n: ti.i32, eps: ti.f64, delta: f64_array):
    for i in range(n):
        diag = ti.cast(0.0, ti.f64)
        sigma = ti.cast(0.0, ti.f64)
        row_scale = ti.cast(0.0, ti.f64)
        for p in range(indptr[i], indptr[i + 1]):
            j = indices[p]
            row_scale = ti.max(row_scale, ti.abs(data[p]))
            if j == i:
                diag += data[p]
            else:
                sigma += data[p] * x_old[j]
        value = x_old[i]
        # 奇異判定相對於該列最大元素
        if ti.abs(diag) > eps * row_scale:
            value = (b[i] - sigma) / diag
        x_new[i] = value
        d = value - x_old[i]
        ti.atomic_add(delta[0], d * d)


@ti.kernel
def _residual_kernel(indptr: i32_array, indices: i32_array, data: f64_array, b: f64_array,
                     x: f64_array, n: ti.i32, out: f64_array):
    for i in range(n):
        s = ti.cast(0.0, ti.f64)
        for p in range(indptr[i], indptr[i + 1]):
            s += data[p] * x[indices[p]]
        r = s - b[i]
        ti.atomic_add(out[0], r * r)


# ===========================================
# D3Q19 kernels
# ===========================================

@ti.kernel
def _collide_kernel(f: f64_array, f_post: f64_array, solid: i32_array, n: ti.i32, omega: ti.f64):
    for c in range(n):
        if solid[c] == 0:
            rho = ti.cast(0.0, ti.f64)
            mx = ti.cast(0.0, ti.f64)
            my = ti.cast(0.0, ti.f64)
            mz = ti.cast(0.0, ti.f64)
            for q in ti.static(range(_Q)):
                fq = f[c * _Q + q]
                rho += fq
                mx += fq * _CX[q]
                my += fq * _CY[q]
                mz += fq * _CZ[q]
            ux = ti.cast(0.0, ti.f64)
            uy = ti.cast(0.0, ti.f64)
            uz = ti.cast(0.0, ti.f64)
            if rho > 1e-12:
                ux = mx / rho
                uy = my / rho
                uz = mz / rho
            u_sq = ux * ux + uy * uy + uz * uz
            for q in ti.static(range(_Q)):
                eu = _CX[q] * ux + _CY[q] * uy + _CZ[q] * uz
                feq = _W[q] * rho * (1.0 + 3.0 * eu + 4.5 * eu * eu - 1.5 * u_sq)
                fq = f[c * _Q + q]
                f_post[c * _Q + q] = fq - omega * (fq - feq)
        else:
            for q in ti.static(range(_Q)):
                f_post[c * _Q + q] = 0.0


@ti.kernel
def _stream_kernel(f_post: f64_array, f: f64_array, solid: i32_array, nx: ti.i32, ny: ti.i32, nz: ti.i32):
    for c in range(nx * ny * nz):
        if solid[c] == 0:
            i = c // (ny * nz)
            j = (c // nz) % ny
            k = c % nz
            for q in ti.static(range(_Q)):
                # bounce-back 預設值
                value = f_post[c * _Q + _OPP[q]]
                si = i - _CX[q]
                sj = j - _CY[q]
                sk = k - _CZ[q]
                if si >= 0 and si < nx and sj >= 0 and sj < ny and sk >= 0 and sk < nz:
                    sc = (si * ny + sj) * nz + sk
                    if solid[sc] == 0:
                        value = f_post[sc * _Q + q]
                f[c * _Q + q] = value
        else:
            for q in ti.static(range(_Q)):
                f[c * _Q + q] = 0.0


@ti.kernel
def _pressure_boundary_kernel(f: f64_array, cells: i32_array, rho_fixed: f64_array, nb: ti.i32):
    for b in range(nb):
        c = cells[b]
        rho = rho_fixed[b]
        mx = ti.cast(0.0, ti.f64)
        my = ti.cast(0.0, ti.f64)
        mz = ti.cast(0.0, ti.f64)
        for q in ti.static(range(_Q)):
            fq = f[c * _Q + q]
            mx += fq * _CX[q]
            my += fq * _CY[q]
            mz += fq * _CZ[q]
        ux = mx / rho
        uy = my / rho
        uz = mz / rho
        u_sq = ux * ux + uy * uy + uz * uz
        for q in ti.static(range(_Q)):
            eu = _CX[q] * ux + _CY[q] * uy + _CZ[q] * uz
            f[c * _Q + q] = _W[q] * rho * (1.0 + 3.0 * eu + 4.5 * eu * eu - 1.5 * u_sq)


@ti.kernel
def _velocity_change_kernel(f: f64_array, solid: i32_array, u_prev: f64_array, n: ti.i32, out: f64_array):
    for c in range(n):
        if solid[c] == 0:
            rho = ti.cast(0.0, ti.f64)
            mx = ti.cast(0.0, ti.f64)
            my = ti.cast(0.0, ti.f64)
            mz = ti.cast(0.0, ti.f64)
            for q in ti.static(range(_Q)):
                fq = f[c * _Q + q]
                rho += fq
                mx += fq * _CX[q]
                my += fq * _CY[q]
                mz += fq * _CZ[q]
            ux = ti.cast(0.0, ti.f64)
            uy = ti.cast(0.0, ti.f64)
            uz = ti.cast(0.0, ti.f64)
            if rho > 1e-12:
                ux = mx / rho
                uy = my / rho
                uz = mz / rho
            d = ti.max(ti.abs(ux - u_prev[3 * c]),
                       ti.max(ti.abs(uy - u_prev[3 * c + 1]), ti.abs(uz - u_prev[3 * c + 2])))
            ti.atomic_max(out[0], d)
            u_prev[3 * c] = ux
            u_prev[3 * c + 1] = uy
            u_prev[3 * c + 2] = uz


@ti.kernel
def _mass_kernel(f: f64_array, solid: i32_array, n: ti.i32, out: f64_array):
    for c in range(n):
        if solid[c] == 0:
            for q in ti.static(range(_Q)):
                ti.atomic_add(out[0], f[c * _Q + q])


def _to_device(values: np.ndarray, dtype):
    host = np.ascontiguousarray(values)
    arr = ti.ndarray(dtype=dtype, shape=max(1, host.shape[0]))
    if host.shape[0] > 0:
        arr.from_numpy(host)
    return arr


class TaichiLattice(LatticeKernels):
    """Taichi D3Q19 格子 (扁平 device ndarray)"""

    def __init__(self, shape, fluid: np.ndarray, omega: float):
        super().__init__(shape, fluid)
        self.omega = float(omega)
        n = self.n_cells

        self.f = _to_device(lbm.initial_distributions(n, self.fluid).ravel(), ti.f64)
        self.f_post = ti.ndarray(dtype=ti.f64, shape=n * _Q)
        self.solid = _to_device((~self.fluid).astype(np.int32), ti.i32)
        self.u_prev = ti.ndarray(dtype=ti.f64, shape=n * 3)
        self.u_prev.fill(0.0)
        self.scalar = ti.ndarray(dtype=ti.f64, shape=1)

        self.n_boundary = 0
        self.boundary_cells = None
        self.boundary_density = None

    def set_pressure_boundaries(self, cells: np.ndarray, densities: np.ndarray) -> None:
        cells = np.asarray(cells, dtype=np.int32)
        self.n_boundary = int(cells.shape[0])
        self.boundary_cells = _to_device(cells, ti.i32)
        self.boundary_density = _to_device(np.asarray(densities, dtype=np.float64), ti.f64)
        self._apply_boundary()

    def _apply_boundary(self) -> None:
        if self.n_boundary > 0:
            _pressure_boundary_kernel(self.f, self.boundary_cells, self.boundary_density, self.n_boundary)

    def step(self) -> None:
        nx, ny, nz = self.shape
        _collide_kernel(self.f, self.f_post, self.solid, self.n_cells, self.omega)
        _stream_kernel(self.f_post, self.f, self.solid, nx, ny, nz)
        self._apply_boundary()

    def max_velocity_change(self) -> float:
        self.scalar.fill(0.0)
        _velocity_change_kernel(self.f, self.solid, self.u_prev, self.n_cells, self.scalar)
        return float(self.scalar.to_numpy()[0])

    def total_mass(self) -> float:
        self.scalar.fill(0.0)
        _mass_kernel(self.f, self.solid, self.n_cells, self.scalar)
        return float(self.scalar.to_numpy()[0])

    def _host_distributions(self) -> np.ndarray:
        return self.f.to_numpy().reshape(self.n_cells, _Q)

    def density(self) -> np.ndarray:
        return self._host_distributions().sum(axis=1)

    def velocity(self) -> np.ndarray:
        _, u = lbm.macroscopic(self._host_distributions())
        return u

    def distributions(self) -> np.ndarray:
        return self.f.to_numpy()


class TaichiBackend(ComputeBackend):
    """
    Taichi 裝置後端

    - 一個行程只能有一個 Taichi 執行環境，由 ACCELERATOR_LOCK 保護
    - 裝置上的任何失敗由 ComputeBackend.run 轉交 fallback
    """

    _HOST_ARCHS = (ti.x64, ti.arm64)

    def __init__(self, settings: Optional[SimulationSettings] = None,
                 fallback: Optional[ComputeBackend] = None, arch: Any = None):
        super().__init__("taichi", settings)
        self.fallback = fallback
        self.require_gpu = arch is None
        self.arch = None

        if not ACCELERATOR_LOCK.acquire(blocking=False):
            raise DeviceUnavailableError("加速器已被其他模擬器佔用", {"backend": "taichi"})
        self._owns_lock = True

        try:
            ti.init(arch=ti.gpu if arch is None else arch, default_fp=ti.f64, offline_cache=False)
            self.arch = ti.lang.impl.current_cfg().arch
            if self.require_gpu and self.arch in self._HOST_ARCHS:
                raise DeviceUnavailableError("找不到 GPU (Taichi 已回落至 CPU)", {"arch": str(self.arch)})
        except Exception:
            self._release()
            raise
        self.is_initialized = True
        backend_logger.info(f"🔧 Taichi 初始化完成 (arch={self.arch})", self.backend_type)

    @property
    def is_gpu(self) -> bool:
        return True

    def probe(self) -> None:
        """配置小緩衝區並執行簡單 kernel，失敗時釋放執行環境"""
        try:
            buf = ti.ndarray(dtype=ti.f64, shape=_PROBE_SIZE)
            _probe_kernel(buf, _PROBE_SIZE)
            result = buf.to_numpy()
            if not np.allclose(result, 2.0 * np.arange(_PROBE_SIZE)):
                raise DeviceUnavailableError("探測 kernel 結果不正確", {"arch": str(self.arch)})
        except DeviceUnavailableError:
            self.close()
            raise
        except Exception as exc:
            self.close()
            raise DeviceUnavailableError(f"裝置探測失敗: {exc}", {"arch": str(self.arch)}) from exc
        backend_logger.info("✅ 裝置探測通過", self.backend_type)

    def compute_conductances(self, radius_um, length_um, viscosity: float) -> np.ndarray:
        radius = np.asarray(radius_um, dtype=np.float64)
        m = radius.shape[0]
        g = ti.ndarray(dtype=ti.f64, shape=max(1, m))
        _conductance_kernel(
            _to_device(radius, ti.f64),
            _to_device(np.asarray(length_um, dtype=np.float64), ti.f64),
            g, m, float(viscosity), config.MIN_THROAT_LENGTH_UM, config.MICRON_TO_M,
        )
        return g.to_numpy()[:m]

    def solve_linear(self, matrix, b, x0, error_handler: Optional[SimulationErrorHandler] = None):
        """
        平行 Jacobi：x_i ← (b_i − Σ_{j≠i} A_ij x_j^old) / A_ii

        全域 ‖Δx‖² 與殘差以 atomic 歸約，每次掃描後回傳主機判斷收斂。
        """
        csr = sp.csr_matrix(matrix, dtype=np.float64)
        n = csr.shape[0]
        indptr = _to_device(csr.indptr.astype(np.int32), ti.i32)
        indices = _to_device(csr.indices.astype(np.int32), ti.i32)
        data = _to_device(csr.data, ti.f64)
        rhs = _to_device(np.asarray(b, dtype=np.float64), ti.f64)
        x_old = _to_device(np.asarray(x0, dtype=np.float64), ti.f64)
        x_new = ti.ndarray(dtype=ti.f64, shape=n)
        delta = ti.ndarray(dtype=ti.f64, shape=1)
        residual = ti.ndarray(dtype=ti.f64, shape=1)

        tolerance = self.settings.solver_tolerance
        max_iterations = self.settings.gpu_max_iterations
        residuals = []
        delta_norm = float("inf")
        converged = False
        iteration = 0
        while iteration < max_iterations:
            delta.fill(0.0)
            _jacobi_sweep(indptr, indices, data, rhs, x_old, x_new, n, config.SINGULAR_DIAGONAL_EPS, delta)
            x_old, x_new = x_new, x_old
            iteration += 1

            residual.fill(0.0)
            _residual_kernel(indptr, indices, data, rhs, x_old, n, residual)
            residuals.append(math.sqrt(residual.to_numpy()[0]))
            delta_norm = math.sqrt(delta.to_numpy()[0])

            if iteration % config.SOLVER_LOG_INTERVAL == 0:
                backend_logger.debug(f"Jacobi 迭代 {iteration}: Δ={delta_norm:.3e}", self.backend_type)
            if delta_norm < tolerance:
                converged = True
                break

        if converged:
            backend_logger.info(f"✅ Jacobi 收斂: {iteration} 次迭代, ‖r‖={residuals[-1]:.3e}", self.backend_type)
        else:
            report_non_convergence("Jacobi", iteration, delta_norm, error_handler)

        return SolverResult(x_old.to_numpy()[:n], iteration, delta_norm, tuple(residuals), converged)

    def create_lattice(self, shape, fluid, omega: float) -> TaichiLattice:
        return TaichiLattice(shape, fluid, omega)

    def get_platform_info(self) -> Dict[str, Any]:
        return {
            'backend_name': 'taichi',
            'display_name': f'🚀 Taichi ({self.arch})',
            'arch': str(self.arch),
            'gpu_acceleration': self.arch not in self._HOST_ARCHS,
        }

    def _release(self) -> None:
        if self.is_initialized or self.arch is not None:
            ti.reset()
        self.is_initialized = False
        self.arch = None
        if self._owns_lock:
            self._owns_lock = False
            ACCELERATOR_LOCK.release()

    def close(self) -> None:
        if self._owns_lock:
            self._release()
            backend_logger.info("🧹 Taichi 執行環境已釋放", self.backend_type)
        super().close()
