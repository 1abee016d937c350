"""
計算後端測試
====================

- 故障轉移：裝置上的例外記錄 DeviceUnavailable 並在 CPU 重跑
- 領域錯誤不觸發轉移
- 加速器已被佔用或 Taichi 無法載入時降級為 CPU
- Taichi 後端 (arch=cpu) 與 numpy 參考實現一致，SI 尺度 Darcy 求解符合解析解
"""

import math
import sys

import numpy as np
import pytest

from pnm_perm.config import config
from pnm_perm.config.config_manager import SimulationSettings
from pnm_perm.core.backends import (
    ACCELERATOR_LOCK, ComputeBackend, CPUBackend, create_backend, hagen_poiseuille_conductance,
)
from pnm_perm.error_handling import (
    DegenerateGeometryError, ErrorCategory, SimulationErrorHandler,
)
from pnm_perm.network import FlowAxis
from pnm_perm.physics.darcy_method import DarcyMethod, assemble_conductance_matrix, boundary_conditions
from pnm_perm.physics.geometry import compute_sample_geometry

from conftest import THROAT_RADIUS, VISCOSITY, line_network, make_context


class FlakyDeviceBackend(ComputeBackend):
    """每個操作都失敗的假裝置後端"""

    def __init__(self, settings=None):
        super().__init__("flaky", settings)
        self.fallback = CPUBackend(self.settings)

    @property
    def is_gpu(self):
        return True

    def probe(self):
        return None

    def compute_conductances(self, radius_um, length_um, viscosity):
        raise RuntimeError("device lost")

    def solve_linear(self, matrix, b, x0, error_handler=None):
        raise RuntimeError("device lost")

    def create_lattice(self, shape, fluid, omega):
        raise RuntimeError("device lost")

    def get_platform_info(self):
        return {"backend_name": "flaky"}


class TestBackendFallback:
    """故障轉移"""

    def test_cpu_backend_selected_when_not_preferred(self):
        backend = create_backend(prefer_gpu=False)
        assert backend.backend_type == "cpu"
        assert not backend.is_gpu
        assert backend.max_iterations == SimulationSettings().cpu_max_iterations

    def test_runtime_failure_reruns_on_fallback(self):
        handler = SimulationErrorHandler("test")
        backend = FlakyDeviceBackend()
        radius, length = np.array([1.0, 2.0]), np.array([10.0, 10.0])

        result = backend.run(lambda b: (b.backend_type, b.compute_conductances(radius, length, VISCOSITY)), handler)

        assert result[0] == "cpu"
        np.testing.assert_allclose(result[1], hagen_poiseuille_conductance(radius, length, VISCOSITY))
        records = handler.records()
        assert len(records) == 1
        assert records[0].category is ErrorCategory.DEVICE

    def test_domain_error_not_retried(self):
        backend = FlakyDeviceBackend()
        calls = []

        def workload(b):
            calls.append(b.backend_type)
            raise DegenerateGeometryError("empty")

        with pytest.raises(DegenerateGeometryError):
            backend.run(workload)
        assert calls == ["flaky"]

    def test_locked_accelerator_falls_back_to_cpu(self):
        pytest.importorskip("taichi")
        handler = SimulationErrorHandler("test")
        assert ACCELERATOR_LOCK.acquire(blocking=False)
        try:
            backend = create_backend(prefer_gpu=True, error_handler=handler)
        finally:
            ACCELERATOR_LOCK.release()
        assert backend.backend_type == "cpu"
        assert any(r.category is ErrorCategory.DEVICE for r in handler.records())

    def test_taichi_import_failure_falls_back_to_cpu(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "taichi", None)
        monkeypatch.delitem(sys.modules, "pnm_perm.core.backends.gpu_backend", raising=False)
        handler = SimulationErrorHandler("test")

        backend = create_backend(prefer_gpu=True, error_handler=handler)

        assert backend.backend_type == "cpu"
        records = handler.records()
        assert len(records) == 1
        assert records[0].category is ErrorCategory.DEVICE
        assert records[0].error_type == "DeviceUnavailableError"

    def test_conductance_clamps_short_throats(self):
        g = hagen_poiseuille_conductance(np.array([1.0]), np.array([0.0]), VISCOSITY)
        assert np.all(np.isfinite(g))
        assert g[0] > 0.0


@pytest.fixture(scope="module")
def taichi_backend():
    ti = pytest.importorskip("taichi")
    from pnm_perm.core.backends.gpu_backend import TaichiBackend

    backend = TaichiBackend(SimulationSettings(), fallback=CPUBackend(), arch=ti.cpu)
    backend.probe()
    yield backend
    backend.close()


class TestTaichiBackend:
    """Taichi 後端 (CPU arch)"""

    def test_conductances_match_numpy(self, taichi_backend):
        radius = np.array([0.5, 1.0, 2.0, 3.5])
        length = np.array([5.0, 0.0, 10.0, 40.0])
        np.testing.assert_allclose(
            taichi_backend.compute_conductances(radius, length, VISCOSITY),
            hagen_poiseuille_conductance(radius, length, VISCOSITY),
            rtol=1e-12,
        )

    def test_jacobi_matches_gauss_seidel(self, taichi_backend):
        model = line_network(10)
        geometry = compute_sample_geometry(model, FlowAxis.X)
        fixed, initial = boundary_conditions(model, geometry, 10000.0, 0.0)
        g = hagen_poiseuille_conductance(model.throat_radii(), model.throat_lengths(), VISCOSITY)
        matrix, rhs = assemble_conductance_matrix(model, g, fixed, initial)

        jacobi = taichi_backend.solve_linear(matrix, rhs, initial.copy())
        gauss = CPUBackend().solve_linear(matrix, rhs, initial.copy())
        assert jacobi.converged
        assert jacobi.iterations > 1
        np.testing.assert_allclose(jacobi.solution, gauss.solution, rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(jacobi.solution, np.linspace(10000.0, 0.0, 10), rtol=1e-6, atol=1e-4)

    def test_darcy_line_matches_hagen_poiseuille(self, taichi_backend):
        model = line_network(10)
        result = DarcyMethod(taichi_backend).compute(make_context(model))

        r, spacing, length, area = THROAT_RADIUS * 1e-6, 10e-6, 90e-6, 1e-10
        expected = math.pi * r ** 4 * length / (8.0 * spacing * 9 * area) / config.DARCY_TO_M2
        assert result.diagnostics["backend"] == "taichi"
        assert result.diagnostics["converged"]
        assert result.diagnostics["iterations"] > 1
        assert result.permeability_darcy == pytest.approx(expected, rel=0.01)

    def test_closed_lattice_conserves_mass(self, taichi_backend):
        shape = (5, 4, 4)
        fluid = np.ones(shape, dtype=bool)
        fluid[2, 1:3, 1:3] = False
        lattice = taichi_backend.create_lattice(shape, fluid.ravel(), 1.0)
        f = lattice.distributions().reshape(-1, 19)
        f[fluid.ravel()] *= 1.0 + 0.01 * np.random.default_rng(1).random((int(fluid.sum()), 19))
        lattice.f.from_numpy(f.ravel())

        initial = lattice.total_mass()
        for _ in range(30):
            lattice.step()
        assert lattice.total_mass() == pytest.approx(initial, rel=1e-12)
        lattice.close()
