"""
模擬器整合測試
====================

- 四種方法皆產生非負、非 NaN 的 k
- 迂曲度修正統一套用
- 進度單調遞增，接收端例外不影響計算
- 單一方法失敗不影響其他方法
- 不合法輸入立即失敗
"""

import math
import sys

import pytest

from pnm_perm import (
    InvalidInputError, Method, PermeabilitySimulator, PoreNetworkModel, ProgressSink,
)
from pnm_perm.error_handling import ErrorCategory
from pnm_perm.network import Pore
from pnm_perm.physics import DarcyMethod

from conftest import INLET_PRESSURE, OUTLET_PRESSURE, VISCOSITY


class RecordingSink(ProgressSink):
    def __init__(self):
        self.values = []

    def report(self, percent):
        self.values.append(percent)


@pytest.fixture
def simulator(small_settings):
    with PermeabilitySimulator(prefer_gpu=False, settings=small_settings) as sim:
        yield sim


def run(sim, model, **kwargs):
    kwargs.setdefault("tortuosity", 1.5)
    return sim.simulate(model, "x", VISCOSITY, INLET_PRESSURE, OUTLET_PRESSURE, **kwargs)


class TestSimulation:
    """完整流程"""

    def test_all_methods_finite_non_negative(self, simulator, line_model):
        result = run(simulator, line_model, darcy=True, lattice_boltzmann=True,
                     kozeny_carman=True, navier_stokes=True)

        assert set(result.methods()) == set(Method)
        for method_result in result.methods().values():
            assert not method_result.failed
            for value in (method_result.permeability_darcy, method_result.corrected_permeability_darcy):
                assert math.isfinite(value)
                assert value >= 0.0

    def test_tortuosity_applied_uniformly(self, simulator, line_model):
        result = run(simulator, line_model, kozeny_carman=True, navier_stokes=True, tortuosity=2.0)
        for method_result in result.methods().values():
            assert method_result.corrected_permeability_darcy == pytest.approx(
                method_result.permeability_darcy / 4.0)

    def test_zero_tortuosity_not_applied(self, simulator, line_model):
        result = run(simulator, line_model, tortuosity=0.0)
        assert result.darcy.corrected_permeability_darcy == result.darcy.permeability_darcy

    def test_shared_geometry(self, simulator, line_model):
        result = run(simulator, line_model)
        assert result.model_length == pytest.approx(90e-6)
        assert result.model_area == pytest.approx(1e-10)
        assert result.inlet_pores == frozenset({0})
        assert result.outlet_pores == frozenset({9})
        assert result.lattice_boltzmann is None

    def test_lbm_triggers_kozeny_carman(self, simulator, line_model):
        result = run(simulator, line_model, darcy=False, lattice_boltzmann=True)
        assert result.kozeny_carman is not None
        assert result.darcy is None
        if result.lattice_boltzmann.permeability_darcy > 0:
            ratio = result.lattice_boltzmann.diagnostics["kozeny_carman_ratio"]
            assert ratio == pytest.approx(
                result.lattice_boltzmann.permeability_darcy / result.kozeny_carman.permeability_darcy)

    def test_navier_stokes_uses_darcy_permeability(self, simulator, line_model):
        result = run(simulator, line_model, navier_stokes=True)
        assert result.navier_stokes.diagnostics["initial_permeability_source"] == "darcy"

    def test_submit_returns_future(self, simulator, line_model):
        future = simulator.submit(line_model, "x", VISCOSITY, INLET_PRESSURE, OUTLET_PRESSURE,
                                  kozeny_carman=True)
        result = future.result(timeout=60)
        assert result.darcy is not None and result.kozeny_carman is not None


class TestProgress:
    """進度回報"""

    def test_milestones_monotonic(self, simulator, line_model):
        sink = RecordingSink()
        run(simulator, line_model, navier_stokes=True, progress=sink)
        assert sink.values == [5, 15, 40, 70, 100]

    def test_plain_callable_adapted(self, simulator, line_model):
        seen = []
        run(simulator, line_model, progress=seen.append)
        assert seen == sorted(seen) and seen[-1] == 100

    def test_failing_sink_does_not_abort(self, simulator, line_model):
        def broken(percent):
            raise RuntimeError("sink closed")

        result = run(simulator, line_model, progress=broken)
        assert not result.darcy.failed


class TestFailures:
    """錯誤處理"""

    def test_method_failure_isolated(self, simulator, line_model, monkeypatch):
        def explode(self, context):
            raise RuntimeError("solver exploded")

        monkeypatch.setattr(DarcyMethod, "compute", explode)
        result = run(simulator, line_model, kozeny_carman=True, navier_stokes=True)

        assert result.darcy.failed
        assert result.darcy.permeability_darcy == 0.0
        assert "solver exploded" in result.darcy.error
        assert not result.kozeny_carman.failed
        assert result.kozeny_carman.permeability_darcy > 0.0
        assert result.navier_stokes.diagnostics["initial_permeability_source"] == "hagen_poiseuille"
        assert any(r.category is ErrorCategory.METHOD for r in result.error_log)

    def test_empty_network_rejected(self, simulator):
        with pytest.raises(InvalidInputError):
            run(simulator, PoreNetworkModel((), ()))

    def test_network_without_throats_rejected(self, simulator):
        model = PoreNetworkModel((Pore(0, (0, 0, 0), 1.0), Pore(1, (5, 0, 0), 1.0)), ())
        with pytest.raises(InvalidInputError):
            run(simulator, model)

    @pytest.mark.parametrize("viscosity", [0.0, -1e-3, float("nan"), float("inf")])
    def test_bad_viscosity_rejected(self, simulator, line_model, viscosity):
        with pytest.raises(InvalidInputError):
            simulator.simulate(line_model, "x", viscosity, INLET_PRESSURE, OUTLET_PRESSURE)

    def test_invalid_input_is_value_error(self, simulator):
        with pytest.raises(ValueError):
            simulator.simulate(PoreNetworkModel((), ()), "x", 1e-3, 1.0, 0.0)

    def test_closed_simulator_refuses_work(self, small_settings, line_model):
        sim = PermeabilitySimulator(prefer_gpu=False, settings=small_settings)
        sim.close()
        with pytest.raises(RuntimeError):
            run(sim, line_model)

    def test_default_gpu_preference_survives_missing_taichi(self, small_settings, line_model, monkeypatch):
        monkeypatch.setitem(sys.modules, "taichi", None)
        monkeypatch.delitem(sys.modules, "pnm_perm.core.backends.gpu_backend", raising=False)

        with PermeabilitySimulator(settings=small_settings) as sim:
            assert sim.backend.backend_type == "cpu"
            result = run(sim, line_model)

        darcy = result.methods()[Method.DARCY]
        assert not darcy.failed
        assert darcy.permeability_darcy > 0.0
        assert any(r.category is ErrorCategory.DEVICE for r in result.error_log)
