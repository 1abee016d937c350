"""
結果物件與迂曲度修正測試
"""

import pytest

from pnm_perm.config import config
from pnm_perm.network import FlowAxis
from pnm_perm.results import (
    Method, MethodResult, SimulationResultBuilder, apply_tortuosity,
)


class TestTortuosity:
    """k/τ² 修正"""

    def test_identity_at_one(self):
        assert apply_tortuosity(2.5, 1.0) == 2.5

    def test_strictly_decreasing_above_one(self):
        values = [apply_tortuosity(1.0, tau) for tau in (1.0, 1.2, 1.5, 2.0, 3.0)]
        assert all(a > b for a, b in zip(values, values[1:]))

    @pytest.mark.parametrize("tau", [0.0, -1.0])
    def test_non_positive_tau_not_applied(self, tau):
        assert apply_tortuosity(3.0, tau) == 3.0

    def test_method_result_keeps_raw_and_corrected(self):
        result = MethodResult.raw(Method.DARCY, 4.0).with_tortuosity(2.0)
        assert result.permeability_darcy == 4.0
        assert result.corrected_permeability_darcy == 1.0
        assert result.permeability_millidarcy == 4.0 * config.MILLIDARCY_PER_DARCY
        assert result.corrected_permeability_millidarcy == 1000.0


class TestResults:
    """不可變性與建構器"""

    def test_mappings_read_only(self):
        result = MethodResult.raw(Method.DARCY, 1.0, pressure_field={0: 1.0})
        with pytest.raises(TypeError):
            result.pressure_field[0] = 2.0
        with pytest.raises(AttributeError):
            result.permeability_darcy = 3.0

    def test_failure_result(self):
        result = MethodResult.failure(Method.LATTICE_BOLTZMANN, "boom")
        assert result.failed
        assert result.permeability_darcy == 0.0
        assert result.error == "boom"

    def test_builder_assembles_result(self):
        builder = SimulationResultBuilder(FlowAxis.Z, 1e-3, 2.0, 1.0, 1.5)
        builder.set_geometry(1e-4, 1e-8, [0, 1], {8, 9})
        builder.add(MethodResult.raw(Method.DARCY, 0.5))
        builder.add(MethodResult.raw(Method.KOZENY_CARMAN, 0.7).with_diagnostics(porosity=0.3))
        result = builder.build()

        assert result.flow_axis is FlowAxis.Z
        assert result.pressure_drop == 1.0
        assert result.inlet_pores == frozenset({0, 1})
        assert result.lattice_boltzmann is None
        assert set(result.methods()) == {Method.DARCY, Method.KOZENY_CARMAN}
        assert result.get(Method.KOZENY_CARMAN).diagnostics["porosity"] == 0.3

        summary = result.summary()
        assert summary["flow_axis"] == "z"
        assert set(summary["methods"]) == {"darcy", "kozeny_carman"}
