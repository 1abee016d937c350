"""
Kozeny-Carman 經驗式測試
====================

- k 隨孔隙率嚴格遞增、隨比表面積嚴格遞減
- 預設孔隙率 0.3 時與代數公式逐位元相同
- 孔隙率越界時限制並記錄
- 孔隙帶有量測體積/面積時優先採用
"""

import math

import numpy as np
import pytest

from pnm_perm.config import config
from pnm_perm.error_handling import ErrorCategory, SimulationErrorHandler
from pnm_perm.network import Pore, PoreNetworkModel, Throat
from pnm_perm.physics.kozeny_carman import (
    KozenyCarmanMethod, effective_porosity, kozeny_carman_permeability, pore_space_totals,
)

from conftest import line_network, make_context


class TestKozenyCarmanFormula:
    """純代數性質"""

    def test_strictly_increasing_in_porosity(self):
        values = [kozeny_carman_permeability(eps, 1e5) for eps in np.linspace(0.05, 0.95, 19)]
        assert all(a < b for a, b in zip(values, values[1:]))

    def test_strictly_decreasing_in_surface(self):
        values = [kozeny_carman_permeability(0.3, s) for s in (1e4, 5e4, 1e5, 5e5, 1e6)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_kozeny_constant_scales_inverse(self):
        assert kozeny_carman_permeability(0.3, 1e5, 10.0) == pytest.approx(
            kozeny_carman_permeability(0.3, 1e5, 5.0) / 2.0)


class TestKozenyCarmanMethod:
    """方法層級"""

    def test_preset_porosity_bit_for_bit(self):
        model = line_network(5, porosity=0.3)
        result = KozenyCarmanMethod().compute(make_context(model))

        volume = 0.0
        surface = 0.0
        for pore in model.pores:
            r = pore.radius * 1e-6
            volume += (4.0 / 3.0) * math.pi * r ** 3
            surface += 4.0 * math.pi * r ** 2
        for throat in model.throats:
            r = throat.radius * 1e-6
            length = throat.length * 1e-6
            volume += math.pi * r ** 2 * length
            surface += 2.0 * math.pi * r * length
        s = surface / volume
        expected = 0.3 ** 3 / (5.0 * s ** 2 * (1.0 - 0.3) ** 2) / 9.869233e-13

        assert result.permeability_darcy == expected
        assert result.diagnostics["porosity"] == 0.3
        assert result.diagnostics["porosity_source"] == "preset"
        assert result.diagnostics["specific_surface_area"] == s

    def test_geometric_porosity(self, line_model):
        geometry = make_context(line_model).geometry
        volume, _ = pore_space_totals(line_model)
        porosity = effective_porosity(line_model, geometry.length, geometry.area)
        assert porosity == pytest.approx(volume / (geometry.length * geometry.area))
        assert config.MIN_POROSITY <= porosity <= config.MAX_POROSITY

    def test_porosity_clamped_and_recorded(self):
        pores = (Pore(0, (0, 0, 0), 5.0), Pore(1, (1, 0, 0), 5.0))
        model = PoreNetworkModel(pores, (Throat(0, 0, 1, 2.0, 1.0),))
        handler = SimulationErrorHandler("test")
        result = KozenyCarmanMethod().compute(make_context(model, error_handler=handler))

        assert result.diagnostics["porosity"] == config.MAX_POROSITY
        assert math.isfinite(result.permeability_darcy)
        assert any(r.category is ErrorCategory.GEOMETRY for r in handler.records())

    def test_measured_pore_volume_and_area_preferred(self):
        throats = (Throat(0, 0, 1, 2.0, 10.0),)
        sphere = PoreNetworkModel((Pore(0, (0, 0, 0), 5.0), Pore(1, (10, 0, 0), 5.0)), throats)
        measured = PoreNetworkModel(
            (Pore(0, (0, 0, 0), 5.0, volume=800.0, area=450.0), Pore(1, (10, 0, 0), 5.0)), throats)

        v_sphere, s_sphere = pore_space_totals(sphere)
        v_measured, s_measured = pore_space_totals(measured)

        r = 5e-6
        assert v_measured == pytest.approx(v_sphere - (4.0 / 3.0) * math.pi * r ** 3 + 800.0e-18)
        assert s_measured == pytest.approx(s_sphere - 4.0 * math.pi * r ** 2 + 450.0e-12)
