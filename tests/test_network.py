"""
孔隙網絡資料模型測試
====================

- FlowAxis 解析
- 建構時驗證 (懸空喉道、重複 id)
- 陣列輔助函式
"""

import numpy as np
import pytest

from pnm_perm.error_handling import InvalidInputError
from pnm_perm.network import FlowAxis, Pore, PoreNetworkModel, Throat

from conftest import line_network


class TestFlowAxis:
    """流動方向解析"""

    @pytest.mark.parametrize("value, expected", [
        ("x", FlowAxis.X), ("Y", FlowAxis.Y), (2, FlowAxis.Z), (FlowAxis.Y, FlowAxis.Y),
    ])
    def test_parse(self, value, expected):
        assert FlowAxis.parse(value) is expected

    def test_perpendicular_axes(self):
        assert FlowAxis.X.perpendicular == (1, 2)
        assert FlowAxis.Y.perpendicular == (0, 2)
        assert FlowAxis.Z.perpendicular == (0, 1)

    def test_invalid_axis(self):
        with pytest.raises(InvalidInputError):
            FlowAxis.parse("w")


class TestPoreNetworkModel:
    """模型建構與不變量"""

    def test_dangling_throat_rejected(self):
        pores = (Pore(0, (0, 0, 0), 1.0), Pore(1, (5, 0, 0), 1.0))
        with pytest.raises(InvalidInputError):
            PoreNetworkModel(pores, (Throat(0, 0, 7, 0.5, 5.0),))

    def test_duplicate_pore_id_rejected(self):
        pores = (Pore(3, (0, 0, 0), 1.0), Pore(3, (5, 0, 0), 1.0))
        with pytest.raises(InvalidInputError):
            PoreNetworkModel(pores, ())

    def test_parallel_throats_allowed(self):
        pores = (Pore(10, (0, 0, 0), 1.0), Pore(20, (5, 0, 0), 1.0))
        throats = (Throat(0, 10, 20, 0.5, 5.0), Throat(1, 20, 10, 0.3, 5.0))
        model = PoreNetworkModel(pores, throats)
        assert model.throat_count == 2
        np.testing.assert_array_equal(model.throat_endpoints(), [[0, 1], [1, 0]])

    def test_array_helpers(self):
        model = line_network(4)
        assert model.pore_count == 4
        assert model.throat_count == 3
        assert model.centers().shape == (4, 3)
        np.testing.assert_allclose(model.axis_coordinates(FlowAxis.X), [0, 10, 20, 30])
        assert model.pore_index(2) == 2
        assert [t.id for t in model.iter_connections(1)] == [0, 1]

    def test_preset_porosity(self):
        assert not line_network(3).has_preset_porosity
        assert not line_network(3, porosity=0.0).has_preset_porosity
        assert line_network(3, porosity=0.3).has_preset_porosity

    def test_model_is_immutable(self):
        model = line_network(3)
        with pytest.raises(AttributeError):
            model.porosity = 0.5
