"""
共用測試夾具
====================

- 直線孔隙網絡 (Hagen-Poiseuille 解析解可驗證)
- 小網格數值設定 (讓 LBM 測試在數秒內完成)
"""

import pytest

from pnm_perm.config.config_manager import SimulationSettings
from pnm_perm.network import FlowAxis, PoreNetworkModel
from pnm_perm.physics.geometry import SimulationContext, compute_sample_geometry

PORE_RADIUS = 5.0          # µm → 截面積 (2·5 µm)² = 1e-10 m²
THROAT_RADIUS = 2.0        # µm
SPACING = 10.0             # µm
VISCOSITY = 1e-3           # Pa·s
INLET_PRESSURE = 10000.0   # Pa
OUTLET_PRESSURE = 0.0


def line_network(n_pores: int = 10, spacing: float = SPACING, porosity=None) -> PoreNetworkModel:
    """沿 x 軸等距排列的孔隙，相鄰孔隙以喉道相連"""
    centers = [(i * spacing, 0.0, 0.0) for i in range(n_pores)]
    connections = [(i, i + 1) for i in range(n_pores - 1)]
    return PoreNetworkModel.from_arrays(
        centers,
        [PORE_RADIUS] * n_pores,
        connections,
        [THROAT_RADIUS] * len(connections),
        [spacing] * len(connections),
        porosity=porosity,
    )


def make_context(model: PoreNetworkModel, axis=FlowAxis.X, viscosity=VISCOSITY,
                 inlet_pressure=INLET_PRESSURE, outlet_pressure=OUTLET_PRESSURE, **kwargs):
    return SimulationContext(
        model=model,
        axis=axis,
        viscosity=viscosity,
        inlet_pressure=inlet_pressure,
        outlet_pressure=outlet_pressure,
        geometry=compute_sample_geometry(model, axis),
        **kwargs,
    )


@pytest.fixture
def line_model():
    return line_network()


@pytest.fixture
def small_settings():
    """小網格、少迭代的設定"""
    return SimulationSettings(
        max_grid_cpu=24,
        max_grid_gpu=24,
        lbm_min_iterations=10,
        lbm_max_iterations=60,
        lbm_log_interval=20,
        cpu_threads=2,
    )
