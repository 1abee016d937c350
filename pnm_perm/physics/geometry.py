"""
樣品幾何與模擬條件
所有方法共用的長度、截面積與入口/出口孔隙，只計算一次

k = Qμl/(AΔp) 中的 l、A 皆由此取得，讓不同方法的結果可以互相比較。
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple

import numpy as np

from ..config import config
from ..error_handling import SimulationErrorHandler
from ..network import FlowAxis, PoreNetworkModel


@dataclass(frozen=True)
class SampleGeometry:
    """樣品幾何 (SI)"""
    length: float                          # m，孔隙中心沿流動軸的跨度
    area: float                            # m²，垂直軸包圍盒 (含孔隙半徑)
    inlet_pores: FrozenSet[int]
    outlet_pores: FrozenSet[int]

    @property
    def inlet_only(self) -> FrozenSet[int]:
        """僅為入口的孔隙 (同時為出口者以出口為準)"""
        return self.inlet_pores - self.outlet_pores


def model_length(model: PoreNetworkModel, axis: FlowAxis) -> float:
    coords = model.axis_coordinates(axis)
    return float(coords.max() - coords.min()) * config.MICRON_TO_M


def cross_sectional_area(model: PoreNetworkModel, axis: FlowAxis) -> float:
    centers = model.centers()
    radii = model.pore_radii()
    a, b = axis.perpendicular
    span_a = (centers[:, a] + radii).max() - (centers[:, a] - radii).min()
    span_b = (centers[:, b] + radii).max() - (centers[:, b] - radii).min()
    return float(span_a * span_b) * config.MICRON2_TO_M2


def select_boundary_pores(model: PoreNetworkModel, axis: FlowAxis,
                          fraction: float = config.BOUNDARY_FRACTION) -> Tuple[FrozenSet[int], FrozenSet[int]]:
    """
    入口/出口孔隙

    依 (軸座標, 孔隙 id) 穩定排序，兩端各取 max(1, int(N·fraction)) 個。
    """
    order = sorted(model.pores, key=lambda p: (p.center[axis.index], p.id))
    count = max(1, int(len(order) * fraction))
    inlet = frozenset(p.id for p in order[:count])
    outlet = frozenset(p.id for p in order[len(order) - count:])
    return inlet, outlet


def compute_sample_geometry(model: PoreNetworkModel, axis: FlowAxis,
                            boundary_fraction: float = config.BOUNDARY_FRACTION) -> SampleGeometry:
    inlet, outlet = select_boundary_pores(model, axis, boundary_fraction)
    return SampleGeometry(
        length=model_length(model, axis),
        area=cross_sectional_area(model, axis),
        inlet_pores=inlet,
        outlet_pores=outlet,
    )


def darcy_permeability(flow_rate: float, viscosity: float, length: float,
                       area: float, pressure_drop: float) -> float:
    """k = Qμl/(AΔp)，m² → Darcy"""
    return flow_rate * viscosity * length / (area * pressure_drop) / config.DARCY_TO_M2


def linear_pressure_field(model: PoreNetworkModel, axis: FlowAxis, p_in: float, p_out: float) -> dict:
    """沿流動軸線性內插的壓力場 {pore id: Pa}"""
    coords = model.axis_coordinates(axis)
    lo, hi = coords.min(), coords.max()
    span = hi - lo
    t = (coords - lo) / span if span > 0 else np.zeros_like(coords)
    return {p.id: float(p_in + (p_out - p_in) * s) for p, s in zip(model.pores, t)}


@dataclass(frozen=True)
class SimulationContext:
    """單次模擬條件，方法間唯讀共享"""
    model: PoreNetworkModel
    axis: FlowAxis
    viscosity: float                       # Pa·s
    inlet_pressure: float                  # Pa
    outlet_pressure: float                 # Pa
    geometry: SampleGeometry
    error_handler: SimulationErrorHandler = field(default_factory=SimulationErrorHandler)
    darcy_permeability: Optional[float] = None  # Darcy，供 Navier-Stokes 初始速度

    @property
    def pressure_drop(self) -> float:
        return abs(self.inlet_pressure - self.outlet_pressure)
