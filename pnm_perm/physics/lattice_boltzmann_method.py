"""
Lattice-Boltzmann 法 (D3Q19 BGK)
孔隙網絡體素化後，以入口/出口固定密度驅動流動至穩態，
由中段截面流量求滲透率

單位換算：格距 dx = 解析度，時間步 dt 由黏滯度匹配
ν_lu·dx² = ν_phys·dt 決定，等價於 k = k_lu·dx²。
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from ..config import config
from ..config.config_manager import SimulationSettings
from ..core import lbm_algorithms as lbm
from ..core.backends.compute_backends import ComputeBackend, LatticeKernels
from ..core.voxelizer import VoxelGrid, find_boundary_cells, voxelize
from ..error_handling import DegenerateGeometryError, NumericalNonConvergenceError
from ..network import FlowAxis
from ..results import Method, MethodResult
from ..utils.logger import SimulationLogger
from .base import PermeabilityMethod
from .geometry import SimulationContext, darcy_permeability, linear_pressure_field


@dataclass(frozen=True)
class LatticeRun:
    """單次格子模擬的穩態結果"""
    grid: VoxelGrid
    density: np.ndarray            # (n,)
    velocity: np.ndarray           # (n, 3)
    inlet_cells: np.ndarray
    outlet_cells: np.ndarray
    iterations: int
    converged: bool
    max_velocity_change: float
    initial_mass: float
    final_mass: float


def iterate_to_steady_state(lattice: LatticeKernels, settings: SimulationSettings,
                            logger: Optional[SimulationLogger] = None) -> Tuple[int, bool, float]:
    """
    迭代至最大速度分量變化 < lbm_tolerance

    至少 lbm_min_iterations 次，最多 lbm_max_iterations 次，
    每 lbm_log_interval 次記錄進度。

    Returns:
        (iterations, converged, last_change)
    """
    change = float("inf")
    for iteration in range(1, settings.lbm_max_iterations + 1):
        lattice.step()
        change = lattice.max_velocity_change()
        if logger is not None and iteration % settings.lbm_log_interval == 0:
            logger.info(f"LBM 迭代 {iteration}/{settings.lbm_max_iterations}: max|Δu|={change:.3e}")
        if iteration >= settings.lbm_min_iterations and change < settings.lbm_tolerance:
            return iteration, True, change
    return settings.lbm_max_iterations, False, change


def boundary_densities(settings: SimulationSettings) -> Tuple[float, float]:
    """入口/出口格子密度 1 ± δρ/2"""
    half = 0.5 * settings.lbm_density_difference
    return config.LBM_REFERENCE_DENSITY + half, config.LBM_REFERENCE_DENSITY - half


class LatticeBoltzmannMethod(PermeabilityMethod):
    """
    D3Q19 Lattice-Boltzmann 法

    流程：
    1. 體素化 (GPU 150 / CPU 100 格上限)
    2. 偵測入口/出口格點，設定固定密度
    3. 碰撞 → 串流/bounce-back → 壓力邊界，迭代至穩態
    4. 中段截面流量 → k；壓力場映射回孔隙
    """

    method = Method.LATTICE_BOLTZMANN

    def __init__(self, backend: Optional[ComputeBackend] = None,
                 settings: Optional[SimulationSettings] = None, closed_box: bool = False):
        super().__init__(backend, settings)
        self.closed_box = closed_box

    def compute(self, context: SimulationContext) -> MethodResult:
        run, backend_type = self.backend.run(
            lambda backend: (self.run_lattice(backend, context), backend.backend_type),
            context.error_handler,
        )
        return self._to_result(context, run, backend_type)

    def run_lattice(self, backend: ComputeBackend, context: SimulationContext) -> LatticeRun:
        """在指定後端上體素化並迭代至穩態"""
        settings = self.settings
        grid = voxelize(context.model, backend.max_grid)
        if self.closed_box:
            inlet = outlet = np.zeros(0, dtype=np.int64)
        else:
            inlet, outlet = find_boundary_cells(grid, context.axis, settings.boundary_scan_fraction)

        lattice = backend.create_lattice(grid.shape, grid.fluid.ravel(), 1.0 / settings.tau)
        try:
            if inlet.size and outlet.size:
                rho_in, rho_out = boundary_densities(settings)
                cells = np.concatenate([inlet, outlet])
                densities = np.concatenate([np.full(inlet.size, rho_in), np.full(outlet.size, rho_out)])
                lattice.set_pressure_boundaries(cells, densities)
            elif not self.closed_box:
                context.error_handler.handle_error(DegenerateGeometryError(
                    "找不到入口或出口流體格點，無壓力驅動", {"method": self.method.value}))

            initial_mass = lattice.total_mass()
            self.logger.info(
                f"🚀 開始 LBM: 網格 {grid.shape}, 入口 {inlet.size} 格, 出口 {outlet.size} 格 "
                f"(backend={backend.backend_type})"
            )
            iterations, converged, change = iterate_to_steady_state(lattice, settings, self.logger)
            run = LatticeRun(
                grid=grid,
                density=lattice.density(),
                velocity=lattice.velocity(),
                inlet_cells=inlet,
                outlet_cells=outlet,
                iterations=iterations,
                converged=converged,
                max_velocity_change=change,
                initial_mass=initial_mass,
                final_mass=lattice.total_mass(),
            )
        finally:
            lattice.close()

        if not converged:
            context.error_handler.handle_error(NumericalNonConvergenceError(
                f"LBM 在 {iterations} 次迭代內未達穩態 (max|Δu|={change:.3e})",
                {"method": self.method.value, "iterations": iterations},
            ))
        return run

    def lattice_flow(self, run: LatticeRun, axis: FlowAxis) -> Tuple[float, int]:
        """中段截面的軸向速度總和 (格子單位) 與流體格點數"""
        fluid = run.grid.fluid
        mid = fluid.shape[axis.index] // 2
        velocity = run.velocity[:, axis.index].reshape(fluid.shape)
        plane_fluid = np.take(fluid, mid, axis=axis.index)
        plane_velocity = np.take(velocity, mid, axis=axis.index)
        return float(plane_velocity[plane_fluid].sum()), int(plane_fluid.sum())

    def _permeability(self, context: SimulationContext, run: LatticeRun) -> Tuple[float, Dict]:
        """晶格量 → SI → k (Darcy)"""
        settings = self.settings
        grid = run.grid
        axis = context.axis
        q_lu, area_cells = self.lattice_flow(run, axis)
        rho_in, rho_out = boundary_densities(settings)

        dx = grid.resolution * config.MICRON_TO_M
        nu_lu = config.CS2 * (settings.tau - 0.5)
        nu_phys = context.viscosity / settings.fluid_density
        dt = nu_lu * dx * dx / nu_phys
        velocity_scale = dx / dt

        flow = abs(q_lu) * velocity_scale * dx * dx
        area = area_cells * dx * dx
        length = grid.shape[axis.index] * dx
        dp = lbm.lattice_pressure(rho_in - rho_out) * settings.fluid_density * velocity_scale ** 2

        k_lu = 0.0
        if area_cells:
            k_lu = abs(q_lu) * nu_lu * grid.shape[axis.index] / (area_cells * lbm.lattice_pressure(rho_in - rho_out))
        info = {
            "lattice_flow": q_lu,
            "plane_fluid_cells": area_cells,
            "dx": dx,
            "dt": dt,
            "lattice_permeability": k_lu,
        }

        if abs(q_lu) < config.LBM_FLOW_THRESHOLD or area_cells == 0 or dp <= 0:
            radii = context.model.throat_radii() * config.MICRON_TO_M
            estimate = float(np.mean(radii ** 2)) / 8.0 * grid.fluid_fraction / config.DARCY_TO_M2
            context.error_handler.handle_error(DegenerateGeometryError(
                f"LBM 流量過小 (|Q|={abs(q_lu):.3e})，改用解析估計 k={estimate:.4g} Darcy",
                {"method": self.method.value},
            ))
            info["analytic_estimate"] = True
            return estimate, info

        info["analytic_estimate"] = False
        info["flow_rate"] = flow
        return darcy_permeability(flow, context.viscosity, length, area, dp), info

    def _pressure_field(self, context: SimulationContext, run: LatticeRun) -> Dict[int, float]:
        """
        格點密度 → 孔隙壓力

        每個孔隙取其球內流體格點的平均密度，線性映射到 [p_out, p_in]。
        缺乏變化時改用沿流動軸的線性分布，入口/出口孔隙固定為最大/最小值。
        """
        model = context.model
        grid = run.grid
        p_in, p_out = context.inlet_pressure, context.outlet_pressure
        rho_in, rho_out = boundary_densities(self.settings)
        fluid = grid.fluid.ravel()

        densities = {}
        for pore in model.pores:
            cells = grid.cells_within(pore.center, pore.radius)
            cells = cells[fluid[cells]]
            if cells.size:
                densities[pore.id] = float(run.density[cells].mean())

        values = np.array(list(densities.values())) if densities else np.zeros(0)
        varied = values.size > 1 and (values.max() - values.min()) > \
            config.PRESSURE_VARIATION_THRESHOLD * max(abs(values.mean()), 1e-30)

        linear = linear_pressure_field(model, context.axis, p_in, p_out)
        if not varied:
            self.logger.warning("⚠️ LBM 壓力場缺乏變化，改用線性分布")
            high, low = max(p_in, p_out), min(p_in, p_out)
            field = dict(linear)
            for pore_id in context.geometry.inlet_pores:
                field[pore_id] = high
            for pore_id in context.geometry.outlet_pores:
                field[pore_id] = low
            return field

        field = {}
        for pore in model.pores:
            rho = densities.get(pore.id)
            if rho is None:
                field[pore.id] = linear[pore.id]
            else:
                field[pore.id] = p_out + (rho - rho_out) / (rho_in - rho_out) * (p_in - p_out)
        return field

    def _to_result(self, context: SimulationContext, run: LatticeRun, backend_type: str) -> MethodResult:
        permeability, info = self._permeability(context, run)
        self.logger.info(
            f"✅ k={permeability:.6g} Darcy ({run.iterations} 次迭代, "
            f"{'收斂' if run.converged else '未收斂'}, backend={backend_type})"
        )
        return MethodResult.raw(
            self.method,
            permeability,
            pressure_field=self._pressure_field(context, run),
            total_flow_rate=info.get("flow_rate", 0.0),
            diagnostics={
                "backend": backend_type,
                "grid_shape": run.grid.shape,
                "resolution_um": run.grid.resolution,
                "fluid_fraction": run.grid.fluid_fraction,
                "iterations": run.iterations,
                "converged": run.converged,
                "max_velocity_change": run.max_velocity_change,
                "inlet_cells": int(run.inlet_cells.size),
                "outlet_cells": int(run.outlet_cells.size),
                "initial_mass": run.initial_mass,
                "final_mass": run.final_mass,
                **info,
            },
        )
