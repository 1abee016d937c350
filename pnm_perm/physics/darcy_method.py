"""
Darcy 導率網絡法
喉道以 Hagen-Poiseuille 導率 g = πr⁴/(8μL) 連接孔隙，入口/出口孔隙
給定壓力，其餘孔隙滿足質量守恆，解出壓力場後由邊界流量求 k
"""

from typing import Tuple

import numpy as np
import scipy.sparse as sp

from ..config import config
from ..error_handling import DegenerateGeometryError
from ..network import PoreNetworkModel
from ..results import Method, MethodResult
from .base import PermeabilityMethod
from .geometry import SampleGeometry, SimulationContext, darcy_permeability


def boundary_conditions(model: PoreNetworkModel, geometry: SampleGeometry,
                        p_in: float, p_out: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    固定壓力孔隙遮罩與初始壓力

    出口覆蓋入口；自由孔隙初始值為 (p_in + p_out)/2。
    """
    n = model.pore_count
    fixed = np.zeros(n, dtype=bool)
    pressures = np.full(n, 0.5 * (p_in + p_out))
    for pore_id in geometry.inlet_pores:
        idx = model.pore_index(pore_id)
        fixed[idx] = True
        pressures[idx] = p_in
    for pore_id in geometry.outlet_pores:
        idx = model.pore_index(pore_id)
        fixed[idx] = True
        pressures[idx] = p_out
    return fixed, pressures


def assemble_conductance_matrix(model: PoreNetworkModel, conductances: np.ndarray,
                                fixed: np.ndarray, pressures: np.ndarray) -> Tuple[sp.csr_matrix, np.ndarray]:
    """
    組裝 N×N 導率矩陣

    固定孔隙 → 單位列，右端項 = 固定壓力；
    自由孔隙 → 對角 += Σg，非對角[j] −= g。
    """
    n = model.pore_count
    ends = model.throat_endpoints()
    i, j = ends[:, 0], ends[:, 1]
    free_i, free_j = ~fixed[i], ~fixed[j]
    fixed_idx = np.flatnonzero(fixed)

    rows = np.concatenate([i[free_i], i[free_i], j[free_j], j[free_j], fixed_idx])
    cols = np.concatenate([i[free_i], j[free_i], j[free_j], i[free_j], fixed_idx])
    vals = np.concatenate([
        conductances[free_i], -conductances[free_i],
        conductances[free_j], -conductances[free_j],
        np.ones(fixed_idx.size),
    ])
    matrix = sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    rhs = np.zeros(n)
    rhs[fixed] = pressures[fixed]
    return matrix, rhs


def boundary_flow(model: PoreNetworkModel, geometry: SampleGeometry, flows: np.ndarray) -> float:
    """
    跨越入口邊界的總流量

    恰有一端為「僅入口」孔隙的喉道；同時屬於出口的孔隙以出口計，
    入口直接連到出口的喉道也計入。
    """
    inlet_only = np.zeros(model.pore_count, dtype=bool)
    for pore_id in geometry.inlet_only:
        inlet_only[model.pore_index(pore_id)] = True

    ends = model.throat_endpoints()
    crossing = inlet_only[ends[:, 0]] != inlet_only[ends[:, 1]]
    return float(np.abs(flows[crossing]).sum())


class DarcyMethod(PermeabilityMethod):
    """
    Darcy 法

    流程：
    1. 後端計算喉道導率 (GPU kernel / numpy)
    2. 組裝稀疏矩陣並以後端求解器求壓力 (Jacobi / Gauss-Seidel)
    3. 喉道流量 g·(p1 − p2)，邊界總流量 Q
    4. k = Qμl/(AΔp)
    """

    method = Method.DARCY

    def compute(self, context: SimulationContext) -> MethodResult:
        model = context.model
        geometry = context.geometry
        handler = context.error_handler

        short = model.throat_lengths() < config.MIN_THROAT_LENGTH_UM
        if short.any():
            handler.handle_error(DegenerateGeometryError(
                f"{int(short.sum())} 個喉道長度過短，以 {config.MIN_THROAT_LENGTH_UM} µm 計算",
                {"method": self.method.value},
            ))

        fixed, initial = boundary_conditions(model, geometry, context.inlet_pressure, context.outlet_pressure)

        def workload(backend):
            g = backend.compute_conductances(model.throat_radii(), model.throat_lengths(), context.viscosity)
            matrix, rhs = assemble_conductance_matrix(model, g, fixed, initial)
            return backend.backend_type, g, backend.solve_linear(matrix, rhs, initial.copy(), handler)

        backend_type, g, solver = self.backend.run(workload, handler)
        pressures = solver.solution

        ends = model.throat_endpoints()
        flows = g * (pressures[ends[:, 0]] - pressures[ends[:, 1]])
        total_flow = boundary_flow(model, geometry, flows)

        dp = context.pressure_drop
        if dp == 0 or geometry.area <= 0 or geometry.length <= 0:
            handler.handle_error(DegenerateGeometryError(
                f"Δp={dp}, A={geometry.area}, L={geometry.length}，Darcy k 設為 0",
                {"method": self.method.value},
            ))
            permeability = 0.0
        else:
            permeability = darcy_permeability(total_flow, context.viscosity, geometry.length, geometry.area, dp)

        self.logger.info(
            f"✅ k={permeability:.6g} Darcy, Q={total_flow:.4e} m³/s "
            f"({solver.iterations} 次迭代, backend={backend_type})"
        )
        return MethodResult.raw(
            self.method,
            permeability,
            pressure_field={p.id: float(pressures[i]) for i, p in enumerate(model.pores)},
            throat_flow_rates={t.id: float(flows[k]) for k, t in enumerate(model.throats)},
            total_flow_rate=total_flow,
            diagnostics={
                "backend": backend_type,
                "iterations": solver.iterations,
                "converged": solver.converged,
                "delta_norm": solver.delta_norm,
                "residual": solver.final_residual,
                "residual_history": solver.residual_history,
            },
        )
