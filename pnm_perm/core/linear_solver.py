"""
孔隙導率網絡線性求解器
CPU: Gauss-Seidel (以前向三角求解 (D+L)x_new = b - U x_old 精確實現)
GPU: 平行 Jacobi，見 backends.gpu_backend

收斂判據：‖x_new - x_old‖₂ < tolerance，或達迭代上限
|A_ii| ≤ SINGULAR_DIAGONAL_EPS·max_j|A_ij| 的未知數視為奇異，保持不變
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve_triangular

from ..config import config
from ..error_handling import NumericalNonConvergenceError, SimulationErrorHandler
from ..utils.logger import SimulationLogger

logger = SimulationLogger(__name__, "LinearSolver")


@dataclass(frozen=True)
class SolverResult:
    """迭代求解結果"""
    solution: np.ndarray
    iterations: int
    delta_norm: float
    residual_history: Tuple[float, ...]
    converged: bool

    @property
    def final_residual(self) -> float:
        return self.residual_history[-1] if self.residual_history else 0.0


def singular_rows(matrix: sp.csr_matrix, eps: float = config.SINGULAR_DIAGONAL_EPS) -> np.ndarray:
    """對角元素相對於該列最大元素過小的列 (布林遮罩)；全零列亦為奇異"""
    matrix = sp.csr_matrix(matrix)
    row_scale = abs(matrix).max(axis=1).toarray().ravel()
    return np.abs(matrix.diagonal()) <= eps * row_scale


def residual_norm(matrix: sp.csr_matrix, x: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(matrix @ x - b))


def report_non_convergence(name: str, iterations: int, delta: float,
                           error_handler: Optional[SimulationErrorHandler]) -> None:
    """達上限時記錄 NumericalNonConvergence (保留最後解)"""
    error = NumericalNonConvergenceError(
        f"{name} 在 {iterations} 次迭代內未收斂 (Δ={delta:.3e})",
        {"solver": name, "iterations": iterations, "delta_norm": delta},
    )
    if error_handler is not None:
        error_handler.handle_error(error)
    else:
        logger.warning(f"⚠️ {error}")


def _split_gauss_seidel(matrix: sp.csr_matrix, singular: np.ndarray):
    """拆成 (D+L) 與 U，奇異列改為單位列"""
    lower = sp.tril(matrix, k=0, format="lil")
    upper = sp.triu(matrix, k=1, format="lil")
    for i in np.flatnonzero(singular):
        lower.rows[i] = [i]
        lower.data[i] = [1.0]
        upper.rows[i] = []
        upper.data[i] = []
    return lower.tocsr(), upper.tocsr()


def gauss_seidel(matrix, b: np.ndarray, x0: Optional[np.ndarray] = None,
                 tolerance: float = config.SOLVER_TOLERANCE,
                 max_iterations: int = config.CPU_SOLVER_MAX_ITERATIONS,
                 error_handler: Optional[SimulationErrorHandler] = None) -> SolverResult:
    """
    Gauss-Seidel 迭代求解 Ax=b

    每次掃描等價於逐列更新 x_i ← (b_i − Σ_{j≠i} A_ij x_j) / A_ii，
    並立即使用本次掃描已更新的值。

    Args:
        matrix: N×N 稀疏矩陣 (任何 scipy.sparse 格式)
        b: 右端項
        x0: 初始猜測 (預設全零)
        tolerance: ‖x_new − x_old‖₂ 收斂門檻
        max_iterations: 迭代上限
        error_handler: 未收斂時記錄警告

    Returns:
        SolverResult: 達上限時為最後一次迭代結果，converged=False
    """
    matrix = sp.csr_matrix(matrix, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    n = b.shape[0]
    x = np.zeros(n) if x0 is None else np.array(x0, dtype=np.float64)

    singular = singular_rows(matrix)
    if singular.any():
        logger.warning(f"⚠️ {int(singular.sum())} 個未知數對角元素過小，保持初始值")
    lower, upper = _split_gauss_seidel(matrix, singular)

    residuals = []
    delta = np.inf
    converged = False
    iteration = 0
    while iteration < max_iterations:
        rhs = b - upper @ x
        rhs[singular] = x[singular]
        x_new = spsolve_triangular(lower, rhs, lower=True)
        iteration += 1

        delta = float(np.linalg.norm(x_new - x))
        x = x_new
        residuals.append(residual_norm(matrix, x, b))

        if iteration % config.SOLVER_LOG_INTERVAL == 0:
            logger.debug(f"GS 迭代 {iteration}: Δ={delta:.3e}, ‖r‖={residuals[-1]:.3e}")
        if delta < tolerance:
            converged = True
            break

    if converged:
        logger.info(f"✅ Gauss-Seidel 收斂: {iteration} 次迭代, ‖r‖={residuals[-1]:.3e}")
    else:
        report_non_convergence("Gauss-Seidel", iteration, delta, error_handler)

    return SolverResult(x, iteration, float(delta), tuple(residuals), converged)
