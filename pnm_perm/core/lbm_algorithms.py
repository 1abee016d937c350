"""
LBM統一算法庫 - D3Q19 主機端 (numpy) 實現
====================================

CPU 後端與 LBM 方法共用的核心數值方法。分布函數以扁平緩衝區
儲存，索引為 ((i·ny + j)·nz + k)·19 + q，等價於 (n_cells, 19) 視圖。

- 平衡分布: f_eq = w·ρ·(1 + 3e·u + 4.5(e·u)² − 1.5|u|²)
- BGK碰撞: f' = f − ω(f − f_eq)
- 拉式串流 (pull) + 半步 bounce-back
- 壓力邊界: 固定密度，速度由現有分布重算，重設為平衡態
"""

from typing import Tuple

import numpy as np

from ..config import config

Q = config.Q_3D

# (19, 3) 離散速度
VELOCITIES = np.stack([config.CX_3D, config.CY_3D, config.CZ_3D], axis=1).astype(np.float64)
WEIGHTS = config.WEIGHTS_3D
OPPOSITE = config.OPPOSITE_3D.astype(np.int64)


def cell_index(i, j, k, ny: int, nz: int):
    """格點扁平索引"""
    return (i * ny + j) * nz + k


def distribution_index(i, j, k, q, ny: int, nz: int):
    """分布函數扁平索引 ((i·ny + j)·nz + k)·19 + q"""
    return cell_index(i, j, k, ny, nz) * Q + q


def lattice_pressure(rho):
    """格子單位壓力 p = ρ c_s²"""
    return rho * config.CS2


def equilibrium(rho: np.ndarray, u: np.ndarray) -> np.ndarray:
    """
    D3Q19平衡分布函數

    Args:
        rho: (n,) 密度
        u: (n, 3) 速度

    Returns:
        (n, 19) 平衡分布
    """
    eu = u @ VELOCITIES.T
    u_sq = np.einsum("ij,ij->i", u, u)[:, None]
    return WEIGHTS[None, :] * rho[:, None] * (
        1.0 + config.INV_CS2 * eu + 4.5 * eu * eu - 1.5 * u_sq
    )


def macroscopic(f: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """由 (n, 19) 分布計算密度與速度，ρ≈0 的格點速度為零"""
    rho = f.sum(axis=1)
    momentum = f @ VELOCITIES
    u = np.zeros_like(momentum)
    ok = rho > 1e-12
    u[ok] = momentum[ok] / rho[ok, None]
    return rho, u


def bgk_collide(f: np.ndarray, fluid: np.ndarray, omega: float) -> np.ndarray:
    """BGK碰撞，固體格點輸出為零"""
    rho, u = macroscopic(f)
    f_post = f - omega * (f - equilibrium(rho, u))
    f_post[~fluid] = 0.0
    return f_post


def build_streaming_sources(shape: Tuple[int, int, int], fluid: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    預先計算拉式串流的來源格點

    Returns:
        sources: (n, 19) int32，來源格點扁平索引 (無效時為 0)
        valid: (n, 19) bool，來源在界內且為流體
    """
    nx, ny, nz = shape
    i, j, k = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij")
    i, j, k = i.ravel(), j.ravel(), k.ravel()
    n = nx * ny * nz

    sources = np.zeros((n, Q), dtype=np.int32)
    valid = np.zeros((n, Q), dtype=bool)
    for q in range(Q):
        si = i - config.CX_3D[q]
        sj = j - config.CY_3D[q]
        sk = k - config.CZ_3D[q]
        inside = (si >= 0) & (si < nx) & (sj >= 0) & (sj < ny) & (sk >= 0) & (sk < nz)
        src = np.where(inside, cell_index(si, sj, sk, ny, nz), 0)
        sources[:, q] = src
        valid[:, q] = inside & fluid[src] & fluid
    return sources, valid


def pull_stream(f_post: np.ndarray, f_out: np.ndarray, sources: np.ndarray,
                valid: np.ndarray, cells: slice) -> None:
    """
    拉式串流 (僅處理 cells 範圍)

    f_out[x, q] = f_post[x − e_q, q]，來源為固體或界外時
    改取同格點反向分量 f_post[x, opp(q)] (bounce-back)
    """
    src = sources[cells]
    ok = valid[cells]
    local = f_post[cells]
    for q in range(Q):
        f_out[cells, q] = np.where(ok[:, q], f_post[src[:, q], q], local[:, OPPOSITE[q]])


def apply_pressure_boundary(f: np.ndarray, cells: np.ndarray, rho_fixed: np.ndarray) -> None:
    """Zou-He 式壓力邊界：固定密度，速度由現有分布重算，整組重設為平衡態"""
    if cells.size == 0:
        return
    momentum = f[cells] @ VELOCITIES
    u = momentum / rho_fixed[:, None]
    f[cells] = equilibrium(rho_fixed, u)


def initial_distributions(n_cells: int, fluid: np.ndarray, rho0: float = config.LBM_REFERENCE_DENSITY) -> np.ndarray:
    """靜止平衡態初始化，固體格點為零"""
    rho = np.full(n_cells, rho0, dtype=np.float64)
    f = equilibrium(rho, np.zeros((n_cells, 3)))
    f[~fluid] = 0.0
    return f
