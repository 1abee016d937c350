# config/__init__.py - 統一配置系統入口
"""
pnm_perm 配置系統

- config.config: 模組常數 (單位換算、D3Q19、容差、網格限制)
- config.config_manager: SimulationSettings 與 YAML 覆寫
"""

from . import config
from .config import (
    # 單位
    MICRON_TO_M, MICRON2_TO_M2, DARCY_TO_M2, MILLIDARCY_PER_DARCY,

    # D3Q19
    Q_3D, CS2, INV_CS2, CX_3D, CY_3D, CZ_3D, WEIGHTS_3D, OPPOSITE_3D,
    LBM_TAU, LBM_OMEGA, NU_LATTICE,
)
from .config_manager import SimulationSettings, load_settings, apply_overrides

__all__ = [
    "config",
    "MICRON_TO_M", "MICRON2_TO_M2", "DARCY_TO_M2", "MILLIDARCY_PER_DARCY",
    "Q_3D", "CS2", "INV_CS2", "CX_3D", "CY_3D", "CZ_3D", "WEIGHTS_3D", "OPPOSITE_3D",
    "LBM_TAU", "LBM_OMEGA", "NU_LATTICE",
    "SimulationSettings", "load_settings", "apply_overrides",
]
