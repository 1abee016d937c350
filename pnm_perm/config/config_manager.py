"""
config_manager.py

統一設定載入器：以 config 模組常數為預設值建立 SimulationSettings，
再從 YAML 讀取使用者設定，安全地覆蓋允許的參數，並拒絕修改
LBM理論核心（D3Q19 權重/速度、BGK 鬆弛時間）。

使用方式：

    from pnm_perm.config.config_manager import load_settings
    settings = load_settings()              # 預設路徑或 PNM_PERM_CONFIG
    settings = load_settings("my.yaml")     # 指定檔案

可用環境變數：
- PNM_PERM_CONFIG: 指定 YAML 路徑（預設: pnm_perm/config/config.yaml）
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

from . import config
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")
CONFIG_ENV_VAR = "PNM_PERM_CONFIG"


@dataclass(frozen=True)
class SimulationSettings:
    """可調整的數值設定（預設取自 config 模組）"""

    boundary_fraction: float = config.BOUNDARY_FRACTION

    # 線性求解器
    solver_tolerance: float = config.SOLVER_TOLERANCE
    cpu_max_iterations: int = config.CPU_SOLVER_MAX_ITERATIONS
    gpu_max_iterations: int = config.GPU_SOLVER_MAX_ITERATIONS

    # LBM
    lbm_tolerance: float = config.LBM_CONVERGENCE_TOLERANCE
    lbm_min_iterations: int = config.LBM_MIN_ITERATIONS
    lbm_max_iterations: int = config.LBM_MAX_ITERATIONS
    lbm_log_interval: int = config.LBM_LOG_INTERVAL
    lbm_density_difference: float = config.LBM_DENSITY_DIFFERENCE
    max_grid_gpu: int = config.MAX_GRID_GPU
    max_grid_cpu: int = config.MAX_GRID_CPU
    boundary_scan_fraction: float = config.BOUNDARY_SCAN_FRACTION
    tau: float = config.LBM_TAU

    # Kozeny-Carman
    kozeny_constant: float = config.KOZENY_CONSTANT

    # Navier-Stokes
    fluid_density: float = config.FLUID_DENSITY
    forchheimer_tolerance: float = config.FORCHHEIMER_TOLERANCE
    forchheimer_max_iterations: int = config.FORCHHEIMER_MAX_ITERATIONS

    # 執行
    cpu_threads: int = config.CPU_THREADS
    method_workers: int = config.METHOD_WORKERS

    def max_grid(self, gpu: bool) -> int:
        return self.max_grid_gpu if gpu else self.max_grid_cpu


# 禁止覆寫的關鍵參數（LBM理論核心）
PROHIBITED = {
    "tau",
}

# YAML -> SimulationSettings 欄位映射
MAPPING: Dict[str, str] = {
    # boundaries
    "boundaries.fraction": "boundary_fraction",
    "boundaries.scan_fraction": "boundary_scan_fraction",
    # linear solver
    "solver.tolerance": "solver_tolerance",
    "solver.cpu_max_iterations": "cpu_max_iterations",
    "solver.gpu_max_iterations": "gpu_max_iterations",
    # lattice boltzmann
    "lbm.tolerance": "lbm_tolerance",
    "lbm.min_iterations": "lbm_min_iterations",
    "lbm.max_iterations": "lbm_max_iterations",
    "lbm.log_interval": "lbm_log_interval",
    "lbm.density_difference": "lbm_density_difference",
    "lbm.max_grid_gpu": "max_grid_gpu",
    "lbm.max_grid_cpu": "max_grid_cpu",
    "lbm.tau": "tau",
    # kozeny-carman
    "kozeny_carman.constant": "kozeny_constant",
    # navier-stokes
    "navier_stokes.fluid_density": "fluid_density",
    "navier_stokes.tolerance": "forchheimer_tolerance",
    "navier_stokes.max_iterations": "forchheimer_max_iterations",
    # execution
    "execution.cpu_threads": "cpu_threads",
    "execution.method_workers": "method_workers",
}


def _flatten(d: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in d.items():
        key = f"{prefix}.{k}" if prefix else k
        if isinstance(v, dict):
            out.update(_flatten(v, key))
        else:
            out[key] = v
    return out


def _load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(f"⚠️ 設定檔格式不正確（需為映射）: {path}")
        return {}
    return data


def apply_overrides(settings: SimulationSettings, data: Dict[str, Any]) -> SimulationSettings:
    """套用允許的覆寫，回傳新的 SimulationSettings。"""
    flat = _flatten(data)
    field_types = {f.name: f.type for f in fields(SimulationSettings)}
    changes: Dict[str, Any] = {}
    skipped = []

    for ykey, value in flat.items():
        attr = MAPPING.get(ykey)
        if attr is None:
            skipped.append((ykey, "unknown"))
            continue
        if attr in PROHIBITED:
            skipped.append((ykey, "prohibited"))
            continue
        old = getattr(settings, attr)
        try:
            if field_types[attr] in (int, "int"):
                new_val = int(value)
            else:
                new_val = float(value)
        except (TypeError, ValueError):
            skipped.append((ykey, "error"))
            continue
        changes[attr] = new_val
        logger.info(f"🧩 {ykey} → {attr}: {old} → {new_val}")

    for ykey, reason in skipped:
        logger.info(f"ℹ️  略過的設定: {ykey} ({reason})")

    return replace(settings, **changes) if changes else settings


def load_settings(path: Optional[str] = None) -> SimulationSettings:
    """讀取YAML並回傳套用覆寫後的設定。"""
    path = path or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    settings = SimulationSettings()
    data = _load_yaml(path)
    if not data:
        logger.info(f"⚙️  使用預設設定（未找到或未讀取: {path}）")
        return settings
    return apply_overrides(settings, data)
