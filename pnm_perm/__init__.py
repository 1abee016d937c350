"""
pnm_perm - 孔隙網絡絕對滲透率模擬

Darcy 導率網絡、D3Q19 Lattice-Boltzmann、Kozeny-Carman 與
Forchheimer 修正的 Navier-Stokes，GPU (Taichi) / CPU (numpy) 雙後端
"""

__version__ = "1.0.0"

from .config.config_manager import SimulationSettings, load_settings
from .error_handling import (
    DegenerateGeometryError,
    DeviceUnavailableError,
    InvalidInputError,
    MethodFailureError,
    NumericalNonConvergenceError,
    PermeabilityError,
    SimulationErrorHandler,
)
from .network import FlowAxis, Pore, PoreNetworkModel, Throat
from .results import Method, MethodResult, SimulationResult, apply_tortuosity
from .simulator import PermeabilitySimulator, ProgressSink

__all__ = [
    "__version__",
    "PermeabilitySimulator",
    "ProgressSink",
    "PoreNetworkModel",
    "Pore",
    "Throat",
    "FlowAxis",
    "Method",
    "MethodResult",
    "SimulationResult",
    "apply_tortuosity",
    "SimulationSettings",
    "load_settings",
    "PermeabilityError",
    "InvalidInputError",
    "NumericalNonConvergenceError",
    "DeviceUnavailableError",
    "DegenerateGeometryError",
    "MethodFailureError",
    "SimulationErrorHandler",
]
