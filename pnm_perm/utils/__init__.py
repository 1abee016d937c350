"""共用工具"""

from .logger import get_logger, SimulationLogger

__all__ = ["get_logger", "SimulationLogger"]
