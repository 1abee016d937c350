"""滲透率方法基類"""

from abc import ABC, abstractmethod
from typing import Optional

from ..config.config_manager import SimulationSettings
from ..core.backends.compute_backends import ComputeBackend
from ..results import Method, MethodResult
from ..utils.logger import SimulationLogger
from .geometry import SimulationContext


class PermeabilityMethod(ABC):
    """
    單一滲透率計算方法

    compute() 回傳未經迂曲度修正的 MethodResult，
    修正由模擬器統一套用。
    """

    method: Method

    def __init__(self, backend: Optional[ComputeBackend] = None,
                 settings: Optional[SimulationSettings] = None):
        self.backend = backend
        self.settings = settings or (backend.settings if backend is not None else SimulationSettings())
        self.logger = SimulationLogger(type(self).__module__, self.method.display_name)

    @abstractmethod
    def compute(self, context: SimulationContext) -> MethodResult:
        pass
