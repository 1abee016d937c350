"""
滲透率模擬結果
每個方法產生一個不可變的 MethodResult，由 SimulationResultBuilder 合併成
SimulationResult 交給下游報告層
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from .config import config
from .error_handling import ErrorRecord
from .network import FlowAxis


class Method(Enum):
    """滲透率計算方法"""
    DARCY = "darcy"
    LATTICE_BOLTZMANN = "lattice_boltzmann"
    KOZENY_CARMAN = "kozeny_carman"
    NAVIER_STOKES = "navier_stokes"

    @property
    def display_name(self) -> str:
        return {
            Method.DARCY: "Darcy",
            Method.LATTICE_BOLTZMANN: "Lattice-Boltzmann",
            Method.KOZENY_CARMAN: "Kozeny-Carman",
            Method.NAVIER_STOKES: "Navier-Stokes",
        }[self]


def apply_tortuosity(permeability: float, tortuosity: float) -> float:
    """迂曲度修正：k/τ²，τ≤0 時不修正"""
    if tortuosity > 0:
        return permeability / (tortuosity * tortuosity)
    return permeability


def _freeze(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class MethodResult:
    """單一方法的結果 (Darcy 為單位)"""
    method: Method
    permeability_darcy: float
    corrected_permeability_darcy: float
    pressure_field: Mapping[int, float] = field(default_factory=dict)
    throat_flow_rates: Mapping[int, float] = field(default_factory=dict)
    total_flow_rate: float = 0.0
    diagnostics: Mapping[str, Any] = field(default_factory=dict)
    failed: bool = False
    error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "pressure_field", _freeze(self.pressure_field))
        object.__setattr__(self, "throat_flow_rates", _freeze(self.throat_flow_rates))
        object.__setattr__(self, "diagnostics", _freeze(self.diagnostics))

    @classmethod
    def raw(cls, method: Method, permeability_darcy: float, **kwargs) -> "MethodResult":
        """未經迂曲度修正的結果 (修正值暫等於原值)"""
        return cls(method, permeability_darcy, permeability_darcy, **kwargs)

    @classmethod
    def failure(cls, method: Method, error: str) -> "MethodResult":
        return cls(method, 0.0, 0.0, failed=True, error=error)

    @property
    def permeability_millidarcy(self) -> float:
        return self.permeability_darcy * config.MILLIDARCY_PER_DARCY

    @property
    def corrected_permeability_millidarcy(self) -> float:
        return self.corrected_permeability_darcy * config.MILLIDARCY_PER_DARCY

    def with_tortuosity(self, tortuosity: float) -> "MethodResult":
        return dataclasses.replace(
            self,
            corrected_permeability_darcy=apply_tortuosity(self.permeability_darcy, tortuosity),
        )

    def with_diagnostics(self, **extra) -> "MethodResult":
        return dataclasses.replace(self, diagnostics={**self.diagnostics, **extra})

    def summary(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "permeability_darcy": self.permeability_darcy,
            "permeability_millidarcy": self.permeability_millidarcy,
            "corrected_permeability_darcy": self.corrected_permeability_darcy,
            "corrected_permeability_millidarcy": self.corrected_permeability_millidarcy,
            "total_flow_rate": self.total_flow_rate,
            "failed": self.failed,
            "error": self.error,
            "diagnostics": dict(self.diagnostics),
        }


@dataclass(frozen=True)
class SimulationResult:
    """完整模擬結果 (建立後不可變)"""
    flow_axis: FlowAxis
    viscosity: float
    inlet_pressure: float
    outlet_pressure: float
    tortuosity: float
    model_length: float                    # m
    model_area: float                      # m²
    inlet_pores: FrozenSet[int]
    outlet_pores: FrozenSet[int]
    darcy: Optional[MethodResult] = None
    lattice_boltzmann: Optional[MethodResult] = None
    kozeny_carman: Optional[MethodResult] = None
    navier_stokes: Optional[MethodResult] = None
    error_log: Tuple[ErrorRecord, ...] = ()

    @property
    def pressure_drop(self) -> float:
        return self.inlet_pressure - self.outlet_pressure

    def get(self, method: Method) -> Optional[MethodResult]:
        return getattr(self, method.value)

    def methods(self) -> Dict[Method, MethodResult]:
        """已執行的方法結果"""
        return {m: self.get(m) for m in Method if self.get(m) is not None}

    def summary(self) -> Dict[str, Any]:
        return {
            "flow_axis": self.flow_axis.value,
            "viscosity": self.viscosity,
            "inlet_pressure": self.inlet_pressure,
            "outlet_pressure": self.outlet_pressure,
            "pressure_drop": self.pressure_drop,
            "tortuosity": self.tortuosity,
            "model_length": self.model_length,
            "model_area": self.model_area,
            "inlet_pore_count": len(self.inlet_pores),
            "outlet_pore_count": len(self.outlet_pores),
            "methods": {m.value: r.summary() for m, r in self.methods().items()},
            "errors": [
                {"type": e.error_type, "severity": e.severity.value, "message": e.message}
                for e in self.error_log
            ],
        }


class SimulationResultBuilder:
    """逐步收集方法結果，最後產生不可變的 SimulationResult"""

    def __init__(self, flow_axis: FlowAxis, viscosity: float, inlet_pressure: float,
                 outlet_pressure: float, tortuosity: float):
        self._fields: Dict[str, Any] = {
            "flow_axis": flow_axis,
            "viscosity": viscosity,
            "inlet_pressure": inlet_pressure,
            "outlet_pressure": outlet_pressure,
            "tortuosity": tortuosity,
            "model_length": 0.0,
            "model_area": 0.0,
            "inlet_pores": frozenset(),
            "outlet_pores": frozenset(),
        }
        self._methods: Dict[Method, MethodResult] = {}
        self._errors = []

    def set_geometry(self, length: float, area: float, inlet_pores, outlet_pores) -> "SimulationResultBuilder":
        self._fields.update(
            model_length=length,
            model_area=area,
            inlet_pores=frozenset(inlet_pores),
            outlet_pores=frozenset(outlet_pores),
        )
        return self

    def add(self, result: MethodResult) -> "SimulationResultBuilder":
        self._methods[result.method] = result
        return self

    def get(self, method: Method) -> Optional[MethodResult]:
        return self._methods.get(method)

    def add_errors(self, records) -> "SimulationResultBuilder":
        self._errors.extend(records)
        return self

    def build(self) -> SimulationResult:
        return SimulationResult(
            **self._fields,
            **{m.value: r for m, r in self._methods.items()},
            error_log=tuple(self._errors),
        )
