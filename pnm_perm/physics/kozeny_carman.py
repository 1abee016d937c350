"""
Kozeny-Carman 經驗式
k = ε³ / (K₀·S²·(1−ε)²)，ε 為孔隙率，S 為比表面積，K₀ = 5

純代數計算，不需要後端。
"""

import math
from typing import Optional, Tuple

from ..config import config
from ..error_handling import DegenerateGeometryError, SimulationErrorHandler
from ..network import PoreNetworkModel
from ..results import Method, MethodResult
from .base import PermeabilityMethod
from .geometry import SimulationContext


def pore_space_totals(model: PoreNetworkModel) -> Tuple[float, float]:
    """
    孔隙空間總體積與總表面積 (m³, m²)

    孔隙視為球、喉道視為無端面圓柱；依孔隙、喉道順序累加。
    孔隙若帶有量測的 volume / area (µm³ / µm²，正值) 則優先採用。
    """
    volume = 0.0
    surface = 0.0
    for pore in model.pores:
        r = pore.radius * config.MICRON_TO_M
        if pore.volume is not None and pore.volume > 0:
            volume += pore.volume * config.MICRON3_TO_M3
        else:
            volume += (4.0 / 3.0) * math.pi * r ** 3
        if pore.area is not None and pore.area > 0:
            surface += pore.area * config.MICRON2_TO_M2
        else:
            surface += 4.0 * math.pi * r ** 2
    for throat in model.throats:
        r = throat.radius * config.MICRON_TO_M
        length = throat.length * config.MICRON_TO_M
        volume += math.pi * r ** 2 * length
        surface += 2.0 * math.pi * r * length
    return volume, surface


def clamp_porosity(porosity: float) -> float:
    return max(config.MIN_POROSITY, min(config.MAX_POROSITY, porosity))


def effective_porosity(model: PoreNetworkModel, length: float, area: float,
                       error_handler: Optional[SimulationErrorHandler] = None) -> float:
    """
    孔隙率：優先使用模型預設值，否則為 孔隙空間體積 / (l·A)

    結果限制在 [MIN_POROSITY, MAX_POROSITY]，越界時記錄 DegenerateGeometry。
    """
    if model.has_preset_porosity:
        raw = float(model.porosity)
    else:
        bulk = length * area
        volume, _ = pore_space_totals(model)
        raw = volume / bulk if bulk > 0 else config.MAX_POROSITY

    porosity = clamp_porosity(raw)
    if porosity != raw and error_handler is not None:
        error_handler.handle_error(DegenerateGeometryError(
            f"孔隙率 {raw:.4g} 超出範圍，限制為 {porosity:.4g}", {"porosity": raw}))
    return porosity


def kozeny_carman_permeability(porosity: float, specific_surface: float,
                               kozeny_constant: float = config.KOZENY_CONSTANT) -> float:
    """k (m²)"""
    return porosity ** 3 / (kozeny_constant * specific_surface ** 2 * (1.0 - porosity) ** 2)


class KozenyCarmanMethod(PermeabilityMethod):
    """Kozeny-Carman 法"""

    method = Method.KOZENY_CARMAN

    def compute(self, context: SimulationContext) -> MethodResult:
        model = context.model
        geometry = context.geometry
        handler = context.error_handler

        porosity = effective_porosity(model, geometry.length, geometry.area, handler)
        volume, surface = pore_space_totals(model)
        if volume <= 0 or surface <= 0:
            handler.handle_error(DegenerateGeometryError(
                "孔隙空間體積或表面積為零，Kozeny-Carman k 設為 0", {"method": self.method.value}))
            return MethodResult.raw(self.method, 0.0, diagnostics={"porosity": porosity})

        specific_surface = surface / volume
        permeability = kozeny_carman_permeability(
            porosity, specific_surface, self.settings.kozeny_constant) / config.DARCY_TO_M2

        self.logger.info(
            f"✅ k={permeability:.6g} Darcy (ε={porosity:.4f}, S={specific_surface:.4e} m²/m³)"
        )
        return MethodResult.raw(
            self.method,
            permeability,
            diagnostics={
                "porosity": porosity,
                "porosity_source": "preset" if model.has_preset_porosity else "geometric",
                "specific_surface_area": specific_surface,
                "kozeny_constant": self.settings.kozeny_constant,
            },
        )
