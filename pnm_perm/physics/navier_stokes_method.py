"""
Navier-Stokes (Forchheimer) 非達西修正
−∇p = (μ/k)v + βρv²，β = 1.75/(ε·d) (Ergun)

以鬆弛固定點迭代求表觀速度 v，表觀滲透率 k_app = vμ/∇p。
"""

from ..config import config
from ..error_handling import DegenerateGeometryError
from ..results import Method, MethodResult
from .base import PermeabilityMethod
from .geometry import SimulationContext, linear_pressure_field
from .kozeny_carman import effective_porosity


def forchheimer_velocity(pressure_gradient: float, viscosity: float, permeability: float,
                         beta: float, density: float, initial_velocity: float,
                         tolerance: float = config.FORCHHEIMER_TOLERANCE,
                         max_iterations: int = config.FORCHHEIMER_MAX_ITERATIONS):
    """
    固定點迭代 v_new = ∇p / (μ/k + βρv)

    未收斂時以 v ← (1−α)v + αv_new 鬆弛 (α = FORCHHEIMER_RELAXATION)。

    Returns:
        (velocity, iterations, converged)
    """
    alpha = config.FORCHHEIMER_RELAXATION
    velocity = initial_velocity
    for iteration in range(1, max_iterations + 1):
        new_velocity = pressure_gradient / (viscosity / permeability + beta * density * velocity)
        if abs(new_velocity - velocity) < tolerance:
            return new_velocity, iteration, True
        velocity = (1.0 - alpha) * velocity + alpha * new_velocity
    return velocity, max_iterations, False


class NavierStokesMethod(PermeabilityMethod):
    """
    Forchheimer 修正的 Navier-Stokes 近似

    初始速度取自 Darcy 法的 k (若有)，否則以平均喉道半徑的
    Hagen-Poiseuille 估計 r̄²/8。
    """

    method = Method.NAVIER_STOKES

    def compute(self, context: SimulationContext) -> MethodResult:
        model = context.model
        geometry = context.geometry
        handler = context.error_handler
        viscosity = context.viscosity
        density = self.settings.fluid_density

        radii = model.throat_radii() * config.MICRON_TO_M
        mean_radius = float(radii.mean())
        dp = context.pressure_drop

        if geometry.length <= 0 or dp == 0 or mean_radius <= 0:
            handler.handle_error(DegenerateGeometryError(
                f"Δp={dp}, L={geometry.length}, r̄={mean_radius}，雷諾數為零，Navier-Stokes k 設為 0",
                {"method": self.method.value},
            ))
            return MethodResult.raw(
                self.method, 0.0,
                pressure_field=linear_pressure_field(model, context.axis, context.inlet_pressure, context.outlet_pressure),
                diagnostics={"reynolds_number": 0.0},
            )

        gradient = dp / geometry.length
        if context.darcy_permeability is not None and context.darcy_permeability > 0:
            darcy_k = context.darcy_permeability * config.DARCY_TO_M2
            source = "darcy"
        else:
            darcy_k = mean_radius ** 2 / 8.0
            source = "hagen_poiseuille"

        initial_velocity = darcy_k / viscosity * gradient
        diameter = 2.0 * mean_radius
        reynolds = density * diameter * initial_velocity / viscosity

        porosity = effective_porosity(model, geometry.length, geometry.area, handler)
        beta = config.ERGUN_INERTIAL_CONSTANT / (porosity * diameter)

        velocity, iterations, converged = forchheimer_velocity(
            gradient, viscosity, darcy_k, beta, density, initial_velocity,
            tolerance=self.settings.forchheimer_tolerance,
            max_iterations=self.settings.forchheimer_max_iterations,
        )
        if not converged:
            self.logger.warning(f"⚠️ Forchheimer 迭代 {iterations} 次未收斂，使用最後結果")

        permeability = velocity * viscosity / gradient / config.DARCY_TO_M2

        self.logger.info(
            f"✅ k={permeability:.6g} Darcy (Re={reynolds:.4f}, β={beta:.4e}, "
            f"非達西效應={'顯著' if reynolds > config.NON_DARCY_REYNOLDS else '輕微'})"
        )
        if reynolds > config.TURBULENCE_REYNOLDS_WARNING:
            self.logger.warning(
                f"⚠️ 雷諾數 {reynolds:.1f} 顯示紊流，未含紊流模型的結果準確度較低"
            )

        return MethodResult.raw(
            self.method,
            permeability,
            pressure_field=self._pressure_field(context, reynolds),
            total_flow_rate=velocity * geometry.area,
            diagnostics={
                "reynolds_number": reynolds,
                "forchheimer_coefficient": beta,
                "porosity": porosity,
                "initial_velocity": initial_velocity,
                "velocity": velocity,
                "initial_permeability_source": source,
                "iterations": iterations,
                "converged": converged,
                "non_darcy": reynolds > config.NON_DARCY_REYNOLDS,
                "mean_throat_radius": mean_radius,
                "min_throat_radius": float(radii.min()),
                "max_throat_radius": float(radii.max()),
            },
        )

    @staticmethod
    def _pressure_field(context: SimulationContext, reynolds: float) -> dict:
        """線性壓力 − 非線性修正 A·Re/(1+Re)·Δp·4t(1−t)，在樣品中段最大"""
        model = context.model
        p_in, p_out = context.inlet_pressure, context.outlet_pressure
        linear = linear_pressure_field(model, context.axis, p_in, p_out)
        coords = model.axis_coordinates(context.axis)
        lo, span = coords.min(), coords.max() - coords.min()
        scale = config.NONLINEAR_PRESSURE_AMPLITUDE * reynolds / (1.0 + reynolds) * abs(p_in - p_out)

        field = {}
        for pore, x in zip(model.pores, coords):
            t = (x - lo) / span if span > 0 else 0.0
            field[pore.id] = linear[pore.id] - scale * 4.0 * t * (1.0 - t)
        return field
