from dataclasses import dataclass

from .configs import (
    AMBIENT_TURBULENCE_INTERVAL,
    DEFAULT_PRESSURE_ITERATIONS,
    SELF_ADVECTION_DT_SCALE,
)
from .grid import GridSet
from .injection import InkInjector
from .operators import FieldKind, FieldOperators


@dataclass
class TickParams:
    """Per-tick solver inputs, already mapped from the UI parameters."""

    velocity_dissipation: float = 1.0
    dye_dissipation: float = 1.0
    pressure_iterations: int = DEFAULT_PRESSURE_ITERATIONS
    ambient_turbulence: bool = True


@dataclass
class SimulationState:
    """The single field set shared by injection and stepping."""

    grid: GridSet
    tick_count: int = 0


class SimulationStepper:
    """Runs one simulation tick as a fixed sequence of passes.

    Tick pipeline:
        1. Ambient turbulence impulse (every `ambient_interval` ticks)
        2. Self-advect velocity (dt scaled by `self_advection_dt_scale`)
        3. Divergence of the advected velocity
        4. N Jacobi pressure iterations
        5. Subtract the pressure gradient, apply the wall mask
        6. Advect dye by the projected velocity

    The stepper is the only place that swaps buffers during a tick.
    """

    def __init__(self, operators: FieldOperators, injector: InkInjector,
                 ambient_interval: int = AMBIENT_TURBULENCE_INTERVAL,
                 self_advection_dt_scale: float = SELF_ADVECTION_DT_SCALE):
        self.ops = operators
        self.injector = injector
        self.ambient_interval = int(ambient_interval)
        self.self_advection_dt_scale = float(self_advection_dt_scale)

    def tick(self, state: SimulationState, dt: float, params: TickParams):
        grid = state.grid
        ops = self.ops
        state.tick_count += 1

        if params.ambient_turbulence and self.ambient_interval > 0 and state.tick_count % self.ambient_interval == 0:
            self.injector.ambient_jitter(state)

        ops.advect(grid.velocity, grid.velocity, dt * self.self_advection_dt_scale,
                   params.velocity_dissipation, FieldKind.VELOCITY)
        grid.velocity.swap()

        ops.divergence(grid.velocity, grid.divergence)

        for _ in range(int(params.pressure_iterations)):
            ops.pressure_step(grid.pressure, grid.divergence)
            grid.pressure.swap()

        ops.project(grid.velocity, grid.pressure)
        grid.velocity.swap()

        ops.advect(grid.dye, grid.velocity, dt, params.dye_dissipation, FieldKind.DYE)
        grid.dye.swap()
