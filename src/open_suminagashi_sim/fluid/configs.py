from dataclasses import dataclass, field
from typing import Tuple

# =============================================================================
# TUNING CONSTANTS
# Empirically tuned; exposed as names so they can be adjusted in one place.
# =============================================================================
VELOCITY_SCALE = 2.0                # Encoded velocity range is [-scale, scale]
VELOCITY_LEVELS = 254               # Quantization steps of the u8 velocity path
SELF_ADVECTION_DT_SCALE = 0.85      # dt multiplier when velocity advects itself
DEFAULT_PRESSURE_ITERATIONS = 55
AMBIENT_TURBULENCE_INTERVAL = 60    # Ticks between ambient impulses
AMBIENT_TURBULENCE_FORCE = 0.0002
AMBIENT_TURBULENCE_RADIUS = 0.1
ADVECTION_CLAMP_MIN = 0.001         # Backtraced sample positions stay inside this inset
ADVECTION_CLAMP_MAX = 0.999
BORDER_FALLOFF = 0.01               # Width of the smoothstep wall mask (domain units)
SPLAT_EPSILON = 1e-6
DYE_ALPHA_GAIN = 0.5                # Alpha added per unit of splat falloff

MIN_GRID_SIZE = 256
SURFACE_DOWNSCALE = 1.3
MAX_FRAME_DT = 0.033


@dataclass
class FluidParams:
    """User-adjustable parameters for the marbling simulation."""

    # --- [NORMAL] Tool ---
    tool: str = field(default="ink", metadata={"help": "Active tool: ink, stylus or comb.", "category": "Normal", "choices": ("ink", "stylus", "comb")})
    ink_color: Tuple[float, float, float] = field(default=(0.05, 0.05, 0.08), metadata={"help": "Ink color (linear RGB).", "category": "Normal"})
    ink_radius: float = field(default=0.02, metadata={"help": "Ink drop radius as a fraction of the domain.", "category": "Normal", "min": 0.002, "max": 0.2})
    force_radius: float = field(default=0.03, metadata={"help": "Stylus/comb disturbance radius as a fraction of the domain.", "category": "Normal", "min": 0.002, "max": 0.2})
    force: float = field(default=60.0, metadata={"help": "Stylus/comb force multiplier (divided by 1000).", "category": "Normal", "min": 0.0, "max": 400.0})

    # --- [NORMAL] Fluid ---
    viscosity: float = field(default=1.0, metadata={"help": "Velocity loss per tick, in thousandths.", "category": "Normal", "min": 0.0, "max": 100.0})
    dye_decay: float = field(default=0.0, metadata={"help": "Dye loss per tick, in ten-thousandths (0 keeps ink forever).", "category": "Normal", "min": 0.0, "max": 100.0})

    # --- [ADVANCED] Solver ---
    pressure_iterations: int = field(default=DEFAULT_PRESSURE_ITERATIONS, metadata={"help": "Jacobi iterations per tick (higher = more incompressible).", "category": "Advanced", "min": 1, "max": 200})
    ambient_turbulence: bool = field(default=True, metadata={"help": "Inject a faint random impulse every few ticks.", "category": "Advanced"})

    def velocity_dissipation(self) -> float:
        return 1.0 - max(0.0, float(self.viscosity)) / 1000.0

    def dye_dissipation(self) -> float:
        # A decay of 0 means ink floats on the surface indefinitely.
        decay = float(self.dye_decay)
        if decay == 0.0:
            return 1.0
        return 1.0 - decay / 10000.0
