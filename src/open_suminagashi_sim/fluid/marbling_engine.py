"""
This engine is a realtime suminagashi (ink marbling) simulator.

High-level approach:
- Eulerian grid fields for velocity, dye (RGBA), pressure and divergence
- Semi-Lagrangian advection of velocity and dye
- Jacobi pressure solve + gradient subtraction for incompressibility
- Smooth wall mask on the projected velocity (no-flux border)
- Gaussian splats for ink drops, stylus drags and comb strokes
- Velocity stored through a codec, either as float or packed into bytes

Inspired by classic building blocks from:
- Stam 1999 (stable fluids, semi-Lagrangian advection)
- Harris 2004 (fast fluid dynamics on the GPU)
"""


import time
from typing import Optional, Tuple

import numpy as np
import taichi as ti

from .codec import select_velocity_codec
from .configs import FluidParams, MAX_FRAME_DT
from .grid import GridStore, grid_size_for_surface
from .injection import InkInjector, TOOLS
from .operators import FieldOperators
from .stepper import SimulationState, SimulationStepper, TickParams

WATER_DEEP = np.array([0.02, 0.08, 0.15], dtype=np.float32)
WATER_SHALLOW = np.array([0.05, 0.15, 0.25], dtype=np.float32)

_GLOBAL_TAICHI_INITIALIZED = False

def _initialize_taichi_backend(arch: str, use_profiler: bool = False):
    """Initializes the Taichi runtime with the best available backend."""
    global _GLOBAL_TAICHI_INITIALIZED
    if _GLOBAL_TAICHI_INITIALIZED:
        return

    init_kwargs = {
        "offline_cache": True,
        "kernel_profiler": use_profiler,
    }

    ti_arch = ti.cpu
    if arch == "gpu":
        if ti.core.with_cuda():
            ti_arch = ti.cuda
        elif ti.core.with_metal():
            ti_arch = ti.metal
        elif ti.core.with_vulkan():
            ti_arch = ti.vulkan
        else:
            ti_arch = ti.cpu
    elif arch == "vulkan":
        ti_arch = ti.vulkan
    elif arch == "metal":
        ti_arch = ti.metal
    elif arch == "cuda":
        ti_arch = ti.cuda

    print(f"[MarblingEngine] Initializing Taichi with backend: {ti_arch}")
    ti.init(arch=ti_arch, **init_kwargs)

    print(f"[MarblingEngine] Taichi initialized. Backend: {ti.cfg.arch} | Profiler: {use_profiler}")
    _GLOBAL_TAICHI_INITIALIZED = True


class MarblingEngine:
    """Owns the simulation state and exposes the marbling operations.

    Coordinates passed to injection methods are normalized to [0, 1] with the
    origin at the bottom-left; radii are fractions of the smaller grid side.
    """

    def __init__(self, width: int = 256, height: int = 256, dt: float = 1.0 / 60.0, arch: str = "cpu",
                 velocity_storage: str = "auto", seed: int = 0, params: Optional[FluidParams] = None,
                 use_profiler: bool = False, warmup: bool = True):
        try:
            _initialize_taichi_backend(arch, use_profiler=use_profiler)
        except Exception as e:
            print(f"[MarblingEngine] GPU Init failed: {e}. Falling back to CPU.")
            _initialize_taichi_backend("cpu", use_profiler=use_profiler)

        self.dt = float(dt)
        self.seed = int(seed)
        self.timing_mode = False

        self.p = params or FluidParams()
        self.tick_params = TickParams()
        self._upload_params()

        self.codec = select_velocity_codec(velocity_storage)
        print(f"[MarblingEngine] Velocity storage: {self.codec!r}")

        self.store = GridStore(self.codec)
        self.operators = FieldOperators(self.codec)
        self.injector = InkInjector(self.operators, seed=self.seed)
        self.stepper = SimulationStepper(self.operators, self.injector)

        self.state: Optional[SimulationState] = None
        self.allocate(width, height)

        if warmup:
            self.warmup()

    # ===============================
    # Parameters
    # ===============================

    def set_params(self, params: FluidParams):
        self.p = params
        self._upload_params()

    def update_params(self, **kwargs):
        for k, v in kwargs.items():
            if hasattr(self.p, k):
                setattr(self.p, k, v)
        self._upload_params()

    def _upload_params(self):
        """Maps UI-facing parameters to the per-tick solver inputs."""
        if self.p.tool not in TOOLS:
            raise ValueError(f"Unknown tool {self.p.tool!r}; expected one of {TOOLS}")
        self.tick_params.velocity_dissipation = self.p.velocity_dissipation()
        self.tick_params.dye_dissipation = self.p.dye_dissipation()
        self.tick_params.pressure_iterations = max(1, int(self.p.pressure_iterations))
        self.tick_params.ambient_turbulence = bool(self.p.ambient_turbulence)

    # ===============================
    # Lifecycle
    # ===============================

    @property
    def width(self) -> int:
        return self.state.grid.width

    @property
    def height(self) -> int:
        return self.state.grid.height

    @property
    def tick_count(self) -> int:
        return self.state.tick_count

    def allocate(self, width: int, height: int):
        """Replaces every field with a fresh grid of the given size."""
        grid = self.store.allocate(width, height)
        self.state = SimulationState(grid=grid)

    def allocate_for_surface(self, surface_width: int, surface_height: int):
        w, h = grid_size_for_surface(surface_width, surface_height)
        if self.state is not None and (w, h) == self.state.grid.shape:
            return
        self.allocate(w, h)

    def reset(self):
        self._upload_params()
        self._clear()

    def clear(self):
        """Clears all simulation fields."""
        self._clear()

    def _clear(self):
        self.store.reset(self.state.grid)
        self.state.tick_count = 0

    # ===============================
    # Injection
    # ===============================

    def splat_velocity(self, x: float, y: float, fx: float, fy: float, radius: float):
        self.injector.splat_velocity(self.state, (x, y), (fx, fy), radius)

    def splat_dye(self, x: float, y: float, color: Tuple[float, float, float], radius: float):
        self.injector.splat_dye(self.state, (x, y), color, radius)

    def ring_pulse(self, x: float, y: float, radius: float, strength: float):
        self.injector.ring_pulse(self.state, (x, y), radius, strength)

    def drop_ink(self, x: float, y: float, color: Optional[Tuple[float, float, float]] = None,
                 radius: Optional[float] = None):
        """Drops ink at (x, y) with the current ink color and radius unless given."""
        color = self.p.ink_color if color is None else color
        radius = self.p.ink_radius if radius is None else radius
        self.injector.drop_ink(self.state, (x, y), color, radius)

    def paint_ink(self, x: float, y: float, dx: float, dy: float):
        self.injector.paint_ink(self.state, (x, y), (dx, dy), self.p.ink_color, self.p.ink_radius)

    def disturb(self, x: float, y: float, dx: float, dy: float, with_ink: bool = False, tool: Optional[str] = None):
        """Stylus or comb drag from the previous pointer position by (dx, dy)."""
        tool = tool or self.p.tool
        ink = self.p.ink_color if with_ink else None
        self.injector.disturb(self.state, (x, y), (dx, dy), tool, self.p.force, self.p.force_radius,
                              ink_color=ink, ink_radius=self.p.ink_radius)

    # ===============================
    # Simulation
    # ===============================

    def step(self, steps: int = 1, dt: Optional[float] = None):
        """Advances the simulation by the specified number of ticks."""
        dt = self.dt if dt is None else float(dt)
        for _ in range(int(steps)):
            t0 = time.perf_counter() if self.timing_mode else 0

            self.stepper.tick(self.state, dt, self.tick_params)

            if self.timing_mode and self.state.tick_count % 30 == 0:
                ti.sync()
                t1 = time.perf_counter()
                print(f"[Marbling] Tick: {(t1-t0)*1000:4.1f}ms ({self.tick_params.pressure_iterations} Jacobi iters)")

    def advance(self, elapsed: float):
        """One tick for a frame that took `elapsed` seconds (capped to keep the solver stable)."""
        self.step(1, dt=min(MAX_FRAME_DT, max(0.0, float(elapsed))))

    # ===============================
    # Readback
    # ===============================

    def velocity_to_numpy(self) -> np.ndarray:
        """Decoded velocity of the read slot, shape (W, H, 2)."""
        return self.codec.decode_array(self.state.grid.velocity.read_numpy())

    def dye_to_numpy(self) -> np.ndarray:
        return self.state.grid.dye.read_numpy()

    def pressure_to_numpy(self) -> np.ndarray:
        return self.state.grid.pressure.read_numpy()

    def divergence_to_numpy(self) -> np.ndarray:
        return self.state.grid.divergence.to_numpy()

    def measure_divergence(self) -> float:
        """Recomputes divergence of the current velocity; returns its mean magnitude."""
        grid = self.state.grid
        self.operators.divergence(grid.velocity, grid.divergence)
        return float(np.abs(grid.divergence.to_numpy()).mean())

    def total_dye_mass(self) -> float:
        return float(self.dye_to_numpy()[..., 3].sum(dtype=np.float64))

    def render(self) -> np.ndarray:
        """Flat top-down preview: dye over water, tinted by pressure. Shape (W, H, 3)."""
        dye = self.dye_to_numpy()
        h = self.pressure_to_numpy()[..., None]
        water = WATER_DEEP + (WATER_SHALLOW - WATER_DEEP) * (h * 2.0)
        a = np.clip(dye[..., 3:4], 0.0, 1.0)
        col = water * (1.0 - a) + dye[..., :3] * a + h * 0.1
        return np.clip(col, 0.0, 1.0).astype(np.float32)

    def save_screenshot(self, path: str):
        import PIL.Image
        img = (self.render() * 255.0).astype(np.uint8)
        # (W, H) with origin bottom-left -> image rows top to bottom
        img = np.flipud(img.transpose(1, 0, 2))
        PIL.Image.fromarray(img).save(path)

    # ===============================
    # Diagnostics
    # ===============================

    def warmup(self):
        """Trigger JIT compilation of all kernels by running a small dummy simulation."""
        self.clear()
        self.drop_ink(0.5, 0.5)
        self.disturb(0.5, 0.5, 0.01, 0.0, tool="stylus")
        self.step(1)
        self.render()
        self.clear()
        ti.sync()
        print(f"[MarblingEngine] Warmup complete.")

    def test_integrity(self) -> bool:
        """Verifies simulation state for stability (NaN checks, alpha bounds)."""
        self.clear()
        self.drop_ink(0.5, 0.5)
        for i in range(10):
            self.step(1)

        ok = True
        v = self.velocity_to_numpy()
        dye = self.dye_to_numpy()
        if not np.all(np.isfinite(v)) or not np.all(np.isfinite(dye)):
            print("[MarblingEngine] INTEGRITY ERROR: non-finite value in velocity or dye field!")
            ok = False
        alpha = dye[..., 3]
        if np.any((alpha < -1e-5) | (alpha > 1.0 + 1e-5)):
            print(f"[MarblingEngine] INTEGRITY ERROR: Dye alpha out of range: [{alpha.min()}, {alpha.max()}]")
            ok = False
        if ok:
            print("[MarblingEngine] Integrity test passed.")
        return ok
