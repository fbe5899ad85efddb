"""Translates marbling gestures (ink drops, stylus drags, comb strokes) into splats."""

import math
from typing import Optional, Tuple

import numpy as np

from .configs import (
    AMBIENT_TURBULENCE_FORCE,
    AMBIENT_TURBULENCE_RADIUS,
)
from .operators import FieldOperators

TOOLS = ("ink", "stylus", "comb")

RING_STEPS = 16
RING_FORCE = 0.0015
RING_OFFSET = 0.5
DROP_RING_STRENGTH = 2.0
DROP_NUDGE_FORCE = 0.001
DRAG_FORCE = 0.8
STILL_THRESHOLD = 0.001
COMB_LANES = 7
COMB_SPACING = 0.08


class InkInjector:
    """High-level interaction events on top of `splat_velocity` / `splat_dye`.

    Every method takes the `SimulationState` it mutates; nothing is cached
    between calls except the random generator used for jitter.
    """

    def __init__(self, operators: FieldOperators, seed: int = 0):
        self.ops = operators
        self.rng = np.random.default_rng(seed)

    def splat_velocity(self, state, point, force, radius: float):
        self.ops.splat_velocity(state.grid.velocity, point, force, radius)

    def splat_dye(self, state, point, color, radius: float):
        self.ops.splat_dye(state.grid.dye, point, color, radius)

    def ring_pulse(self, state, point, radius: float, strength: float):
        """Pushes outward in RING_STEPS directions so a drop spreads like on water.

        Each splat sits half a radius out along its own direction; co-centred
        splats would cancel each other.
        """
        x, y = float(point[0]), float(point[1])
        f = strength * RING_FORCE
        for k in range(RING_STEPS):
            a = k * (2.0 * math.pi / RING_STEPS)
            c, s = math.cos(a), math.sin(a)
            center = (x + c * radius * RING_OFFSET, y + s * radius * RING_OFFSET)
            self.splat_velocity(state, center, (c * f, s * f), radius)

    def drop_ink(self, state, point, color, radius: float):
        """A single ink drop: dye, an outward ring pulse and a tiny random nudge."""
        self.splat_dye(state, point, color, radius)
        self.ring_pulse(state, point, radius * 1.2, DROP_RING_STRENGTH)

        angle = self.rng.uniform(0.0, 2.0 * math.pi)
        nudge = (math.cos(angle) * DROP_NUDGE_FORCE, math.sin(angle) * DROP_NUDGE_FORCE)
        self.splat_velocity(state, point, nudge, radius * 0.8)

    def paint_ink(self, state, point, delta, color, radius: float):
        """Continuous ink while dragging with the ink tool."""
        dx, dy = float(delta[0]), float(delta[1])
        self.splat_dye(state, point, color, radius)
        self.splat_velocity(state, point, (dx * DRAG_FORCE, dy * DRAG_FORCE), radius * 0.8)

        if abs(dx) < STILL_THRESHOLD and abs(dy) < STILL_THRESHOLD:
            self.ring_pulse(state, point, radius * 0.8, 0.5)

    def disturb(self, state, point, delta, tool: str, force: float, radius: float,
                ink_color: Optional[Tuple[float, float, float]] = None, ink_radius: float = 0.0):
        """Drags the surface with a stylus or a comb; optionally lays ink along the way.

        `force` is the UI force value; the applied impulse is `delta * force / 1000`.
        """
        if tool not in ("stylus", "comb"):
            raise ValueError(f"disturb() needs the stylus or comb tool, got {tool!r}")

        x, y = float(point[0]), float(point[1])
        dx, dy = float(delta[0]), float(delta[1])
        scale = float(force) / 1000.0
        impulse = (dx * scale, dy * scale)

        if tool == "stylus":
            self.splat_velocity(state, (x, y), impulse, radius)
            if ink_color is not None:
                self.splat_dye(state, (x, y), ink_color, ink_radius * 0.6)
            return

        # Comb: parallel teeth spread across the stroke direction
        length = math.hypot(dx, dy)
        nx, ny = (-dy / length, dx / length) if length > 0.0 else (0.0, 0.0)
        for k in range(COMB_LANES):
            off = (k - (COMB_LANES - 1) / 2.0) / COMB_LANES * COMB_SPACING
            lane = (x + nx * off, y + ny * off)
            self.splat_velocity(state, lane, impulse, radius * 0.75)
            if ink_color is not None and k % 2 == 0:
                self.splat_dye(state, lane, ink_color, ink_radius * 0.5)

    def ambient_jitter(self, state):
        """Faint impulse at a random point in a random direction."""
        x, y = self.rng.random(2)
        angle = self.rng.uniform(0.0, 2.0 * math.pi)
        force = (math.cos(angle) * AMBIENT_TURBULENCE_FORCE, math.sin(angle) * AMBIENT_TURBULENCE_FORCE)
        self.splat_velocity(state, (float(x), float(y)), force, AMBIENT_TURBULENCE_RADIUS)
