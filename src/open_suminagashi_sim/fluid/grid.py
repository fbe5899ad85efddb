"""
Grid buffer store.

All simulation fields of one resolution live in a single Taichi SNode tree so
they are created, cleared and destroyed together:

- velocity:   vec2, ping-pong (2, W, H), codec storage dtype
- dye:        vec4 RGBA, ping-pong (2, W, H)
- pressure:   f32, ping-pong (2, W, H)
- divergence: f32, single work buffer (W, H)
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
import taichi as ti

from .codec import VelocityCodec
from .configs import MIN_GRID_SIZE, SURFACE_DOWNSCALE


class GridAllocationError(RuntimeError):
    """The backend could not allocate the requested grid."""


def grid_size_for_surface(surface_width: int, surface_height: int) -> Tuple[int, int]:
    """Simulation resolution for an output surface (downscaled, with a floor)."""
    w = max(MIN_GRID_SIZE, int(math.floor(surface_width / SURFACE_DOWNSCALE)))
    h = max(MIN_GRID_SIZE, int(math.floor(surface_height / SURFACE_DOWNSCALE)))
    return w, h


class DoubleBuffer:
    """Two slots along the leading axis of one field.

    Passes read from `read` and write into `write`; `swap()` afterwards makes
    the fresh result the new `read`. The two indices can never be equal.
    """

    def __init__(self, field, name: str = ""):
        self.field = field
        self.name = name
        self._read = 0

    @property
    def read(self) -> int:
        return self._read

    @property
    def write(self) -> int:
        return 1 - self._read

    def swap(self):
        self._read = 1 - self._read

    def rewind(self):
        self._read = 0

    def read_numpy(self) -> np.ndarray:
        return self.field.to_numpy()[self._read]

    def __repr__(self):
        return f"DoubleBuffer({self.name!r}, read={self.read})"


@dataclass
class GridSet:
    """One allocation of every simulation field at a fixed resolution."""

    width: int
    height: int
    velocity: DoubleBuffer
    dye: DoubleBuffer
    pressure: DoubleBuffer
    divergence: object
    tree: object = field(default=None, repr=False)
    alive: bool = True

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def texel(self) -> Tuple[float, float]:
        return (1.0 / self.width, 1.0 / self.height)


@ti.data_oriented
class GridStore:
    """Owns the live GridSet. Allocating again releases the previous one."""

    def __init__(self, codec: VelocityCodec):
        self.codec = codec
        self.grid: Optional[GridSet] = None

    def allocate(self, width: int, height: int) -> GridSet:
        width = int(width)
        height = int(height)
        if width <= 0 or height <= 0:
            raise ValueError(f"Grid size must be positive, got {width}x{height}")

        self.release()

        try:
            fb = ti.FieldsBuilder()
            velocity = ti.Vector.field(2, dtype=self.codec.dtype)
            dye = ti.Vector.field(4, dtype=ti.f32)
            pressure = ti.field(dtype=ti.f32)
            divergence = ti.field(dtype=ti.f32)
            fb.dense(ti.ijk, (2, width, height)).place(velocity)
            fb.dense(ti.ijk, (2, width, height)).place(dye)
            fb.dense(ti.ijk, (2, width, height)).place(pressure)
            fb.dense(ti.ij, (width, height)).place(divergence)
            tree = fb.finalize()
        except Exception as e:
            raise GridAllocationError(f"Could not allocate a {width}x{height} grid: {e}") from e

        self.grid = GridSet(
            width=width,
            height=height,
            velocity=DoubleBuffer(velocity, "velocity"),
            dye=DoubleBuffer(dye, "dye"),
            pressure=DoubleBuffer(pressure, "pressure"),
            divergence=divergence,
            tree=tree,
        )
        self.reset(self.grid)
        print(f"[GridStore] Allocated {width}x{height} grid ({self.codec.name} velocity).")
        return self.grid

    def reset(self, grid: Optional[GridSet] = None):
        """Clears every field of the grid back to the rest state, in place."""
        grid = grid or self.grid
        if grid is None or not grid.alive:
            raise RuntimeError("No live grid to reset; call allocate() first")
        self._clear(grid.velocity.field, grid.dye.field, grid.pressure.field, grid.divergence)
        grid.velocity.rewind()
        grid.dye.rewind()
        grid.pressure.rewind()

    def release(self):
        if self.grid is None:
            return
        self.grid.alive = False
        self.grid.tree.destroy()
        self.grid = None

    @ti.kernel
    def _clear(self, velocity: ti.template(), dye: ti.template(), pressure: ti.template(), divergence: ti.template()):
        rest = self.codec.encode(ti.Vector([0.0, 0.0]))
        for b, i, j in velocity:
            velocity[b, i, j] = rest
            dye[b, i, j] = ti.Vector([0.0, 0.0, 0.0, 0.0])
            pressure[b, i, j] = 0.0
        for i, j in divergence:
            divergence[i, j] = 0.0
