"""
Velocity storage codecs.

Some backends cannot store signed floating point render targets, so velocity
is optionally packed into an unsigned normalized byte per component. Every
kernel that touches velocity goes through a codec: decode right after a read,
encode right before a write. The codec is picked once when the engine starts
and never changes for the lifetime of the engine.

    encode(v) = v / scale * 0.5 + 0.5      -> [0, 1], clipped
    decode(c) = (c * 2 - 1) * scale
"""

import numpy as np
import taichi as ti

from .configs import VELOCITY_SCALE, VELOCITY_LEVELS


class VelocityCodec:
    """Interface shared by the velocity storage strategies.

    Subclasses provide `encode`/`decode` as `ti.func` for use inside kernels and
    `encode_array`/`decode_array` for host-side numpy data.
    """

    name = "abstract"
    dtype = None

    def __init__(self, scale: float = VELOCITY_SCALE):
        self.scale = float(scale)

    @property
    def lossy(self) -> bool:
        return False

    def encode_array(self, v: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def decode_array(self, c: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}(scale={self.scale})"


@ti.data_oriented
class NativeFloatVelocityCodec(VelocityCodec):
    """Stores signed float velocity as-is."""

    name = "native"
    dtype = ti.f32

    @ti.func
    def encode(self, v):
        return v

    @ti.func
    def decode(self, c):
        return c

    def encode_array(self, v: np.ndarray) -> np.ndarray:
        return np.asarray(v, dtype=np.float32).copy()

    def decode_array(self, c: np.ndarray) -> np.ndarray:
        return np.asarray(c, dtype=np.float32).copy()


@ti.data_oriented
class QuantizedVelocityCodec(VelocityCodec):
    """Packs velocity into unsigned bytes covering [-scale, scale].

    `levels` must be even so that zero velocity lands exactly on a code
    (levels / 2) and the rest state decodes back to exactly zero.
    """

    name = "quantized"
    dtype = ti.u8

    def __init__(self, scale: float = VELOCITY_SCALE, levels: int = VELOCITY_LEVELS):
        super().__init__(scale)
        levels = int(levels)
        if levels <= 0 or levels > 255 or levels % 2 != 0:
            raise ValueError(f"levels must be an even number in [2, 254], got {levels}")
        self.levels = float(levels)

    @property
    def lossy(self) -> bool:
        return True

    @property
    def step(self) -> float:
        """Velocity difference between two adjacent codes."""
        return 2.0 * self.scale / self.levels

    @ti.func
    def encode(self, v):
        c = v / self.scale * 0.5 + 0.5
        c = ti.min(1.0, ti.max(0.0, c))
        return ti.cast(ti.floor(c * self.levels + 0.5), ti.u8)

    @ti.func
    def decode(self, c):
        return (ti.cast(c, ti.f32) / self.levels * 2.0 - 1.0) * self.scale

    def encode_array(self, v: np.ndarray) -> np.ndarray:
        c = np.asarray(v, dtype=np.float64) / self.scale * 0.5 + 0.5
        c = np.clip(c, 0.0, 1.0)
        return np.floor(c * self.levels + 0.5).astype(np.uint8)

    def decode_array(self, c: np.ndarray) -> np.ndarray:
        c = np.asarray(c, dtype=np.float32)
        return ((c / np.float32(self.levels) * 2.0 - 1.0) * np.float32(self.scale)).astype(np.float32)

    def __repr__(self):
        return f"{self.__class__.__name__}(scale={self.scale}, levels={int(self.levels)})"


def probe_native_float() -> bool:
    """Checks that the active backend round-trips signed float vectors."""
    expected = np.array([[-1.5, 0.25]], dtype=np.float32)
    tree = None
    try:
        fb = ti.FieldsBuilder()
        probe = ti.Vector.field(2, dtype=ti.f32)
        fb.dense(ti.i, 1).place(probe)
        tree = fb.finalize()
        probe.from_numpy(expected)
        back = probe.to_numpy()
    except Exception as e:
        print(f"[VelocityCodec] Float storage probe failed: {e}. Falling back to quantized velocity.")
        return False
    finally:
        if tree is not None:
            tree.destroy()
    return bool(np.allclose(back, expected))


def select_velocity_codec(mode: str = "auto", scale: float = VELOCITY_SCALE) -> VelocityCodec:
    """Picks the velocity storage strategy.

    mode: "native", "quantized" or "auto" (probe the backend, conservative
    fallback to quantized).
    """
    if mode == "native":
        return NativeFloatVelocityCodec(scale)
    if mode == "quantized":
        return QuantizedVelocityCodec(scale)
    if mode != "auto":
        raise ValueError(f"Unknown velocity storage mode: {mode!r}")

    if probe_native_float():
        return NativeFloatVelocityCodec(scale)
    return QuantizedVelocityCodec(scale)
