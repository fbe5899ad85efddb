"""
Per-cell fluid operators.

Each public method launches one full-grid pass that reads the `read` slot of
its inputs and writes the `write` slot of its output. Only the splats swap
their own buffer; inside a tick the stepper decides when to swap.

Domain coordinates are normalized to [0, 1] with cell (i, j) centred at
((i + 0.5) / W, (j + 0.5) / H). Neighbour reads outside the grid are clamped
to the edge cell, the same as clamp-to-edge texture sampling.

Based on:
- Stam 1999 (stable fluids, semi-Lagrangian advection)
- Harris 2004, GPU Gems ch. 38 (Jacobi pressure solve, gradient subtraction)
"""

import taichi as ti

from .codec import VelocityCodec
from .configs import (
    ADVECTION_CLAMP_MAX,
    ADVECTION_CLAMP_MIN,
    BORDER_FALLOFF,
    DYE_ALPHA_GAIN,
    SPLAT_EPSILON,
)
from .grid import DoubleBuffer


class FieldKind:
    """How advection treats the source samples."""

    VELOCITY = 0    # decoded on read, encoded on write
    DYE = 1         # stored as-is


@ti.func
def _clamp_01(x: ti.f32) -> ti.f32:
    return ti.min(1.0, ti.max(0.0, x))


@ti.func
def _smoothstep(edge0, edge1, x):
    t = ti.min(1.0, ti.max(0.0, (x - edge0) / (edge1 - edge0)))
    return t * t * (3.0 - 2.0 * t)


@ti.func
def _lerp2(v00, v10, v01, v11, tx, ty):
    v0 = v00 * (1.0 - tx) + v10 * tx
    v1 = v01 * (1.0 - tx) + v11 * tx
    return v0 * (1.0 - ty) + v1 * ty


@ti.data_oriented
class FieldOperators:
    """Advection, divergence, Jacobi pressure, projection and splat passes."""

    def __init__(self, codec: VelocityCodec):
        self.codec = codec

    # ===============================
    # Public passes
    # ===============================

    def advect(self, source: DoubleBuffer, velocity: DoubleBuffer, dt: float, dissipation: float, kind: int):
        """Semi-Lagrangian advection of `source` by `velocity` into `source.write`."""
        self._advect(source.field, source.read, source.write, velocity.field, velocity.read,
                     float(dt), float(dissipation), kind)

    def divergence(self, velocity: DoubleBuffer, out):
        self._divergence(velocity.field, velocity.read, out)

    def pressure_step(self, pressure: DoubleBuffer, divergence):
        """One Jacobi relaxation pass of the pressure Poisson equation."""
        self._pressure_step(pressure.field, pressure.read, pressure.write, divergence)

    def project(self, velocity: DoubleBuffer, pressure: DoubleBuffer):
        """Subtracts the pressure gradient and applies the wall mask."""
        self._project(velocity.field, velocity.read, velocity.write, pressure.field, pressure.read)

    def splat_velocity(self, velocity: DoubleBuffer, point, force, radius: float):
        """Gaussian impulse at `point`; `radius` is a fraction of the smaller grid side."""
        self._splat_velocity(velocity.field, velocity.read, velocity.write,
                             float(point[0]), float(point[1]),
                             float(force[0]), float(force[1]), float(radius))
        velocity.swap()

    def splat_dye(self, dye: DoubleBuffer, point, color, radius: float):
        """Adds color and alpha with the same falloff as `splat_velocity`."""
        self._splat_dye(dye.field, dye.read, dye.write,
                        float(point[0]), float(point[1]),
                        float(color[0]), float(color[1]), float(color[2]), float(radius))
        dye.swap()

    # ===============================
    # Taichi helpers
    # ===============================

    @ti.func
    def _cell_uv(self, i, j, w, h) -> ti.math.vec2:
        return ti.Vector([(ti.cast(i, ti.f32) + 0.5) / ti.cast(w, ti.f32),
                          (ti.cast(j, ti.f32) + 0.5) / ti.cast(h, ti.f32)])

    @ti.func
    def _texel_coords(self, uv, w, h) -> ti.math.vec2:
        # Normalized position -> continuous cell index, clamped to the edge cells
        x = ti.max(0.0, ti.min(ti.cast(w - 1, ti.f32), uv.x * w - 0.5))
        y = ti.max(0.0, ti.min(ti.cast(h - 1, ti.f32), uv.y * h - 0.5))
        return ti.Vector([x, y])

    @ti.func
    def _splat_falloff(self, i, j, w, h, point, radius):
        # Distance measured in units of the smaller grid side, so splats stay round
        short = ti.cast(ti.min(w, h), ti.f32)
        aspect = ti.Vector([ti.cast(w, ti.f32) / short, ti.cast(h, ti.f32) / short])
        d = (self._cell_uv(i, j, w, h) - point) * aspect
        return ti.exp(-d.dot(d) / (radius * radius + SPLAT_EPSILON))

    @ti.func
    def _sample_velocity(self, f: ti.template(), b: ti.i32, uv) -> ti.math.vec2:
        w = f.shape[1]
        h = f.shape[2]
        g = self._texel_coords(uv, w, h)
        x0 = ti.cast(ti.floor(g.x), ti.i32)
        y0 = ti.cast(ti.floor(g.y), ti.i32)
        x1 = ti.min(w - 1, x0 + 1)
        y1 = ti.min(h - 1, y0 + 1)
        tx = g.x - ti.cast(x0, ti.f32)
        ty = g.y - ti.cast(y0, ti.f32)

        v00 = self.codec.decode(f[b, x0, y0])
        v10 = self.codec.decode(f[b, x1, y0])
        v01 = self.codec.decode(f[b, x0, y1])
        v11 = self.codec.decode(f[b, x1, y1])
        return _lerp2(v00, v10, v01, v11, tx, ty)

    @ti.func
    def _sample_vec4(self, f: ti.template(), b: ti.i32, uv) -> ti.math.vec4:
        w = f.shape[1]
        h = f.shape[2]
        g = self._texel_coords(uv, w, h)
        x0 = ti.cast(ti.floor(g.x), ti.i32)
        y0 = ti.cast(ti.floor(g.y), ti.i32)
        x1 = ti.min(w - 1, x0 + 1)
        y1 = ti.min(h - 1, y0 + 1)
        tx = g.x - ti.cast(x0, ti.f32)
        ty = g.y - ti.cast(y0, ti.f32)
        return _lerp2(f[b, x0, y0], f[b, x1, y0], f[b, x0, y1], f[b, x1, y1], tx, ty)

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _advect(self, source: ti.template(), src: ti.i32, dst: ti.i32,
                velocity: ti.template(), vel: ti.i32,
                dt: ti.f32, dissipation: ti.f32, kind: ti.template()):
        w = source.shape[1]
        h = source.shape[2]
        for i, j in ti.ndrange(w, h):
            uv = self._cell_uv(i, j, w, h)
            v = self.codec.decode(velocity[vel, i, j])
            back = uv - dt * v
            back = ti.max(ADVECTION_CLAMP_MIN, ti.min(ADVECTION_CLAMP_MAX, back))
            if ti.static(kind == FieldKind.VELOCITY):
                moved = self._sample_velocity(source, src, back) * dissipation
                source[dst, i, j] = self.codec.encode(moved)
            else:
                source[dst, i, j] = self._sample_vec4(source, src, back) * dissipation

    @ti.kernel
    def _divergence(self, velocity: ti.template(), vel: ti.i32, out: ti.template()):
        w = out.shape[0]
        h = out.shape[1]
        for i, j in out:
            vl = self.codec.decode(velocity[vel, ti.max(0, i - 1), j])
            vr = self.codec.decode(velocity[vel, ti.min(w - 1, i + 1), j])
            vb = self.codec.decode(velocity[vel, i, ti.max(0, j - 1)])
            vt = self.codec.decode(velocity[vel, i, ti.min(h - 1, j + 1)])
            out[i, j] = 0.5 * ((vr.x - vl.x) + (vt.y - vb.y))

    @ti.kernel
    def _pressure_step(self, pressure: ti.template(), src: ti.i32, dst: ti.i32, divergence: ti.template()):
        w = divergence.shape[0]
        h = divergence.shape[1]
        for i, j in divergence:
            pl = pressure[src, ti.max(0, i - 1), j]
            pr = pressure[src, ti.min(w - 1, i + 1), j]
            pb = pressure[src, i, ti.max(0, j - 1)]
            pt = pressure[src, i, ti.min(h - 1, j + 1)]
            pressure[dst, i, j] = (pl + pr + pb + pt - divergence[i, j]) * 0.25

    @ti.kernel
    def _project(self, velocity: ti.template(), src: ti.i32, dst: ti.i32,
                 pressure: ti.template(), prs: ti.i32):
        w = velocity.shape[1]
        h = velocity.shape[2]
        for i, j in ti.ndrange(w, h):
            pl = pressure[prs, ti.max(0, i - 1), j]
            pr = pressure[prs, ti.min(w - 1, i + 1), j]
            pb = pressure[prs, i, ti.max(0, j - 1)]
            pt = pressure[prs, i, ti.min(h - 1, j + 1)]

            v = self.codec.decode(velocity[src, i, j])
            v -= 0.5 * ti.Vector([pr - pl, pt - pb])

            # No-flux wall: zero at the domain edge, ~1 a few cells inward
            uv = self._cell_uv(i, j, w, h)
            border = _smoothstep(0.0, BORDER_FALLOFF, uv) * _smoothstep(0.0, BORDER_FALLOFF, 1.0 - uv)
            v *= border.x * border.y

            velocity[dst, i, j] = self.codec.encode(v)

    @ti.kernel
    def _splat_velocity(self, velocity: ti.template(), src: ti.i32, dst: ti.i32,
                        px: ti.f32, py: ti.f32, fx: ti.f32, fy: ti.f32, radius: ti.f32):
        w = velocity.shape[1]
        h = velocity.shape[2]
        point = ti.Vector([px, py])
        force = ti.Vector([fx, fy])
        for i, j in ti.ndrange(w, h):
            m = self._splat_falloff(i, j, w, h, point, radius)
            v = self.codec.decode(velocity[src, i, j]) + force * m
            velocity[dst, i, j] = self.codec.encode(v)

    @ti.kernel
    def _splat_dye(self, dye: ti.template(), src: ti.i32, dst: ti.i32,
                   px: ti.f32, py: ti.f32, r: ti.f32, g: ti.f32, b: ti.f32, radius: ti.f32):
        w = dye.shape[1]
        h = dye.shape[2]
        point = ti.Vector([px, py])
        col = ti.Vector([r, g, b])
        for i, j in ti.ndrange(w, h):
            m = self._splat_falloff(i, j, w, h, point, radius)
            old = dye[src, i, j]
            rgb = old.xyz + col * m
            a = _clamp_01(old.w + DYE_ALPHA_GAIN * m)
            dye[dst, i, j] = ti.Vector([rgb.x, rgb.y, rgb.z, a])
