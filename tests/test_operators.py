import numpy as np
import pytest

from open_suminagashi_sim.fluid.configs import BORDER_FALLOFF, FluidParams
from open_suminagashi_sim.fluid.marbling_engine import MarblingEngine
from open_suminagashi_sim.fluid.operators import FieldKind

from conftest import cell_center, write_read_slot


def _smoothstep(edge0, edge1, x):
    t = min(1.0, max(0.0, (x - edge0) / (edge1 - edge0)))
    return t * t * (3.0 - 2.0 * t)


# ===============================
# Splats
# ===============================

def test_velocity_splat_is_gaussian_around_point(engine):
    grid = engine.state.grid
    before = grid.velocity.read
    x, y = cell_center(engine, 64, 64)
    engine.splat_velocity(x, y, 0.3, -0.2, 0.05)
    assert grid.velocity.read != before

    v = engine.velocity_to_numpy()
    assert v[64, 64] == pytest.approx([0.3, -0.2], abs=1e-6)

    d = 6.0 / 128.0
    m = np.exp(-(d * d) / (0.05 * 0.05 + 1e-6))
    assert v[70, 64] == pytest.approx([0.3 * m, -0.2 * m], rel=1e-4)
    assert v[64, 58] == pytest.approx(v[70, 64], rel=1e-5)


@pytest.fixture(scope="module")
def wide_engine(taichi_cpu):
    eng = MarblingEngine(64, 32, arch="cpu", velocity_storage="native", warmup=False)
    eng.set_params(FluidParams(ambient_turbulence=False))
    return eng


def test_splats_stay_round_on_wide_grid(wide_engine):
    wide_engine.clear()
    x, y = cell_center(wide_engine, 32, 16)
    wide_engine.splat_dye(x, y, (1.0, 1.0, 1.0), 0.1)
    wide_engine.splat_velocity(x, y, 0.5, 0.0, 0.1)
    alpha = wide_engine.dye_to_numpy()[..., 3]
    across_x = int((alpha[:, 16] > 0.25).sum())
    across_y = int((alpha[32, :] > 0.25).sum())
    assert across_x == across_y
    v = wide_engine.velocity_to_numpy()
    assert v[36, 16, 0] == pytest.approx(v[32, 20, 0], rel=1e-5)


def test_velocity_splats_accumulate(engine):
    x, y = cell_center(engine, 40, 80)
    engine.splat_velocity(x, y, 0.1, 0.0, 0.05)
    engine.splat_velocity(x, y, 0.0, 0.2, 0.05)
    engine.splat_velocity(x, y, 0.1, 0.0, 0.05)
    assert engine.velocity_to_numpy()[40, 80] == pytest.approx([0.2, 0.2], abs=1e-6)


def test_dye_splat_adds_color_and_clamps_alpha(engine):
    x, y = cell_center(engine, 64, 64)
    engine.splat_dye(x, y, (0.2, 0.4, 0.6), 0.05)
    dye = engine.dye_to_numpy()
    assert dye[64, 64] == pytest.approx([0.2, 0.4, 0.6, 0.5], abs=1e-6)

    for _ in range(5):
        engine.splat_dye(x, y, (0.2, 0.4, 0.6), 0.05)
    alpha = engine.dye_to_numpy()[..., 3]
    assert alpha[64, 64] == 1.0
    assert alpha.max() <= 1.0
    assert alpha.min() >= 0.0


# ===============================
# Advection
# ===============================

def test_advect_with_zero_velocity_keeps_field(engine):
    grid = engine.state.grid
    engine.splat_dye(0.4, 0.6, (1.0, 0.0, 0.0), 0.1)
    before = engine.dye_to_numpy()

    engine.operators.advect(grid.dye, grid.velocity, 1.0, 1.0, FieldKind.DYE)
    grid.dye.swap()
    np.testing.assert_allclose(engine.dye_to_numpy(), before, atol=1e-6)

    engine.operators.advect(grid.dye, grid.velocity, 1.0, 0.5, FieldKind.DYE)
    grid.dye.swap()
    np.testing.assert_allclose(engine.dye_to_numpy(), before * 0.5, atol=1e-6)


def test_advect_shifts_dye_by_one_cell(engine):
    grid = engine.state.grid
    engine.splat_dye(0.3, 0.5, (0.0, 0.0, 1.0), 0.08)
    before = engine.dye_to_numpy()

    v = np.zeros((128, 128, 2), dtype=np.float32)
    v[..., 0] = 1.0 / 128.0
    write_read_slot(grid.velocity, v)

    engine.operators.advect(grid.dye, grid.velocity, 1.0, 1.0, FieldKind.DYE)
    grid.dye.swap()
    after = engine.dye_to_numpy()
    np.testing.assert_allclose(after[1:], before[:-1], atol=1e-5)


def test_velocity_self_advection_applies_dissipation(engine):
    grid = engine.state.grid
    v = np.zeros((128, 128, 2), dtype=np.float32)
    v[..., 0] = 0.1
    write_read_slot(grid.velocity, v)

    engine.operators.advect(grid.velocity, grid.velocity, 0.5, 0.9, FieldKind.VELOCITY)
    grid.velocity.swap()
    np.testing.assert_allclose(engine.velocity_to_numpy()[..., 0], 0.09, rtol=1e-5)
    assert np.all(engine.velocity_to_numpy()[..., 1] == 0.0)


# ===============================
# Divergence, pressure, projection
# ===============================

def test_divergence_of_linear_flow(engine):
    grid = engine.state.grid
    v = np.zeros((128, 128, 2), dtype=np.float32)
    v[..., 0] = 0.01 * np.arange(128, dtype=np.float32)[:, None]
    write_read_slot(grid.velocity, v)

    engine.operators.divergence(grid.velocity, grid.divergence)
    div = engine.divergence_to_numpy()
    np.testing.assert_allclose(div[1:-1], 0.01, atol=1e-6)
    # Edge neighbours are clamped, so the difference spans a single cell
    np.testing.assert_allclose(div[0], 0.005, atol=1e-6)
    np.testing.assert_allclose(div[-1], 0.005, atol=1e-6)


def test_jacobi_step_spreads_point_source(engine):
    grid = engine.state.grid
    div = np.zeros((128, 128), dtype=np.float32)
    div[64, 64] = 1.0
    grid.divergence.from_numpy(div)

    engine.operators.pressure_step(grid.pressure, grid.divergence)
    grid.pressure.swap()
    p = engine.pressure_to_numpy()
    assert p[64, 64] == pytest.approx(-0.25)
    assert p[65, 64] == 0.0

    engine.operators.pressure_step(grid.pressure, grid.divergence)
    grid.pressure.swap()
    p = engine.pressure_to_numpy()
    assert p[64, 64] == pytest.approx(-0.25)
    for i, j in ((65, 64), (63, 64), (64, 65), (64, 63)):
        assert p[i, j] == pytest.approx(-0.0625)
    assert p[66, 64] == 0.0


def test_project_subtracts_pressure_gradient(engine):
    grid = engine.state.grid
    p = np.zeros((128, 128), dtype=np.float32)
    p[:, :] = 0.02 * np.arange(128, dtype=np.float32)[:, None]
    write_read_slot(grid.pressure, p)

    engine.operators.project(grid.velocity, grid.pressure)
    grid.velocity.swap()
    v = engine.velocity_to_numpy()
    np.testing.assert_allclose(v[1:-1, 1:-1, 0], -0.02, atol=1e-5)
    np.testing.assert_allclose(v[1:-1, 1:-1, 1], 0.0, atol=1e-6)


def test_project_applies_wall_mask(engine):
    grid = engine.state.grid
    write_read_slot(grid.velocity, np.full((128, 128, 2), 0.5, dtype=np.float32))

    engine.operators.project(grid.velocity, grid.pressure)
    grid.velocity.swap()
    v = engine.velocity_to_numpy()

    s = _smoothstep(0.0, BORDER_FALLOFF, 0.5 / 128.0)
    assert v[64, 64] == pytest.approx([0.5, 0.5])
    assert v[1, 64] == pytest.approx([0.5, 0.5])
    assert v[0, 64] == pytest.approx([0.5 * s, 0.5 * s], rel=1e-4)
    assert v[127, 64] == pytest.approx([0.5 * s, 0.5 * s], rel=1e-4)
    assert v[64, 0] == pytest.approx([0.5 * s, 0.5 * s], rel=1e-4)
    assert v[0, 0] == pytest.approx([0.5 * s * s, 0.5 * s * s], rel=1e-4)
