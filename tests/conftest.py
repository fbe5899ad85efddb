import numpy as np
import pytest

from open_suminagashi_sim.fluid.configs import FluidParams
from open_suminagashi_sim.fluid.marbling_engine import MarblingEngine, _initialize_taichi_backend


@pytest.fixture(scope="session", autouse=True)
def taichi_cpu():
    _initialize_taichi_backend("cpu")


def _quiet(engine):
    # No ambient impulses unless a test asks for them
    engine.set_params(FluidParams(ambient_turbulence=False))
    engine.clear()
    return engine


@pytest.fixture(scope="session")
def _native_engine(taichi_cpu):
    return MarblingEngine(128, 128, arch="cpu", velocity_storage="native", warmup=False)


@pytest.fixture(scope="session")
def _quantized_engine(taichi_cpu):
    return MarblingEngine(64, 64, arch="cpu", velocity_storage="quantized", warmup=False)


@pytest.fixture(scope="session")
def _large_engine(taichi_cpu):
    return MarblingEngine(256, 256, arch="cpu", velocity_storage="native", warmup=False)


@pytest.fixture
def engine(_native_engine):
    return _quiet(_native_engine)


@pytest.fixture
def quantized_engine(_quantized_engine):
    return _quiet(_quantized_engine)


@pytest.fixture
def large_engine(_large_engine):
    return _quiet(_large_engine)


@pytest.fixture(params=["native", "quantized"])
def any_engine(request, _native_engine, _quantized_engine):
    return _quiet(_native_engine if request.param == "native" else _quantized_engine)


def cell_center(engine, i, j):
    return ((i + 0.5) / engine.width, (j + 0.5) / engine.height)


def write_read_slot(buffer, values):
    """Overwrites the read slot of a DoubleBuffer from a numpy array."""
    arr = buffer.field.to_numpy()
    arr[buffer.read] = values
    buffer.field.from_numpy(arr)


def speed(v):
    return np.sqrt((v.astype(np.float64) ** 2).sum(axis=-1))
