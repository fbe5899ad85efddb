"""Fluid core for the marbling simulation."""
from .marbling_engine import MarblingEngine
from .configs import FluidParams

__all__ = ["MarblingEngine", "FluidParams"]
