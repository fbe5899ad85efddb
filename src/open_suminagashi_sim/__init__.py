"""
Open Suminagashi Sim.

Copyright (c) 2026 Shuoqi Chen
SPDX-License-Identifier: MIT OR Apache-2.0
"""
from .fluid.marbling_engine import MarblingEngine
from .fluid.configs import FluidParams
from .viewer import launch_viewer

__version__ = "1.0.0"
__author__ = "Shuoqi Chen"
__license__ = "MIT"
__all__ = ["MarblingEngine", "FluidParams", "launch_viewer"]
