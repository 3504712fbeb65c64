"""Shared constants and paths for ChainForge."""

from pathlib import Path

import numpy as np

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
ASSETS_DIR = PROJECT_ROOT / "assets"
CONFIG_DIR = ASSETS_DIR / "config"
SKELETON_CONFIG_DIR = CONFIG_DIR / "skeleton"

# Local basis: X=left, Y=up, Z=forward
VEC_LEFT = np.array([1.0, 0.0, 0.0])
VEC_UP = np.array([0.0, 1.0, 0.0])
VEC_FORWARD = np.array([0.0, 0.0, 1.0])

# Orientation vector layout (degrees)
ROLL = 0
PITCH = 1
YAW = 2

# Vectors shorter than this are treated as degenerate
EPSILON = 1e-4

# Pitch is kept strictly inside (-90, 90) when building a direction basis
PITCH_LIMIT_DEG = 89.9

# Solver defaults (overridable from assets/config/ik_solver.json)
DEFAULT_IK_ITERATIONS = 20
DEFAULT_ACCEPT_DISTANCE = 0.01
DEFAULT_ACCEPT_AVG_ANGLE = 0.0
