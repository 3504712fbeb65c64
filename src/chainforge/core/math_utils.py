"""NumPy-backed math utilities: Vec3 and Mat4 operations.

Vectors are plain numpy arrays.  Matrices are 4x4 numpy arrays acting on
column vectors, so ``world = parent_world @ local``.
"""

import numpy as np
from numpy.typing import NDArray

# Type aliases
Vec3 = NDArray[np.float64]
Mat3 = NDArray[np.float64]
Mat4 = NDArray[np.float64]


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> Vec3:
    return np.array([x, y, z], dtype=np.float64)


def as_vec3(v) -> Vec3:
    """Copy any 3-sequence into a float64 vector."""
    a = np.array(v, dtype=np.float64).reshape(-1)
    if a.shape != (3,):
        raise ValueError(f"Expected 3 components, got {a.shape[0]}")
    return a


def mat4_identity() -> Mat4:
    return np.eye(4, dtype=np.float64)


def mat4_rotation_x(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[1, 1] = c
    m[1, 2] = -s
    m[2, 1] = s
    m[2, 2] = c
    return m


def mat4_rotation_y(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 2] = s
    m[2, 0] = -s
    m[2, 2] = c
    return m


def mat4_rotation_z(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 1] = -s
    m[1, 0] = s
    m[1, 1] = c
    return m


def mat4_axis_angle(axis: Vec3, angle_rad: float) -> Mat4:
    """Rotation about an arbitrary axis (Rodrigues' formula)."""
    a = normalize(axis)
    m = np.eye(4, dtype=np.float64)
    if not a.any():
        return m
    x, y, z = a
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    t = 1.0 - c
    m[0, 0] = t * x * x + c
    m[0, 1] = t * x * y - s * z
    m[0, 2] = t * x * z + s * y
    m[1, 0] = t * x * y + s * z
    m[1, 1] = t * y * y + c
    m[1, 2] = t * y * z - s * x
    m[2, 0] = t * x * z - s * y
    m[2, 1] = t * y * z + s * x
    m[2, 2] = t * z * z + c
    return m


def mat4_compose(position: Vec3, rotation: Mat4, scale: Vec3) -> Mat4:
    """Compose TRS matrix from position, rotation matrix, and scale."""
    m = rotation.copy()
    m[:3, 0] *= scale[0]
    m[:3, 1] *= scale[1]
    m[:3, 2] *= scale[2]
    m[0, 3] = position[0]
    m[1, 3] = position[1]
    m[2, 3] = position[2]
    return m


def mat4_inverse(m: Mat4) -> Mat4:
    return np.linalg.inv(m)


def mat4_normal(m: Mat4) -> Mat4:
    """Inverse transpose of a full 4x4 transform (normal transform)."""
    return np.linalg.inv(m).T


# Vector operations

def normalize(v: Vec3) -> Vec3:
    n = np.linalg.norm(v)
    if n < 1e-10:
        return np.zeros_like(v)
    return v / n


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def transform_point(m: Mat4, p: Vec3) -> Vec3:
    """Transform a point by a 4x4 matrix."""
    v = np.array([p[0], p[1], p[2], 1.0], dtype=np.float64)
    r = m @ v
    return r[:3]


def transform_direction(m: Mat4, d: Vec3) -> Vec3:
    """Transform a direction by a 4x4 matrix (ignores translation)."""
    return m[:3, :3] @ d
