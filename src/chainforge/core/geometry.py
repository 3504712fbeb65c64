"""Angle and direction helpers for yaw/pitch/roll orientations.

Orientations are ``[roll, pitch, yaw]`` arrays in degrees.  The rotation
they describe is ``R_yaw(up) @ R_pitch(left) @ R_roll(forward)``, so with all
angles at zero a node looks down +Z with +Y up.  Positive yaw turns the
heading toward +X, positive pitch tips it toward -Y.

All functions are pure and deterministic.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from chainforge.constants import (
    EPSILON, PITCH_LIMIT_DEG, ROLL, PITCH, YAW,
    VEC_LEFT, VEC_UP, VEC_FORWARD,
)
from chainforge.core.math_utils import (
    Mat3, Mat4, Vec3,
    clamp, mat4_compose, mat4_rotation_x, mat4_rotation_y, mat4_rotation_z,
    normalize, vec3,
)


# ── Angles ────────────────────────────────────────────────────────────

def angle_modulo(angle: float) -> float:
    """Wrap an angle in degrees into (-180, 180]."""
    return -((180.0 - angle) % 360.0 - 180.0)


def angle_distance(angle: float, reference: float) -> float:
    """Signed shortest circular distance from *reference* to *angle*.

    The result lies in (-180, 180]; ``angle_distance(-170, 170) == 20``.
    """
    return angle_modulo(angle - reference)


def clamp_pitch(pitch: float) -> float:
    """Keep pitch strictly inside (-90, 90) so the heading basis is regular."""
    return clamp(pitch, -PITCH_LIMIT_DEG, PITCH_LIMIT_DEG)


def angle_between(a: Vec3, b: Vec3) -> float:
    """Unsigned angle between two vectors in degrees (0 if either is zero)."""
    na, nb = np.linalg.norm(a), np.linalg.norm(b)
    if na < 1e-10 or nb < 1e-10:
        return 0.0
    return math.degrees(math.atan2(np.linalg.norm(np.cross(a, b)), float(np.dot(a, b))))


# ── Orientation <-> matrix / direction ────────────────────────────────

def mat4_from_orientation(orientation: Vec3) -> Mat4:
    """Rotation matrix for ``[roll, pitch, yaw]`` degrees (yaw applied outermost)."""
    return (
        mat4_rotation_y(math.radians(orientation[YAW]))
        @ mat4_rotation_x(math.radians(orientation[PITCH]))
        @ mat4_rotation_z(math.radians(orientation[ROLL]))
    )


def orientation_from_mat3(r: Mat3) -> Vec3:
    """Recover ``[roll, pitch, yaw]`` degrees from a pure rotation matrix.

    At pitch = +-90 yaw and roll are coupled; roll is reported as 0 there.
    """
    sin_pitch = clamp(-float(r[1, 2]), -1.0, 1.0)
    pitch = math.asin(sin_pitch)
    cos_pitch = math.hypot(float(r[1, 0]), float(r[1, 1]))
    if cos_pitch > 1e-9:
        roll = math.atan2(float(r[1, 0]), float(r[1, 1]))
        yaw = math.atan2(float(r[0, 2]), float(r[2, 2]))
    else:
        roll = 0.0
        yaw = math.atan2(-float(r[2, 0]), float(r[0, 0]))
    return np.array([
        angle_modulo(math.degrees(roll)),
        math.degrees(pitch),
        angle_modulo(math.degrees(yaw)),
    ], dtype=np.float64)


def orientation_to_direction(orientation: Vec3) -> tuple[Vec3, Vec3]:
    """Return the (heading, up) unit vectors for an orientation.

    Pitch is clamped just inside +-90 degrees before the basis is built.
    """
    o = np.array(orientation, dtype=np.float64)
    o[PITCH] = clamp_pitch(o[PITCH])
    r = mat4_from_orientation(o)[:3, :3]
    return r @ VEC_FORWARD, r @ VEC_UP


def direction_to_orientation(direction: Vec3, up: Optional[Vec3] = None) -> Vec3:
    """Inverse of :func:`orientation_to_direction`.

    Without *up* the roll is 0.  Yaw is normalised to (-180, 180].  A zero
    direction maps to the zero orientation.
    """
    d = normalize(np.asarray(direction, dtype=np.float64))
    if not d.any():
        return vec3()

    if up is not None:
        left = np.cross(np.asarray(up, dtype=np.float64), d)
        if np.linalg.norm(left) > EPSILON:
            left = normalize(left)
            true_up = np.cross(d, left)
            return orientation_from_mat3(np.column_stack([left, true_up, d]))

    pitch = math.degrees(math.asin(clamp(-float(d[1]), -1.0, 1.0)))
    if math.hypot(float(d[0]), float(d[2])) > EPSILON:
        yaw = angle_modulo(math.degrees(math.atan2(float(d[0]), float(d[2]))))
    else:
        yaw = 0.0
    return np.array([0.0, pitch, yaw], dtype=np.float64)


def decompose_transform(m: Mat4) -> tuple[Vec3, Vec3, Vec3]:
    """Split a TRS matrix into ``(origin, orientation, scale)``.

    Shear cannot be represented and is discarded.  A negative determinant is
    carried by the X scale.
    """
    origin = m[:3, 3].astype(np.float64).copy()
    basis = m[:3, :3].astype(np.float64)
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0:
        scale[0] = -scale[0]
    safe = np.where(np.abs(scale) < 1e-12, 1.0, scale)
    rotation = basis / safe
    return origin, orientation_from_mat3(rotation), scale


def local_transform(origin: Vec3, orientation: Vec3, scale: Vec3) -> Mat4:
    """``T(origin) @ R(orientation) @ S(scale)``."""
    return mat4_compose(origin, mat4_from_orientation(orientation), scale)


# ── Projections ───────────────────────────────────────────────────────

def vector_projection_onto(v: Vec3, onto: Vec3) -> Vec3:
    denom = float(np.dot(onto, onto))
    if denom < 1e-20:
        return np.zeros(3, dtype=np.float64)
    return onto * (float(np.dot(v, onto)) / denom)


def vector_rejection_from(v: Vec3, onto: Vec3) -> Vec3:
    """Component of *v* orthogonal to *onto*."""
    return v - vector_projection_onto(v, onto)


def project_point_onto_plane(point: Vec3, plane_origin: Vec3, plane_normal: Vec3) -> Vec3:
    """Nearest point on the plane through *plane_origin* with *plane_normal*."""
    return point - vector_projection_onto(point - plane_origin, plane_normal)


# ── Rotations between directions ──────────────────────────────────────

def any_perpendicular(v: Vec3) -> Vec3:
    """Some unit vector orthogonal to *v*."""
    helper = VEC_LEFT if abs(float(normalize(v)[0])) < 0.9 else VEC_UP
    return normalize(np.cross(v, helper))


def arcball_rotation(from_dir: Vec3, to_dir: Vec3) -> tuple[Vec3, float]:
    """Minimal rotation taking *from_dir* onto *to_dir*.

    Returns ``(axis, angle_deg)`` with a unit axis following the right-hand
    rule.  Parallel inputs give a zero angle; opposite inputs rotate 180
    degrees about an arbitrary perpendicular axis.
    """
    a = normalize(np.asarray(from_dir, dtype=np.float64))
    b = normalize(np.asarray(to_dir, dtype=np.float64))
    axis = np.cross(a, b)
    sin_angle = float(np.linalg.norm(axis))
    cos_angle = float(np.dot(a, b))
    angle = math.degrees(math.atan2(sin_angle, cos_angle))
    if sin_angle < 1e-12:
        if cos_angle >= 0.0:
            return VEC_FORWARD.copy(), 0.0
        return any_perpendicular(a), 180.0
    return axis / sin_angle, angle
