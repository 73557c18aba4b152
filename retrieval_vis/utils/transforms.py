"""
Coordinate transform utilities for retrieval_vis.

Conversions between rotation representations and the rotation-only render
transform used to orient retrieved clouds next to the query image.
"""

from __future__ import annotations
import math
import numpy as np
from numpy.typing import NDArray

from retrieval_vis.core.datamodel import RigidTransform


def euler_to_quat_xyzw(roll: float, pitch: float, yaw: float) -> NDArray[np.float64]:
    """
    Convert Euler angles (radians) to quaternion [x, y, z, w].

    Uses ZYX convention (yaw-pitch-roll):
    - First rotate around Z by yaw
    - Then rotate around Y by pitch
    - Then rotate around X by roll

    Args:
        roll: Rotation around X-axis (radians)
        pitch: Rotation around Y-axis (radians)
        yaw: Rotation around Z-axis (radians)

    Returns:
        Quaternion as numpy array [x, y, z, w] (Hamilton convention)
    """
    # Half angles
    cr = math.cos(roll * 0.5)
    sr = math.sin(roll * 0.5)
    cp = math.cos(pitch * 0.5)
    sp = math.sin(pitch * 0.5)
    cy = math.cos(yaw * 0.5)
    sy = math.sin(yaw * 0.5)

    w = cr * cp * cy + sr * sp * sy
    x = sr * cp * cy - cr * sp * sy
    y = cr * sp * cy + sr * cp * sy
    z = cr * cp * sy - sr * sp * cy

    return np.array([x, y, z, w], dtype=np.float64)


def quat_xyzw_to_rotation_matrix(q) -> NDArray[np.float64]:
    """
    Convert quaternion [x, y, z, w] to a 3x3 rotation matrix (float64).

    The quaternion is normalized first; a zero quaternion maps to identity.
    """
    x, y, z, w = (float(v) for v in q)
    n = math.sqrt(x * x + y * y + z * z + w * w)
    if n < 1e-12:
        return np.eye(3, dtype=np.float64)
    x, y, z, w = x / n, y / n, z / n, w / n

    xx, yy, zz = x*x, y*y, z*z
    xy, xz, yz = x*y, x*z, y*z
    wx, wy, wz = w*x, w*y, w*z
    return np.array([
        [1-2*(yy+zz), 2*(xy-wz),   2*(xz+wy)],
        [2*(xy+wz),   1-2*(xx+zz), 2*(yz-wx)],
        [2*(xz-wy),   2*(yz+wx),   1-2*(xx+yy)]
    ], dtype=np.float64)


def transform_to_matrix(transform: RigidTransform) -> NDArray[np.float64]:
    """Full 4x4 homogeneous matrix (float64) of a rigid transform."""
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = quat_xyzw_to_rotation_matrix(transform.rotation_xyzw)
    T[:3, 3] = np.asarray(transform.translation, dtype=np.float64)
    return T


def normalize_transform(transform: RigidTransform) -> NDArray[np.float32]:
    """
    Reduce a room transform to its rotation for rendering.

    Returns a float32 4x4 matrix holding the rotation block of `transform`;
    the last column is forced to (0, 0, 0, 1) so candidate clouds are anchored
    at a canonical origin instead of the room's absolute position.
    """
    T = transform_to_matrix(transform).astype(np.float32)
    T[:, 3] = (0.0, 0.0, 0.0, 1.0)
    T[3, :3] = 0.0
    return T
