"""Small utilities for angle wrapping and orientation averaging.

Keep these numpy-only so tests can import them without pulling in the
optimizer or geometry stack.
"""
import math
import numpy as np


def normalize_theta(x):
    """Wrap radians to [-pi, pi).

    Accepts scalars or numpy arrays; scalars come back as python floats.
    """
    x_arr = np.asarray(x, dtype=float)
    wrapped = (x_arr + math.pi) % (2 * math.pi) - math.pi
    if wrapped.ndim == 0:
        return float(wrapped)
    return wrapped


def angle_diff(a, b):
    """Compute the shortest signed rotation from ``b`` to ``a``, wrapped to [-pi, pi).

    Works with scalars or array-like inputs (broadcast).
    """
    a_b, b_b = np.broadcast_arrays(np.asarray(a, dtype=float), np.asarray(b, dtype=float))
    return normalize_theta(a_b - b_b)


def average_angle(a: float, b: float) -> float:
    """Mean of two orientations on the circle."""
    x = math.cos(a) + math.cos(b)
    y = math.sin(a) + math.sin(b)
    if x == 0.0 and y == 0.0:
        # opposite headings; fall back to the arithmetic mean
        return normalize_theta(0.5 * (a + b))
    return math.atan2(y, x)


def interpolate_angle(a: float, b: float, ratio: float) -> float:
    """Rotate from ``a`` towards ``b`` by ``ratio`` of the shortest rotation."""
    return normalize_theta(a + ratio * angle_diff(b, a))
