"""
Homotopy signatures of planar paths.

A path's signature holds, per obstacle, the angle the path winds around the
obstacle's centroid. Passing an obstacle on the left or on the right yields
winding angles of opposite sign, so two paths belong to the same homotopy
class when every component agrees up to a threshold.
"""
import numpy as np

from hateb.local_planner.angle_utils import normalize_theta


class HSignature:
    def __init__(self, values):
        self.values = np.asarray(values, dtype=float).reshape(-1)

    @classmethod
    def from_path(cls, path_xy, obstacles, prescaler: float = 1.0) -> "HSignature":
        """Signature of a polyline (K, 2) w.r.t. the obstacles' t=0 centroids."""
        pts = np.asarray(path_xy, dtype=float).reshape(-1, 2)
        values = []
        for obst in obstacles:
            rel = pts - obst.centroid()
            angles = np.arctan2(rel[:, 1], rel[:, 0])
            winding = np.sum(normalize_theta(np.diff(angles))) if len(angles) > 1 else 0.0
            values.append(prescaler * float(winding))
        return cls(values)

    def is_valid(self) -> bool:
        return bool(np.all(np.isfinite(self.values)))

    def is_equivalent(self, other: "HSignature", threshold: float) -> bool:
        if self.values.shape != other.values.shape:
            return False
        return bool(np.all(np.abs(self.values - other.values) < threshold))

    def __repr__(self):
        return f"HSignature({np.round(self.values, 3).tolist()})"
