"""
Obstacle geometry for the local planners.

Obstacles wrap a shapely geometry. Point and circular obstacles take a pure
numpy fast path for distance queries (they dominate in practice); lines and
polygons go through shapely's vectorized ``distance``. A constant velocity
makes an obstacle dynamic: its geometry is the pose at t=0 and moves with
``velocity * t``.
"""
import logging
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np
import shapely
from shapely.geometry import LineString, Point, Polygon

log = logging.getLogger(__name__)

SOURCES = ('costmap', 'custom')


class Obstacle:
    """One static or constant-velocity obstacle."""

    def __init__(self, geometry, radius: float = 0.0, velocity=(0.0, 0.0), source: str = 'custom'):
        if geometry is None or geometry.is_empty:
            raise ValueError("obstacle geometry must not be empty")
        if radius < 0:
            raise ValueError(f"obstacle radius must be >= 0, got {radius}")
        if source not in SOURCES:
            raise ValueError(f"unknown obstacle source '{source}'")
        vel = np.asarray(velocity, dtype=float).reshape(-1)
        if vel.size != 2 or not np.all(np.isfinite(vel)):
            raise ValueError("obstacle velocity must be two finite values")
        self.geometry = geometry
        self.radius = float(radius)
        self.velocity = vel
        self.source = source
        self._is_point = geometry.geom_type == 'Point'
        self._center = np.array(geometry.centroid.coords[0], dtype=float)

    # -------------------------------------------------------------- constructors
    @classmethod
    def point(cls, x: float, y: float, velocity=(0.0, 0.0), source: str = 'custom') -> "Obstacle":
        return cls(Point(x, y), 0.0, velocity, source)

    @classmethod
    def circle(cls, x: float, y: float, radius: float, velocity=(0.0, 0.0),
               source: str = 'custom') -> "Obstacle":
        return cls(Point(x, y), radius, velocity, source)

    @classmethod
    def line(cls, start, end, velocity=(0.0, 0.0), source: str = 'custom') -> "Obstacle":
        return cls(LineString([tuple(start), tuple(end)]), 0.0, velocity, source)

    @classmethod
    def polygon(cls, vertices: Sequence, velocity=(0.0, 0.0), source: str = 'custom') -> "Obstacle":
        verts = [tuple(v) for v in vertices]
        if len(verts) < 3:
            raise ValueError("a polygon obstacle needs at least 3 vertices")
        return cls(Polygon(verts), 0.0, velocity, source)

    # -------------------------------------------------------------- queries
    @property
    def is_dynamic(self) -> bool:
        return bool(np.any(self.velocity != 0.0))

    def centroid(self, t: float = 0.0) -> np.ndarray:
        return self._center + self.velocity * t

    def extent_radius(self) -> float:
        """Radius of a disc around the centroid that covers the obstacle."""
        if self._is_point:
            return self.radius
        coords = np.asarray(self.geometry.convex_hull.exterior.coords
                            if self.geometry.geom_type == 'Polygon'
                            else self.geometry.coords, dtype=float)
        return float(np.max(np.hypot(*(coords - self._center).T))) + self.radius

    def distances(self, xy, times: Optional[np.ndarray] = None) -> np.ndarray:
        """Clearance of each query point (M, 2) to the obstacle at the matching time.

        Points inside the obstacle report 0 for polygons and a negative value
        for circles.
        """
        pts = np.atleast_2d(np.asarray(xy, dtype=float))
        if times is not None and self.is_dynamic:
            pts = pts - np.outer(np.asarray(times, dtype=float), self.velocity)
        if self._is_point:
            return np.hypot(pts[:, 0] - self._center[0], pts[:, 1] - self._center[1]) - self.radius
        return shapely.distance(self.geometry, shapely.points(pts)) - self.radius

    def line_clearance(self, a, b) -> float:
        """Clearance of the segment ``a``-``b`` to the obstacle at t=0."""
        seg = LineString([tuple(a), tuple(b)])
        if seg.length == 0.0:
            return float(self.distances(np.asarray(a, dtype=float)[None, :])[0])
        return float(self.geometry.distance(seg)) - self.radius

    def __repr__(self):
        return (f"Obstacle({self.geometry.geom_type}, radius={self.radius}, "
                f"velocity={self.velocity.tolist()}, source={self.source!r})")


def filter_behind_robot(obstacles: Iterable[Obstacle], pose, behind_dist: float) -> List[Obstacle]:
    """Drop costmap obstacles farther than ``behind_dist`` behind the robot.

    Custom obstacles are always kept.
    """
    obstacles = list(obstacles)
    heading = np.array([math.cos(pose.theta), math.sin(pose.theta)])
    origin = np.array([pose.x, pose.y])
    kept = []
    for obst in obstacles:
        if obst.source == 'costmap' and float(np.dot(obst.centroid() - origin, heading)) < -behind_dist:
            continue
        kept.append(obst)
    if len(kept) != len(obstacles):
        log.debug('[TEB] ignoring %d costmap obstacles behind the robot', len(obstacles) - len(kept))
    return kept
