"""
Footprint / collision collaborators used by the feasibility check.

A footprint model answers one question: how costly is it to place the robot
footprint at a pose? Negative answers mean collision. ``PolygonFootprintModel``
is the reference implementation, built on shapely with a prepared union of the
obstacle geometry so repeated queries along a trajectory stay cheap.
"""
import logging
from typing import Iterable, Protocol, Sequence

from shapely import affinity
from shapely.geometry import Point, Polygon
from shapely.ops import unary_union
from shapely.prepared import prep

log = logging.getLogger(__name__)


class FootprintModel(Protocol):
    def footprint_cost(self, pose, footprint_spec: Sequence, inscribed_radius: float,
                       circumscribed_radius: float) -> float:
        ...


class PolygonFootprintModel:
    """Collision model over a fixed set of obstacles.

    Parameters
    - obstacles: iterable of ``Obstacle``; dynamic obstacles are checked at their t=0 pose
    - padding: extra clearance (m) added around the footprint
    """

    def __init__(self, obstacles: Iterable = (), padding: float = 0.0):
        geoms = []
        for obst in obstacles:
            geom = obst.geometry
            if obst.radius > 0:
                geom = geom.buffer(obst.radius)
            geoms.append(geom)
        self.padding = float(padding)
        self._union = unary_union(geoms) if geoms else None
        self._prepared = prep(self._union) if self._union is not None else None

    def _shape_at(self, pose, footprint_spec, circumscribed_radius):
        if len(footprint_spec) < 3:
            # point robot or circular footprint
            radius = max(circumscribed_radius, 0.0) + self.padding
            return Point(pose.x, pose.y).buffer(radius) if radius > 0 else Point(pose.x, pose.y)
        shape = Polygon([tuple(p) for p in footprint_spec])
        shape = affinity.rotate(shape, pose.theta, origin=(0.0, 0.0), use_radians=True)
        shape = affinity.translate(shape, pose.x, pose.y)
        if self.padding > 0:
            shape = shape.buffer(self.padding)
        return shape

    def footprint_cost(self, pose, footprint_spec: Sequence, inscribed_radius: float,
                       circumscribed_radius: float) -> float:
        """Clearance of the placed footprint, or -1.0 when it intersects an obstacle."""
        if self._prepared is None:
            return 0.0
        shape = self._shape_at(pose, footprint_spec, circumscribed_radius)
        if self._prepared.intersects(shape):
            return -1.0
        return float(shape.distance(self._union))
