"""
Value types exchanged between a host and the local planners.

Everything here is immutable: a ``PlanRequest`` handed to a planner cannot be
changed afterwards, and trajectory points returned to a caller are copies of
the planner's internal state.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, NamedTuple, Sequence, Tuple

import numpy as np

from hateb.local_planner.angle_utils import angle_diff, normalize_theta


@dataclass(frozen=True)
class Twist:
    linear_x: float = 0.0
    linear_y: float = 0.0
    angular_z: float = 0.0

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.linear_x, self.linear_y, self.angular_z))


@dataclass(frozen=True)
class PoseSE2:
    """Planar pose: position in meters, heading in radians."""

    x: float
    y: float
    theta: float

    def position(self) -> np.ndarray:
        return np.array([self.x, self.y], dtype=float)

    def orientation_unit_vec(self) -> np.ndarray:
        return np.array([math.cos(self.theta), math.sin(self.theta)])

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.theta], dtype=float)

    @classmethod
    def from_array(cls, values) -> "PoseSE2":
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.size != 3:
            raise ValueError(f"a planar pose needs 3 values, got {arr.size}")
        return cls(float(arr[0]), float(arr[1]), normalize_theta(float(arr[2])))

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.theta))

    def distance(self, other: "PoseSE2") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def propagated(self, twist: Twist, dt: float) -> "PoseSE2":
        """Pose after following ``twist`` (body frame) for ``dt`` seconds.

        Unicycle motion is integrated exactly along the arc; the lateral
        component is rotated with the mean heading.
        """
        if dt <= 0.0:
            return self
        v, vy, w = twist.linear_x, twist.linear_y, twist.angular_z
        th = self.theta
        th_new = th + w * dt
        if abs(w) < 1e-9:
            dx = v * math.cos(th) * dt
            dy = v * math.sin(th) * dt
        else:
            dx = v / w * (math.sin(th_new) - math.sin(th))
            dy = -v / w * (math.cos(th_new) - math.cos(th))
        th_mid = th + 0.5 * w * dt
        dx -= vy * math.sin(th_mid) * dt
        dy += vy * math.cos(th_mid) * dt
        return PoseSE2(self.x + dx, self.y + dy, normalize_theta(th_new))


@dataclass(frozen=True)
class PoseStamped:
    pose: PoseSE2
    stamp: float = 0.0


@dataclass(frozen=True)
class PlanRequest:
    """Reference path plus boundary velocities (one robot or one human)."""

    plan: Tuple[PoseStamped, ...] = ()
    start_vel: Twist = field(default_factory=Twist)
    goal_vel: Twist = field(default_factory=Twist)

    def __post_init__(self):
        # accept lists / bare poses but store an immutable tuple of stamped poses
        stamped = tuple(p if isinstance(p, PoseStamped) else PoseStamped(p) for p in self.plan)
        object.__setattr__(self, 'plan', stamped)

    def __len__(self) -> int:
        return len(self.plan)

    def poses(self) -> Tuple[PoseSE2, ...]:
        return tuple(p.pose for p in self.plan)


# human id -> request; supplied fresh by the caller on every cycle
HumanPlanIndex = Dict[int, PlanRequest]


@dataclass(frozen=True)
class TrajectoryPoint:
    pose: PoseSE2
    velocity: Twist
    time_from_start: float


class VelocityCommand(NamedTuple):
    v: float
    omega: float


def poses_from_array(values) -> Tuple[PoseStamped, ...]:
    """Build a stamp-less path from an (N, 3) array-like."""
    arr = np.atleast_2d(np.asarray(values, dtype=float))
    return tuple(PoseStamped(PoseSE2.from_array(row)) for row in arr)


def path_length(poses: Sequence[PoseSE2]) -> float:
    total = 0.0
    for a, b in zip(poses[:-1], poses[1:]):
        total += a.distance(b)
    return total


def is_goal_reached(pose: PoseSE2, goal: PoseSE2, goal_tolerance) -> bool:
    """True when ``pose`` lies within the xy and yaw tolerances of ``goal``."""
    if pose.distance(goal) > goal_tolerance.xy_goal_tolerance:
        return False
    return abs(angle_diff(goal.theta, pose.theta)) <= goal_tolerance.yaw_goal_tolerance


def approach_pose(human_pose: PoseSE2, approach) -> PoseSE2:
    """Target pose ``approach_dist`` away from the human, facing the human.

    ``approach_angle`` is measured from the human's heading; pi puts the robot
    behind the human, 0 in front of it.
    """
    bearing = human_pose.theta + approach.approach_angle
    x = human_pose.x + approach.approach_dist * math.cos(bearing)
    y = human_pose.y + approach.approach_dist * math.sin(bearing)
    facing = math.atan2(human_pose.y - y, human_pose.x - x)
    return PoseSE2(x, y, normalize_theta(facing))
