"""
Predicted human motion for the human-aware cost terms.

Humans are not optimized jointly with the robot. Each ``PlanRequest`` in the
human plan index becomes a ``HumanTrack``: a time-parameterized sequence of
positions and world-frame velocities that the cost terms sample at the robot
band's time stamps.

Prediction rules
- a single pose: constant velocity from the request's ``start_vel`` (body frame)
- ``use_external_prediction`` with increasing stamps: the stamps are the timing
- otherwise: walk the path at ``nominal_vel_x`` (capped by ``max_vel_x``) and
  stand still at its end
"""
import logging
import math
from typing import Dict, List, Optional, Tuple

import numpy as np

from hateb.local_planner.angle_utils import normalize_theta
from hateb.local_planner.plan_types import PlanRequest, PoseSE2, Twist, TrajectoryPoint

log = logging.getLogger(__name__)


class HumanTrack:
    """Sampled prediction of one human.

    Attributes
    - human_id: key in the human plan index
    - times: (M,) seconds from now, strictly increasing
    - xy: (M, 2) positions; vel: (M, 2) world-frame velocities; theta: (M,) headings
    - extrapolate: continue with the last velocity after the last sample
    """

    def __init__(self, human_id: int, times, xy, vel, theta, extrapolate: bool = False):
        self.human_id = human_id
        self.times = np.asarray(times, dtype=float)
        self.xy = np.asarray(xy, dtype=float).reshape(-1, 2)
        self.vel = np.asarray(vel, dtype=float).reshape(-1, 2)
        self.theta = np.unwrap(np.asarray(theta, dtype=float))
        self.extrapolate = extrapolate

    @classmethod
    def from_request(cls, human_id: int, request: PlanRequest, human_cfg) -> Optional["HumanTrack"]:
        poses = request.poses()
        if not poses:
            log.warning('[TEB] human %s has an empty plan; ignored', human_id)
            return None
        if not all(p.is_finite() for p in poses) or not request.start_vel.is_finite():
            log.warning('[TEB] human %s has non-finite values; ignored', human_id)
            return None

        first = poses[0]
        if len(poses) == 1:
            vel = _world_velocity(first, request.start_vel)
            return cls(human_id, [0.0], [first.position()], [vel], [first.theta], extrapolate=True)

        xy = np.array([p.position() for p in poses])
        theta = np.array([p.theta for p in poses])

        stamps = np.array([p.stamp for p in request.plan], dtype=float)
        if human_cfg.use_external_prediction and np.all(np.diff(stamps) > 0):
            times = stamps - stamps[0]
        else:
            speed = min(human_cfg.nominal_vel_x, human_cfg.max_vel_x)
            if speed <= 0:
                log.debug('[TEB] human %s predicted static (speed %.2f)', human_id, speed)
                return cls(human_id, [0.0], [xy[0]], [[0.0, 0.0]], [theta[0]], extrapolate=True)
            seg = np.hypot(*np.diff(xy, axis=0).T)
            keep = np.concatenate([[True], seg > 1e-9])
            xy, theta = xy[keep], theta[keep]
            if len(xy) == 1:
                return cls(human_id, [0.0], [xy[0]], [[0.0, 0.0]], [theta[0]], extrapolate=True)
            times = np.concatenate([[0.0], np.cumsum(seg[seg > 1e-9])]) / speed

        vel = np.zeros_like(xy)
        vel[:-1] = np.diff(xy, axis=0) / np.diff(times)[:, None]
        return cls(human_id, times, xy, vel, theta, extrapolate=False)

    @property
    def duration(self) -> float:
        return float(self.times[-1])

    def state_at(self, times) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Positions (K, 2), velocities (K, 2) and headings (K,) at ``times``."""
        t = np.atleast_1d(np.asarray(times, dtype=float))
        if len(self.times) == 1:
            xy = self.xy[0] + np.outer(t, self.vel[0]) if self.extrapolate else np.repeat(self.xy, len(t), 0)
            vel = np.repeat(self.vel if self.extrapolate else np.zeros((1, 2)), len(t), 0)
            return xy, vel, np.full(len(t), self.theta[0])

        xy = np.column_stack([np.interp(t, self.times, self.xy[:, k]) for k in range(2)])
        # piecewise-constant segment velocity
        idx = np.clip(np.searchsorted(self.times, t, side='right') - 1, 0, len(self.times) - 1)
        vel = self.vel[idx].copy()
        theta = np.interp(t, self.times, self.theta)
        beyond = t > self.times[-1]
        if np.any(beyond):
            if self.extrapolate:
                xy[beyond] = self.xy[-1] + np.outer(t[beyond] - self.times[-1], self.vel[-1])
            else:
                vel[beyond] = 0.0
        return xy, vel, theta

    def pose_at(self, t: float) -> PoseSE2:
        xy, _, theta = self.state_at([t])
        return PoseSE2(float(xy[0, 0]), float(xy[0, 1]), normalize_theta(float(theta[0])))

    def to_trajectory(self, times) -> List[TrajectoryPoint]:
        t = np.atleast_1d(np.asarray(times, dtype=float))
        xy, vel, theta = self.state_at(t)
        points = []
        for k in range(len(t)):
            c, s = math.cos(theta[k]), math.sin(theta[k])
            twist = Twist(c * vel[k, 0] + s * vel[k, 1], -s * vel[k, 0] + c * vel[k, 1], 0.0)
            pose = PoseSE2(float(xy[k, 0]), float(xy[k, 1]), normalize_theta(float(theta[k])))
            points.append(TrajectoryPoint(pose, twist, float(t[k])))
        return points


def _world_velocity(pose: PoseSE2, twist: Twist) -> np.ndarray:
    c, s = math.cos(pose.theta), math.sin(pose.theta)
    return np.array([c * twist.linear_x - s * twist.linear_y, s * twist.linear_x + c * twist.linear_y])


def predict_humans(human_plans, human_cfg, robot_pose: Optional[PoseSE2] = None) -> Dict[int, HumanTrack]:
    """Build tracks for every human in the index.

    Humans whose start lies behind ``robot_pose`` are dropped unless
    ``predict_human_behind_robot`` is set.
    """
    tracks = {}
    if not human_plans:
        return tracks
    for human_id, request in human_plans.items():
        track = HumanTrack.from_request(human_id, request, human_cfg)
        if track is None:
            continue
        if robot_pose is not None and not human_cfg.predict_human_behind_robot:
            rel = track.xy[0] - robot_pose.position()
            if float(np.dot(rel, robot_pose.orientation_unit_vec())) < 0.0:
                log.debug('[TEB] human %s is behind the robot; not predicted', human_id)
                continue
        tracks[human_id] = track
    return tracks
