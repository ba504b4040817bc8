"""
Timed elastic band: the robot trajectory as a sequence of planar poses with
time differences between consecutive poses.

The band is the optimizer's state. Start and goal poses are fixed during an
optimization; the interior poses and every time difference are free. Storage
is two numpy arrays, ``poses`` (N, 3) and ``time_diffs`` (N-1,).
"""
import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from hateb.local_planner.angle_utils import average_angle, normalize_theta
from hateb.local_planner.plan_types import PoseSE2, Twist, TrajectoryPoint

log = logging.getLogger(__name__)

# fallback time step for consecutive identical poses (s)
DT_FALLBACK = 0.1
# autosize repetitions before giving up on a stable resolution
MAX_RESIZE_ITERATIONS = 100


def estimate_delta_t(a: np.ndarray, b: np.ndarray, max_vel_x: float, max_vel_theta: float) -> float:
    """Time needed to move from pose ``a`` to ``b`` at the velocity limits."""
    dt = 0.0
    if max_vel_x > 0:
        dt = math.hypot(b[0] - a[0], b[1] - a[1]) / max_vel_x
    if max_vel_theta > 0:
        dt = max(dt, abs(normalize_theta(b[2] - a[2])) / max_vel_theta)
    return dt if dt > 0 else DT_FALLBACK


def extract_velocity(a: np.ndarray, b: np.ndarray, dt: float) -> Tuple[float, float]:
    """Translational and rotational velocity of a differential-drive robot moving a->b."""
    if dt <= 0:
        return 0.0, 0.0
    dx, dy = b[0] - a[0], b[1] - a[1]
    direction = dx * math.cos(a[2]) + dy * math.sin(a[2])
    v = float(np.sign(direction)) * math.hypot(dx, dy) / dt
    omega = normalize_theta(b[2] - a[2]) / dt
    return v, omega


def _midpoint(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.array([0.5 * (a[0] + b[0]), 0.5 * (a[1] + b[1]), average_angle(a[2], b[2])])


class TimedElasticBand:
    def __init__(self, poses=None, time_diffs=None):
        if poses is None:
            self.poses = np.zeros((0, 3))
            self.time_diffs = np.zeros(0)
        else:
            self.poses = np.asarray(poses, dtype=float).reshape(-1, 3).copy()
            self.time_diffs = np.asarray(time_diffs, dtype=float).reshape(-1).copy()
            if len(self.time_diffs) != max(len(self.poses) - 1, 0):
                raise ValueError("a band with N poses needs N-1 time differences")

    # ----------------------------------------------------------------- basics
    def __len__(self) -> int:
        return len(self.poses)

    @property
    def is_init(self) -> bool:
        return len(self.poses) >= 2

    def clear(self) -> None:
        self.poses = np.zeros((0, 3))
        self.time_diffs = np.zeros(0)

    def copy(self) -> "TimedElasticBand":
        return TimedElasticBand(self.poses, self.time_diffs)

    def pose(self, i: int) -> PoseSE2:
        x, y, th = self.poses[i]
        return PoseSE2(float(x), float(y), normalize_theta(float(th)))

    @property
    def start(self) -> PoseSE2:
        return self.pose(0)

    @property
    def goal(self) -> PoseSE2:
        return self.pose(-1)

    def total_time(self) -> float:
        return float(np.sum(self.time_diffs))

    def time_stamps(self) -> np.ndarray:
        return np.concatenate([[0.0], np.cumsum(self.time_diffs)])

    def path_length(self) -> float:
        return float(np.sum(np.hypot(*np.diff(self.poses[:, :2], axis=0).T)))

    def closest_pose_index(self, xy, begin: int = 0, end: Optional[int] = None) -> int:
        end = len(self.poses) if end is None else end
        d = np.hypot(*(self.poses[begin:end, :2] - np.asarray(xy, dtype=float)).T)
        return begin + int(np.argmin(d))

    # ----------------------------------------------------------- initialization
    def init_from_path(self, path: Sequence[PoseSE2], max_vel_x: float, max_vel_theta: float,
                       estimate_orient: bool = False, min_samples: int = 3,
                       skip_dist: float = 0.0) -> bool:
        """(Re)build the band from a reference path.

        Parameters
        - path: reference poses; the first and last become start and goal
        - estimate_orient: intermediate headings follow the path direction instead of the path's yaw
        - min_samples: the band is padded with intermediate poses up to this size
        - skip_dist: intermediate poses closer than this to the start are skipped
        """
        if len(path) < 2:
            log.warning('[TEB] cannot initialize a band from %d poses', len(path))
            return False
        pts = np.array([p.as_array() for p in path])
        start, goal = pts[0], pts[-1]

        poses = [start]
        dts = []
        for i in range(1, len(pts) - 1):
            if skip_dist > 0 and math.hypot(*(pts[i, :2] - start[:2])) < skip_dist:
                continue
            cand = pts[i].copy()
            if estimate_orient:
                dx, dy = pts[i + 1, :2] - pts[i, :2]
                if dx != 0.0 or dy != 0.0:
                    cand[2] = math.atan2(dy, dx)
            dts.append(estimate_delta_t(poses[-1], cand, max_vel_x, max_vel_theta))
            poses.append(cand)
        dts.append(estimate_delta_t(poses[-1], goal, max_vel_x, max_vel_theta))
        poses.append(goal)

        self.poses = np.array(poses)
        self.time_diffs = np.array(dts)
        self._pad_to(max(min_samples, 2))
        return True

    def _pad_to(self, min_samples: int) -> None:
        """Split the longest segment until the band holds ``min_samples`` poses."""
        while len(self.poses) < min_samples:
            i = int(np.argmax(np.hypot(*np.diff(self.poses[:, :2], axis=0).T) + self.time_diffs))
            self._insert_midpoint(i)

    def _insert_midpoint(self, i: int) -> None:
        mid = _midpoint(self.poses[i], self.poses[i + 1])
        half = 0.5 * self.time_diffs[i]
        self.poses = np.insert(self.poses, i + 1, mid, axis=0)
        self.time_diffs[i] = half
        self.time_diffs = np.insert(self.time_diffs, i + 1, half)

    def auto_resize(self, dt_ref: float, dt_hysteresis: float, min_samples: int = 3,
                    max_samples: int = 500) -> None:
        """Insert or merge poses so every time difference lies near ``dt_ref``."""
        modified = True
        for _ in range(MAX_RESIZE_ITERATIONS):
            if not modified:
                break
            modified = False
            i = 0
            while i < len(self.time_diffs):
                dt = self.time_diffs[i]
                if dt > dt_ref + dt_hysteresis and len(self.poses) < max_samples:
                    self._insert_midpoint(i)
                    modified = True
                elif dt < dt_ref - dt_hysteresis and len(self.poses) > min_samples:
                    if i < len(self.time_diffs) - 1:
                        self.time_diffs[i + 1] += dt
                        self.time_diffs = np.delete(self.time_diffs, i)
                        self.poses = np.delete(self.poses, i + 1, axis=0)
                    else:
                        # never drop the goal; merge into the previous interval
                        self.time_diffs[i - 1] += dt
                        self.time_diffs = np.delete(self.time_diffs, i)
                        self.poses = np.delete(self.poses, i, axis=0)
                    modified = True
                i += 1

    def update_and_prune(self, new_start: Optional[PoseSE2], new_goal: Optional[PoseSE2],
                         min_samples: int = 3) -> None:
        """Warm start: drop poses the robot already passed and move the end points."""
        if new_start is not None and len(self.poses) > 0:
            look = min(len(self.poses) - min_samples, 10)
            xy = new_start.position()
            nearest = 0
            best = math.hypot(*(self.poses[0, :2] - xy))
            for i in range(1, look + 1):
                d = math.hypot(*(self.poses[i, :2] - xy))
                if d >= best:
                    break
                best, nearest = d, i
            if nearest > 0:
                self.poses = np.delete(self.poses, np.s_[0:nearest], axis=0)
                self.time_diffs = np.delete(self.time_diffs, np.s_[0:nearest])
            self.poses[0] = new_start.as_array()
        if new_goal is not None and len(self.poses) > 0:
            self.poses[-1] = new_goal.as_array()

    # ----------------------------------------------------------- optimizer view
    def free_vector(self) -> np.ndarray:
        """Interior poses followed by all time differences."""
        return np.concatenate([self.poses[1:-1].ravel(), self.time_diffs])

    def unpack(self, x) -> Tuple[np.ndarray, np.ndarray]:
        """Full (poses, time_diffs) for a free vector; start and goal stay fixed."""
        n_inner = len(self.poses) - 2
        poses = self.poses.copy()
        poses[1:-1] = np.asarray(x[:3 * n_inner]).reshape(n_inner, 3)
        return poses, np.asarray(x[3 * n_inner:], dtype=float).copy()

    def set_free_vector(self, x) -> None:
        poses, dts = self.unpack(x)
        poses[:, 2] = normalize_theta(poses[:, 2])
        self.poses, self.time_diffs = poses, dts

    # ----------------------------------------------------------- export
    def segment_velocities(self) -> List[Tuple[float, float]]:
        return [extract_velocity(self.poses[i], self.poses[i + 1], self.time_diffs[i])
                for i in range(len(self.time_diffs))]

    def to_trajectory(self, start_vel: Twist, goal_vel: Twist,
                      free_goal_vel: bool = False) -> List[TrajectoryPoint]:
        """Time-stamped points; velocities are central differences between the ends."""
        if not self.is_init:
            return []
        seg = self.segment_velocities()
        stamps = self.time_stamps()
        points = [TrajectoryPoint(self.pose(0), start_vel, 0.0)]
        for i in range(1, len(self.poses) - 1):
            v = 0.5 * (seg[i - 1][0] + seg[i][0])
            w = 0.5 * (seg[i - 1][1] + seg[i][1])
            points.append(TrajectoryPoint(self.pose(i), Twist(v, 0.0, w), float(stamps[i])))
        if free_goal_vel:
            end_vel = Twist(seg[-1][0], 0.0, seg[-1][1])
        else:
            end_vel = goal_vel
        points.append(TrajectoryPoint(self.pose(-1), end_vel, float(stamps[-1])))
        return points
