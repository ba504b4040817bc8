"""
Cost terms of the timed-elastic-band optimization.

Every term maps the band (poses and time differences) to an error vector e.
Its contribution to the objective is ``weight * sum(e**2)``; the solver sees
the residual ``sqrt(weight) * e``. Penalty helpers approximate hard limits with
a margin ``epsilon`` inside the admissible interval.

Human-aware terms compare the robot band with the predicted human tracks at
the band's time stamps. The human-only terms (human velocity/acceleration and
human-human separation) are constant w.r.t. the robot variables and are only
reported in cost breakdowns.
"""
import logging
import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from hateb.local_planner.angle_utils import angle_diff, normalize_theta
from hateb.local_planner.plan_types import Twist

log = logging.getLogger(__name__)

TERM_NAMES = (
    'time_optimal',
    'velocity_x',
    'velocity_theta',
    'acceleration_x',
    'acceleration_theta',
    'kinematics_nh',
    'kinematics_forward_drive',
    'kinematics_turning_radius',
    'obstacle',
    'dynamic_obstacle',
    'viapoint',
    'omega_change',
    'human_robot_safety',
    'human_human_safety',
    'human_robot_ttc',
    'human_robot_ttcplus',
    'human_robot_ttclosest',
    'human_robot_dir',
    'human_robot_visibility',
    'human_velocity_x',
    'human_velocity_theta',
    'human_nominal_velocity_x',
    'human_acceleration_x',
    'human_acceleration_theta',
)

# terms that do not depend on the robot band
CONSTANT_TERMS = frozenset({
    'human_human_safety',
    'human_velocity_x',
    'human_velocity_theta',
    'human_nominal_velocity_x',
    'human_acceleration_x',
    'human_acceleration_theta',
})

_DT_MIN = 1e-6
_DIST_MIN = 1e-3


# ───────────────────────────────────────────────────────────────────────────────
# Penalty helpers (scalar or array)
# ───────────────────────────────────────────────────────────────────────────────
def penalty_bound_to_interval(var, a, b=None, epsilon=0.0):
    """Zero inside [a + eps, b - eps], linear outside.

    With ``b`` omitted the interval is symmetric, [-a + eps, a - eps].
    """
    if b is None:
        a, b = -a, a
    var = np.asarray(var, dtype=float)
    lo, hi = a + epsilon, b - epsilon
    return np.where(var < lo, lo - var, np.where(var > hi, var - hi, 0.0))


def penalty_bound_from_below(var, a, epsilon=0.0):
    var = np.asarray(var, dtype=float)
    return np.maximum(a + epsilon - var, 0.0)


def penalty_bound_from_above(var, a, epsilon=0.0):
    var = np.asarray(var, dtype=float)
    return np.maximum(var - (a - epsilon), 0.0)


def fast_sigmoid(x):
    x = np.asarray(x, dtype=float)
    return x / (1.0 + np.abs(x))


def time_to_collision(p: np.ndarray, vrel: np.ndarray, radius: float) -> np.ndarray:
    """Time until two discs touch.

    ``p`` is the other body's position relative to the robot (K, 2), ``vrel``
    its relative velocity. Overlapping discs give 0, diverging ones inf.
    """
    a = np.sum(vrel * vrel, axis=1)
    b = np.sum(p * vrel, axis=1)
    c = np.sum(p * p, axis=1) - radius * radius
    disc = b * b - a * c
    ttc = np.full(len(p), np.inf)
    colliding = c <= 0.0
    approaching = ~colliding & (b < 0.0) & (disc > 0.0) & (a > 1e-12)
    safe_a = np.where(approaching, a, 1.0)
    root = np.sqrt(np.where(approaching, disc, 0.0))
    ttc = np.where(approaching, (-b - root) / safe_a, ttc)
    return np.where(colliding, 0.0, ttc)


class CostEvaluator:
    """Builds every cost term for one band layout.

    ``prepare`` binds obstacles and via-points to pose indices for the current
    band size; the bindings stay fixed while the solver moves the poses so the
    residual vector keeps its length.
    """

    def __init__(self, cfg, obstacles: Iterable = (), via_points: Sequence = (),
                 humans: Optional[Dict] = None, start_vel: Optional[Twist] = None,
                 goal_vel: Optional[Twist] = None, free_goal_vel: bool = False,
                 robot_radius: float = 0.0):
        self.cfg = cfg
        self.obstacles = list(obstacles)
        self.via_points = [np.asarray(vp, dtype=float).reshape(-1)[:2] for vp in via_points]
        self.humans = dict(humans or {})
        self.start_vel = start_vel or Twist()
        self.goal_vel = goal_vel or Twist()
        self.free_goal_vel = free_goal_vel
        self.robot_radius = float(robot_radius)

        self._static_links = []
        self._dynamic_links = []
        self._via_links = []
        self._omega_pairs = (np.zeros(0, dtype=int), np.zeros(0, dtype=int))
        self._size = 0

    @property
    def human_aware(self) -> bool:
        return bool(self.humans) and self.cfg.planning_mode != 0

    # ------------------------------------------------------------------ binding
    def prepare(self, band) -> None:
        n = len(band)
        self._size = n
        self._static_links, self._dynamic_links, self._via_links = [], [], []
        if n < 3:
            self._omega_pairs = (np.zeros(0, dtype=int), np.zeros(0, dtype=int))
            return
        inner = np.arange(1, n - 1)
        half = max(self.cfg.obstacles.obstacle_poses_affected // 2, 0)
        for obst in self.obstacles:
            if obst.is_dynamic:
                self._dynamic_links.append((obst, inner))
                continue
            closest = int(np.argmin(obst.distances(band.poses[:, :2])))
            lo, hi = max(1, closest - half), min(n - 2, closest + half)
            self._static_links.append((obst, np.arange(lo, hi + 1)))

        start = 1
        for vp in self.via_points:
            if self.cfg.trajectory.via_points_ordered:
                idx = band.closest_pose_index(vp, begin=start, end=n - 1)
                start = min(idx + 1, n - 2)
            else:
                idx = band.closest_pose_index(vp, begin=1, end=n - 1)
            self._via_links.append((vp, idx))

        stamps = band.time_stamps()[:-1]
        i, j = np.triu_indices(len(stamps), 1)
        close = (stamps[j] - stamps[i]) < self.cfg.optim.omega_chage_time_seperation
        self._omega_pairs = (i[close], j[close])

    # ------------------------------------------------------------------ terms
    def _obstacle_error(self, clearance: np.ndarray) -> np.ndarray:
        obst_cfg = self.cfg.obstacles
        err = penalty_bound_from_below(clearance, obst_cfg.min_obstacle_dist, self.cfg.optim.penalty_epsilon)
        if obst_cfg.use_nonlinear_obstacle_penalty and obst_cfg.min_obstacle_dist > 0:
            err = np.expm1(err / obst_cfg.min_obstacle_dist)
        return err

    def terms(self, poses: np.ndarray, dts: np.ndarray, obst_cost_scale: float = 1.0,
              viapoint_cost_scale: float = 1.0) -> Dict[str, Tuple[float, np.ndarray]]:
        """All active terms as ``name -> (weight, error vector)``."""
        cfg = self.cfg
        optim, robot = cfg.optim, cfg.robot
        eps = optim.penalty_epsilon
        out = {}

        xy, th = poses[:, :2], poses[:, 2]
        dts_safe = np.maximum(dts, _DT_MIN)
        d = np.diff(xy, axis=0)
        dist = np.hypot(d[:, 0], d[:, 1])
        c1, s1 = np.cos(th[:-1]), np.sin(th[:-1])
        heading_proj = d[:, 0] * c1 + d[:, 1] * s1
        v = fast_sigmoid(100.0 * heading_proj) * dist / dts_safe
        dth = normalize_theta(np.diff(th))
        omega = dth / dts_safe

        out['time_optimal'] = (optim.weight_optimaltime, np.asarray(dts, dtype=float))
        out['velocity_x'] = (optim.weight_max_vel_x,
                             penalty_bound_to_interval(v, -robot.max_vel_x_backwards, robot.max_vel_x, eps))
        out['velocity_theta'] = (optim.weight_max_vel_theta,
                                 penalty_bound_to_interval(omega, robot.max_vel_theta, epsilon=eps))

        out['acceleration_x'] = (optim.weight_acc_lim_x, penalty_bound_to_interval(
            self._accelerations(v, dts_safe, self.start_vel.linear_x, self.goal_vel.linear_x,
                               self.free_goal_vel),
            robot.acc_lim_x, epsilon=eps))
        out['acceleration_theta'] = (optim.weight_acc_lim_theta, penalty_bound_to_interval(
            self._accelerations(omega, dts_safe, self.start_vel.angular_z, self.goal_vel.angular_z,
                               self.free_goal_vel),
            robot.acc_lim_theta, epsilon=eps))

        c2, s2 = np.cos(th[1:]), np.sin(th[1:])
        out['kinematics_nh'] = (optim.weight_kinematics_nh,
                                np.abs((c1 + c2) * d[:, 1] - (s1 + s2) * d[:, 0]))
        if robot.min_turning_radius > 0:
            turning = np.abs(dth) > 1e-9
            radius = dist / np.where(turning, np.abs(dth), 1.0)
            err = np.where(turning, penalty_bound_from_below(radius, robot.min_turning_radius), 0.0)
            out['kinematics_turning_radius'] = (optim.weight_kinematics_turning_radius, err)
        else:
            out['kinematics_forward_drive'] = (optim.weight_kinematics_forward_drive,
                                               penalty_bound_from_below(heading_proj, 0.0))

        obst_mult = cfg.obstacles.obstacle_cost_mult * obst_cost_scale
        if self._static_links:
            err = np.concatenate([self._obstacle_error(obst.distances(xy[idx]) - self.robot_radius)
                                  for obst, idx in self._static_links])
            out['obstacle'] = (optim.weight_obstacle * obst_mult, err)
        stamps = np.concatenate([[0.0], np.cumsum(dts_safe)])
        if self._dynamic_links:
            err = np.concatenate([
                self._obstacle_error(obst.distances(xy[idx], stamps[idx]) - self.robot_radius)
                for obst, idx in self._dynamic_links])
            out['dynamic_obstacle'] = (optim.weight_dynamic_obstacle * obst_mult, err)

        if self._via_links:
            err = np.array([math.hypot(*(xy[idx] - vp)) for vp, idx in self._via_links])
            out['viapoint'] = (optim.weight_viapoint * viapoint_cost_scale, err)

        if optim.disable_rapid_omega_chage and len(self._omega_pairs[0]):
            i, j = self._omega_pairs
            flip = omega[i] * omega[j] < 0.0
            err = np.where(flip, np.minimum(np.abs(omega[i]), np.abs(omega[j])), 0.0)
            out['omega_change'] = (optim.weight_max_vel_theta, err)

        if self.human_aware:
            self._human_terms(out, xy, d, dts_safe, stamps)
        return out

    @staticmethod
    def _accelerations(vel, dts, start, goal, free_goal):
        parts = [[(vel[0] - start) / dts[0]]]
        if len(vel) > 1:
            parts.append((vel[1:] - vel[:-1]) * 2.0 / (dts[1:] + dts[:-1]))
        return np.concatenate(parts + ([] if free_goal else [[(goal - vel[-1]) / dts[-1]]]))

    def _human_terms(self, out, xy, d, dts_safe, stamps) -> None:
        cfg = self.cfg
        optim, hcfg = cfg.optim, cfg.human
        eps = optim.penalty_epsilon

        vr = d / dts_safe[:, None]
        last = vr[-1:] if self.free_goal_vel else np.zeros((1, 2))
        vr = np.vstack([vr, last])
        speed_r = np.hypot(vr[:, 0], vr[:, 1])
        contact = hcfg.radius + self.robot_radius
        half_fov = 0.5 * hcfg.fov

        collect = {name: [] for name in ('human_robot_safety', 'human_robot_ttc', 'human_robot_ttcplus',
                                         'human_robot_ttclosest', 'human_robot_dir',
                                         'human_robot_visibility', 'human_velocity_x',
                                         'human_velocity_theta', 'human_nominal_velocity_x',
                                         'human_acceleration_x', 'human_acceleration_theta')}
        sampled = []
        for track in self.humans.values():
            hxy, hvel, hth = track.state_at(stamps)
            sampled.append(hxy)
            p = hxy - xy
            dist = np.hypot(p[:, 0], p[:, 1])
            dist_safe = np.maximum(dist, _DIST_MIN)
            vrel = hvel - vr

            collect['human_robot_safety'].append(
                penalty_bound_from_below(dist - contact, hcfg.min_human_robot_dist, eps))

            ttc = time_to_collision(p, vrel, contact)
            err = np.where(np.isfinite(ttc), penalty_bound_from_below(np.where(np.isfinite(ttc), ttc, 0.0),
                                                                        hcfg.ttc_threshold, eps), 0.0)
            if optim.scale_human_robot_ttc_c:
                err = err / dist_safe ** optim.human_robot_ttc_scale_alpha
            collect['human_robot_ttc'].append(err)

            ttcp = time_to_collision(p, vrel, contact + hcfg.min_human_robot_dist)
            active = np.isfinite(ttcp) & (stamps <= hcfg.ttcplus_timer)
            err = np.where(active, penalty_bound_from_below(np.where(active, ttcp, 0.0),
                                                            hcfg.ttcplus_threshold, eps), 0.0)
            if optim.scale_human_robot_ttcplus_c:
                err = err / dist_safe ** optim.human_robot_ttcplus_scale_alpha
            collect['human_robot_ttcplus'].append(err)

            rel_sq = np.sum(vrel * vrel, axis=1)
            t_cpa = -np.sum(p * vrel, axis=1) / (rel_sq + 1e-9)
            closest = np.hypot(*(p + vrel * t_cpa[:, None]).T) - contact
            breach = (t_cpa > 0.0) & (closest < hcfg.min_human_robot_dist)
            collect['human_robot_ttclosest'].append(
                np.where(breach, penalty_bound_from_below(t_cpa, hcfg.ttclosest_threshold, eps), 0.0))

            cos_app = np.sum(vr * p, axis=1) / np.maximum(speed_r * dist, 1e-9)
            raw = np.maximum(cos_app, 0.0) * speed_r / dist_safe
            collect['human_robot_dir'].append(penalty_bound_from_above(raw, hcfg.dir_cost_threshold, eps))

            bearing = np.abs(angle_diff(np.arctan2(-p[:, 1], -p[:, 0]), hth))
            denom = math.pi - half_fov
            if denom > 0:
                raw = np.where(bearing > half_fov, (bearing - half_fov) / denom / dist_safe, 0.0)
            else:
                raw = np.zeros(len(p))
            collect['human_robot_visibility'].append(
                penalty_bound_from_above(raw, hcfg.visibility_cost_threshold, eps))

            hspeed = np.hypot(hvel[:, 0], hvel[:, 1])
            hdt = dts_safe
            homega = np.diff(hth) / hdt
            collect['human_velocity_x'].append(penalty_bound_from_above(hspeed, hcfg.max_vel_x, eps))
            collect['human_velocity_theta'].append(
                penalty_bound_to_interval(homega, hcfg.max_vel_theta, epsilon=eps))
            collect['human_nominal_velocity_x'].append(
                penalty_bound_from_above(hspeed, hcfg.nominal_vel_x, eps))
            collect['human_acceleration_x'].append(
                penalty_bound_to_interval(np.diff(hspeed) / hdt, hcfg.acc_lim_x, epsilon=eps))
            collect['human_acceleration_theta'].append(
                penalty_bound_to_interval(np.diff(homega) / hdt[1:], hcfg.acc_lim_theta, epsilon=eps)
                if len(homega) > 1 else np.zeros(0))

        weights = {
            'human_robot_safety': (optim.use_human_robot_safety_c, optim.weight_human_robot_safety),
            'human_robot_ttc': (optim.use_human_robot_ttc_c, optim.weight_human_robot_ttc),
            'human_robot_ttcplus': (optim.use_human_robot_ttcplus_c, optim.weight_human_robot_ttcplus),
            'human_robot_ttclosest': (optim.use_human_robot_ttclosest_c, optim.weight_human_robot_ttclosest),
            'human_robot_dir': (optim.use_human_robot_dir_c, optim.weight_human_robot_dir),
            'human_robot_visibility': (optim.use_human_robot_visi_c, optim.weight_human_robot_visibility),
            'human_velocity_x': (True, optim.weight_max_human_vel_x),
            'human_velocity_theta': (True, optim.weight_max_human_vel_theta),
            'human_nominal_velocity_x': (optim.use_human_elastic_vel, optim.weight_nominal_human_vel_x),
            'human_acceleration_x': (True, optim.weight_human_acc_lim_x),
            'human_acceleration_theta': (True, optim.weight_human_acc_lim_theta),
        }
        for name, (enabled, weight) in weights.items():
            if enabled:
                out[name] = (weight, np.concatenate(collect[name]))

        if optim.use_human_human_safety_c and len(sampled) > 1:
            errs = []
            for a in range(len(sampled)):
                for b in range(a + 1, len(sampled)):
                    gap = np.hypot(*(sampled[a] - sampled[b]).T) - 2.0 * hcfg.radius
                    errs.append(penalty_bound_from_below(gap, hcfg.min_human_human_dist, eps))
            out['human_human_safety'] = (optim.weight_human_human_safety, np.concatenate(errs))

    # ------------------------------------------------------------------ outputs
    def residuals(self, x, band) -> np.ndarray:
        poses, dts = band.unpack(x)
        parts = [math.sqrt(weight) * err
                 for name, (weight, err) in self.terms(poses, dts).items()
                 if name not in CONSTANT_TERMS and weight > 0 and len(err)]
        if not parts:
            return np.zeros(1)
        return np.concatenate(parts)

    def cost_breakdown(self, poses: np.ndarray, dts: np.ndarray, obst_cost_scale: float = 1.0,
                       viapoint_cost_scale: float = 1.0,
                       alternative_time_cost: bool = False) -> Dict[str, float]:
        """``weight * sum(e**2)`` per term; inactive terms report 0."""
        costs = dict.fromkeys(TERM_NAMES, 0.0)
        for name, (weight, err) in self.terms(poses, dts, obst_cost_scale, viapoint_cost_scale).items():
            costs[name] = float(weight * np.sum(np.square(err)))
        if alternative_time_cost:
            # independent of the number of samples
            costs['time_optimal'] = float(np.sum(dts))
        return costs

    def total_cost(self, poses: np.ndarray, dts: np.ndarray, obst_cost_scale: float = 1.0,
                   viapoint_cost_scale: float = 1.0, alternative_time_cost: bool = False) -> float:
        return sum(self.cost_breakdown(poses, dts, obst_cost_scale, viapoint_cost_scale,
                                       alternative_time_cost).values())
