"""
Single-trajectory timed-elastic-band planner.

One ``TebOptimalPlanner`` owns one band. Each planning call

1. snapshots the configuration,
2. prepares the reference path (look-ahead pruning, horizon reduction, goal
   orientation, via-points),
3. predicts the humans that matter,
4. warm-starts or re-initialises the band,
5. runs ``no_outer_iterations`` passes of autosize + ``scipy.optimize.least_squares``,
6. commits the band only if the solver succeeded.

Failures are reported through the return value; the stored trajectory is left
untouched so a host can keep following it or stop.
"""
import logging
import math
import time
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.optimize import least_squares

from hateb.local_planner.angle_utils import angle_diff, interpolate_angle
from hateb.local_planner.config import PlannerConfig, PlanningMode
from hateb.local_planner.cost_terms import CostEvaluator
from hateb.local_planner.horizon import HorizonReductionPolicy
from hateb.local_planner.human_prediction import predict_humans
from hateb.local_planner.obstacles import filter_behind_robot
from hateb.local_planner.plan_types import (
    PlanRequest,
    PoseSE2,
    PoseStamped,
    Twist,
    VelocityCommand,
    approach_pose,
)
from hateb.local_planner.planner_interface import PlannerInterface, PlannerState
from hateb.local_planner.timed_elastic_band import TimedElasticBand, extract_velocity

log = logging.getLogger(__name__)

# lower bound of every time difference during optimization (s)
DT_LOWER_BOUND = 1e-3
# no horizon reduction for trajectories shorter than this (m)
HORIZON_MIN_LENGTH = 2.0


def convert_trans_rot_vel_to_steering_angle(v: float, omega: float, wheelbase: float,
                                            min_turning_radius: float = 0.0) -> float:
    """Steering angle of a car-like robot driving ``v`` with yaw rate ``omega``."""
    if omega == 0.0 or v == 0.0:
        return 0.0
    radius = v / omega
    if abs(radius) < min_turning_radius:
        radius = math.copysign(min_turning_radius, radius)
    return math.atan(wheelbase / radius)


def _as_pose(p) -> PoseSE2:
    if isinstance(p, PoseStamped):
        return p.pose
    if isinstance(p, PoseSE2):
        return p
    return PoseSE2.from_array(p)


def plan_poses(initial_plan) -> List[PoseSE2]:
    if isinstance(initial_plan, PlanRequest):
        return list(initial_plan.poses())
    return [_as_pose(p) for p in initial_plan]


def valid_request(path, start_vel, tag: str = '[TEB]') -> bool:
    """At least 2 finite poses and, when given, a finite start velocity."""
    if len(path) < 2:
        log.warning('%s reference path needs at least 2 poses, got %d', tag, len(path))
        return False
    if not all(p.is_finite() for p in path):
        log.warning('%s reference path contains non-finite poses', tag)
        return False
    if start_vel is not None and not start_vel.is_finite():
        log.warning('%s start velocity is not finite', tag)
        return False
    return True


def prepare_reference(path: List[PoseSE2], cfg: PlannerConfig, horizon: HorizonReductionPolicy):
    """Prune, shorten and orient the reference path; extract via-points."""
    traj = cfg.trajectory
    full = path
    if traj.max_global_plan_lookahead_dist > 0:
        travelled = 0.0
        end = len(path) - 1
        for i in range(1, len(path)):
            travelled += path[i - 1].distance(path[i])
            if travelled > traj.max_global_plan_lookahead_dist:
                end = i
                break
        path = path[:end + 1]
    path = list(horizon.reduce(path, traj))

    if traj.global_plan_overwrite_orientation and len(path) < len(full):
        # face the remainder of the reference path
        nxt = full[len(path)]
        goal = path[-1]
        if nxt.distance(goal) > 1e-9:
            path[-1] = PoseSE2(goal.x, goal.y, math.atan2(nxt.y - goal.y, nxt.x - goal.x))

    extracted = []
    if traj.global_plan_viapoint_sep > 0:
        last = path[0]
        for pose in path[1:]:
            if last.distance(pose) < traj.global_plan_viapoint_sep:
                continue
            extracted.append((pose.x, pose.y))
            last = pose
    return path, extracted


class TebOptimalPlanner(PlannerInterface):
    """Optimizer-backed planner for one trajectory.

    Parameters
    - config: shared ``PlannerConfig``
    - obstacles: list of ``Obstacle``; replace with ``set_obstacles``
    - via_points: host-provided (x, y) points the trajectory should pass
    - visualization: ``PlannerVisualization`` sink used by ``visualize``
    - robot_radius: radius of the circular robot model used by the cost terms (m)
    - clock: time source of the horizon-reduction policy
    """

    def __init__(self, config: Optional[PlannerConfig] = None, obstacles=None, via_points=None,
                 visualization=None, robot_radius: float = 0.0, clock=time.monotonic):
        super().__init__(config)
        self.obstacles = list(obstacles or [])
        self.via_points = [tuple(vp) for vp in (via_points or [])]
        self.visualization = visualization
        self.robot_radius = float(robot_radius)
        self.horizon = HorizonReductionPolicy(clock)

        self._band = TimedElasticBand()
        self._humans = {}
        self._human_paths = {}
        self._reference = []
        self._active_obstacles = []
        self._active_via_points = []
        self._start_vel = Twist()
        self._goal_vel = Twist()
        self._free_goal_vel = False

    # ------------------------------------------------------------------ setup
    def set_obstacles(self, obstacles) -> None:
        self.obstacles = list(obstacles or [])

    def set_via_points(self, via_points) -> None:
        self.via_points = [tuple(vp) for vp in (via_points or [])]

    @property
    def timed_elastic_band(self) -> TimedElasticBand:
        return self._band.copy()

    # ------------------------------------------------------------------ planning
    def plan(self, initial_plan, start_vel=None, free_goal_vel: bool = False,
             human_plans=None, op_costs=None) -> bool:
        cfg = self.config.snapshot()
        if isinstance(initial_plan, PlanRequest) and start_vel is None:
            start_vel = initial_plan.start_vel
        try:
            path = plan_poses(initial_plan)
        except (TypeError, ValueError) as exc:
            log.warning('[TEB] malformed reference path: %s', exc)
            return self._fail(record=False)
        if not valid_request(path, start_vel):
            return self._fail(record=False)

        path, extracted = prepare_reference(path, cfg, self.horizon)
        return self.plan_path(path, start_vel, free_goal_vel, human_plans, cfg=cfg,
                              op_costs=op_costs, extra_via_points=extracted)

    def plan_pose_pair(self, start, goal, start_vel=None, free_goal_vel: bool = False) -> bool:
        try:
            start_pose, goal_pose = PoseSE2.from_array(start), PoseSE2.from_array(goal)
        except (TypeError, ValueError) as exc:
            log.warning('[TEB] malformed start/goal pose: %s', exc)
            return self._fail(record=False)
        return self.plan_se2(start_pose, goal_pose, start_vel, free_goal_vel)

    def plan_se2(self, start, goal, start_vel=None, free_goal_vel: bool = False,
                 pre_plan_time: float = 0.0) -> bool:
        if not valid_request([start, goal], start_vel):
            return self._fail(record=False)
        if pre_plan_time > 0.0 and start_vel is not None:
            # compensate the latency already spent before this call
            start = start.propagated(start_vel, pre_plan_time)
        return self.plan_path([start, goal], start_vel, free_goal_vel)

    def plan_path(self, path: Sequence[PoseSE2], start_vel=None, free_goal_vel: bool = False,
                  human_plans=None, cfg: Optional[PlannerConfig] = None, op_costs=None,
                  extra_via_points=()) -> bool:
        """Optimize along an already prepared reference path."""
        cfg = cfg if cfg is not None else self.config.snapshot()
        start_vel = start_vel if start_vel is not None else Twist()
        path = list(path)
        start = path[0]

        humans = {}
        human_paths = {}
        if cfg.mode != PlanningMode.ROBOT_ONLY and human_plans:
            human_plans = dict(human_plans)
            if cfg.mode == PlanningMode.APPROACH and cfg.approach.approach_id in human_plans:
                target = human_plans.pop(cfg.approach.approach_id)
                if len(target) and target.plan[0].pose.is_finite():
                    path[-1] = approach_pose(target.plan[0].pose, cfg.approach)
                    log.debug('[TEB] approaching human %d', cfg.approach.approach_id)
            humans = predict_humans(human_plans, cfg.human, start)
            human_paths = {hid: human_plans[hid].poses() for hid in humans}

        obstacles = self.obstacles
        if not cfg.obstacles.include_costmap_obstacles:
            obstacles = [o for o in obstacles if o.source != 'costmap']
        obstacles = filter_behind_robot(obstacles, start, cfg.obstacles.costmap_obstacles_behind_robot_dist)
        via_points = list(self.via_points) + [tuple(v) for v in extra_via_points]

        band = self._init_band(path, cfg)
        evaluator = CostEvaluator(cfg, obstacles, via_points, humans, start_vel, Twist(),
                                  free_goal_vel, self.robot_radius)
        try:
            ok = self.optimize_band(band, evaluator, cfg)
        except ValueError as exc:
            log.warning('[TEB] optimizer rejected the problem: %s', exc)
            ok = False
        if not ok:
            return self._fail()

        self._band = band
        self._humans = humans
        self._human_paths = human_paths
        self._reference = path
        self._active_obstacles = obstacles
        self._active_via_points = via_points
        self._start_vel = start_vel
        self._goal_vel = Twist()
        self._free_goal_vel = free_goal_vel
        self._state = PlannerState.FEASIBLE

        if cfg.trajectory.shrink_horizon_backup and self.is_horizon_reduction_appropriate(path):
            self.horizon.record_infeasible()
        else:
            self.horizon.record_success()
        if op_costs is not None:
            op_costs.clear()
            op_costs.update(self.compute_cost_terms(cfg=cfg))
        return True

    def _fail(self, record: bool = True) -> bool:
        if self._band.is_init:
            self._state = PlannerState.INFEASIBLE
        if record:
            self.horizon.record_infeasible()
        return False

    def _init_band(self, path: List[PoseSE2], cfg: PlannerConfig) -> TimedElasticBand:
        traj, robot = cfg.trajectory, cfg.robot
        min_samples = max(traj.min_samples, 3)
        start, goal = path[0], path[-1]
        band = self._band.copy()
        warm = (band.is_init and not cfg.optim.disable_warm_start
                and band.goal.distance(goal) < traj.force_reinit_new_goal_dist
                and abs(angle_diff(band.goal.theta, goal.theta)) < math.pi / 2)
        if warm:
            band.update_and_prune(start, goal, min_samples)
        else:
            band.init_from_path(path, robot.max_vel_x, robot.max_vel_theta,
                                traj.global_plan_overwrite_orientation, min_samples,
                                traj.teb_init_skip_dist)
        return band

    def optimize_band(self, band: TimedElasticBand, evaluator: CostEvaluator, cfg: PlannerConfig) -> bool:
        """Run the outer resize/solve loop in place. Returns False on solver failure."""
        optim, traj = cfg.optim, cfg.trajectory
        if not optim.optimization_activate:
            return True
        min_samples = max(traj.min_samples, 3)
        for outer in range(optim.no_outer_iterations):
            if traj.teb_autosize:
                band.auto_resize(traj.dt_ref, traj.dt_hysteresis, min_samples, traj.max_samples)
            evaluator.prepare(band)

            x0 = band.free_vector()
            n_pose_vars = 3 * (len(band) - 2)
            lower = np.full(len(x0), -np.inf)
            lower[n_pose_vars:] = DT_LOWER_BOUND
            x0[n_pose_vars:] = np.maximum(x0[n_pose_vars:], 2.0 * DT_LOWER_BOUND)

            result = least_squares(evaluator.residuals, x0, args=(band,), bounds=(lower, np.inf),
                                   method='trf', max_nfev=max(optim.no_inner_iterations, 1),
                                   verbose=2 if optim.optimization_verbose else 0)
            if result.status == -1 or not np.all(np.isfinite(result.x)):
                log.warning('[TEB] optimization failed in outer iteration %d: %s', outer, result.message)
                return False
            band.set_free_vector(result.x)
            log.debug('[TEB] outer iteration %d: cost %.4f, %d poses', outer, result.cost, len(band))
        return True

    # ------------------------------------------------------------------ outputs
    def get_velocity_command(self) -> Optional[VelocityCommand]:
        if self._state != PlannerState.FEASIBLE or len(self._band) < 2:
            return None
        dt = float(self._band.time_diffs[0])
        if dt <= 0.0:
            log.warning('[TEB] first time difference is not positive (%.4f)', dt)
            return None
        v, omega = extract_velocity(self._band.poses[0], self._band.poses[1], dt)
        with self.config.config_mutex():
            robot = self.config.robot
            if robot.cmd_angle_instead_rotvel:
                omega = convert_trans_rot_vel_to_steering_angle(v, omega, robot.wheelbase,
                                                                robot.min_turning_radius)
        return VelocityCommand(v, omega)

    def clear_planner(self) -> None:
        self._band.clear()
        self._humans = {}
        self._human_paths = {}
        self._reference = []
        self._active_obstacles = []
        self._active_via_points = []
        self._state = PlannerState.UNINITIALIZED

    def get_full_trajectory(self) -> List:
        return self._band.to_trajectory(self._start_vel, self._goal_vel, self._free_goal_vel)

    def get_full_human_trajectory(self, human_id: int) -> List:
        track = self._humans.get(human_id)
        if track is None or not self._band.is_init:
            return []
        times = self._band.time_stamps()
        n_min = self.config.trajectory.human_min_samples
        if len(times) < n_min:
            times = np.linspace(0.0, times[-1], n_min)
        return track.to_trajectory(times)

    def is_trajectory_feasible(self, footprint_model, footprint_spec, inscribed_radius: float = 0.0,
                               circumscribed_radius: float = 0.0,
                               look_ahead_idx: Optional[int] = None) -> bool:
        if look_ahead_idx is None:
            look_ahead_idx = self.config.snapshot().trajectory.feasibility_check_no_poses
        n = len(self._band)
        count = n if look_ahead_idx < 0 or look_ahead_idx >= n else look_ahead_idx
        for i in range(count):
            pose = self._band.pose(i)
            if footprint_model.footprint_cost(pose, footprint_spec, inscribed_radius, circumscribed_radius) < 0:
                return self._infeasible_at(i)
            if inscribed_radius > 0 and i < count - 1:
                nxt = self._band.pose(i + 1)
                gap = pose.distance(nxt)
                if gap > inscribed_radius:
                    n_extra = int(gap / inscribed_radius)
                    for k in range(1, n_extra + 1):
                        r = k / (n_extra + 1)
                        mid = PoseSE2(pose.x + r * (nxt.x - pose.x), pose.y + r * (nxt.y - pose.y),
                                      interpolate_angle(pose.theta, nxt.theta, r))
                        if footprint_model.footprint_cost(mid, footprint_spec, inscribed_radius,
                                                          circumscribed_radius) < 0:
                            return self._infeasible_at(i)
        return True

    def _infeasible_at(self, idx: int) -> bool:
        log.debug('[TEB] trajectory collides near pose %d', idx)
        self._state = PlannerState.INFEASIBLE
        self.horizon.record_infeasible()
        return False

    def is_horizon_reduction_appropriate(self, initial_plan) -> bool:
        band = self._band
        cfg = self.config.snapshot()
        if not band.is_init or len(band) < int(1.5 * cfg.trajectory.min_samples):
            return False
        steps = np.hypot(*np.diff(band.poses[:, :2], axis=0).T)
        if np.sum(steps) <= HORIZON_MIN_LENGTH:
            return False

        start, goal = band.start, band.goal
        if abs(angle_diff(start.theta, goal.theta)) > math.pi / 2:
            log.debug('[TEB] goal orientation differs by more than 90 deg')
            return True
        if float(np.dot(start.orientation_unit_vec(), goal.position() - start.position())) < 0:
            log.debug('[TEB] goal lies behind the start heading')
            return True
        if np.any(steps > 0.95 * cfg.obstacles.min_obstacle_dist):
            log.debug('[TEB] consecutive poses are too far apart')
            return True

        try:
            ref = plan_poses(initial_plan)
        except (TypeError, ValueError):
            return False
        if len(ref) < 2:
            return False
        xy = np.array([p.position() for p in ref])
        first = int(np.argmin(np.hypot(*(xy - start.position()).T)))
        ref_length = float(np.sum(np.hypot(*np.diff(xy[first:], axis=0).T)))
        if ref_length > 0 and float(np.sum(steps)) / ref_length < 0.7:
            log.debug('[TEB] trajectory is much shorter than the reference path')
            return True
        return False

    def compute_cost_terms(self, obst_cost_scale: float = 1.0, viapoint_cost_scale: float = 1.0,
                           alternative_time_cost: bool = False,
                           cfg: Optional[PlannerConfig] = None) -> Dict[str, float]:
        """Per-term breakdown of the stored trajectory.

        Weights come from ``cfg`` when given, else from a fresh snapshot of the live configuration.
        """
        if not self._band.is_init:
            return {}
        cfg = cfg if cfg is not None else self.config.snapshot()
        evaluator = CostEvaluator(cfg, self._active_obstacles, self._active_via_points, self._humans,
                                  self._start_vel, Twist(), self._free_goal_vel, self.robot_radius)
        evaluator.prepare(self._band)
        return evaluator.cost_breakdown(self._band.poses, self._band.time_diffs, obst_cost_scale,
                                        viapoint_cost_scale, alternative_time_cost)

    def compute_current_cost(self, costs: List[float], obst_cost_scale: float = 1.0,
                             alternative_time_cost: bool = False,
                             viapoint_cost_scale: float = 1.0) -> None:
        if not self._band.is_init:
            return
        total = sum(self.compute_cost_terms(obst_cost_scale, viapoint_cost_scale,
                                            alternative_time_cost).values())
        if costs:
            costs[0] = total
        else:
            costs.append(total)

    def visualize(self) -> None:
        if self.visualization is None or not self._band.is_init:
            return
        vis_cfg = self.config.snapshot().visualization
        sink = self.visualization
        if vis_cfg.publish_robot_global_plan:
            sink.publish_robot_global_plan(list(self._reference))
        if vis_cfg.publish_robot_local_plan:
            sink.publish_robot_local_plan(self.get_full_trajectory())
        if vis_cfg.publish_robot_local_plan_poses:
            sink.publish_robot_local_plan_poses([self._band.pose(i) for i in range(len(self._band))],
                                                vis_cfg.pose_array_z_scale)
        if vis_cfg.publish_human_global_plans:
            sink.publish_human_global_plans(dict(self._human_paths))
        if vis_cfg.publish_human_local_plans or vis_cfg.publish_human_local_plan_poses:
            local = {hid: self.get_full_human_trajectory(hid) for hid in self._humans}
            if vis_cfg.publish_human_local_plans:
                sink.publish_human_local_plans(local)
            if vis_cfg.publish_human_local_plan_poses:
                sink.publish_human_local_plan_poses(local, vis_cfg.pose_array_z_scale)
