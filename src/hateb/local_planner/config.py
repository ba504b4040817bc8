# -*- coding: utf-8 -*-

"""
local_planner/config.py

This module centralizes every parameter of the human-aware local planner. Trajectory
shaping, robot and human kinodynamics, safety cost weights and homotopy-class exploration
all read their values from a single ``PlannerConfig`` instance, so the optimizer, the
feasibility check and the candidate selection never disagree about a limit.

Contents:
---------
1. TRAJECTORY:
   - Temporal resolution of the band (``dt_ref``/``dt_hysteresis``) and sample counts.
   - Horizon handling: look-ahead along the reference path, re-initialisation distance,
     feasibility look-ahead and the shrink-horizon backup mode.

2. ROBOT:
   - Translational/rotational velocity and acceleration bounds.
   - Car-like parameters (``min_turning_radius``, ``wheelbase``,
     ``cmd_angle_instead_rotvel``).

3. HUMAN:
   - Body radius, separations and kinodynamic bounds used for predicted humans.
   - Thresholds for the time-to-collision, closest-approach, directional and
     visibility costs.

4. GOAL_TOLERANCE / OBSTACLES:
   - Goal acceptance radii and the obstacle clearance model.

5. OPTIMIZATION:
   - Solver iteration budget, penalty epsilon, one weight per cost term and the
     enable/scale toggles of the human-aware terms.

6. HOMOTOPY CLASSES:
   - Exploration strategy, candidate limit, selection hysteresis and the
     H-signature equality threshold.

7. VISUALIZATION / APPROACH:
   - Publish toggles for the visualization sink.
   - Target offset for the docking-style approach mode.

Usage:
------
    from hateb.local_planner.config import PlannerConfig

    cfg = PlannerConfig.from_mapping({"max_vel_x": 0.5, "human.radius": 0.3})
    with cfg.config_mutex():
        v_max = cfg.robot.max_vel_x
        a_max = cfg.robot.acc_lim_x

Bare keys resolve in the order trajectory, robot, goal_tolerance, obstacles, optim,
hcp, visualization, approach, human; so ``max_vel_x`` addresses the robot and
``human.max_vel_x`` the human group.

Planners never read the live object during an optimization. They take a
``snapshot()`` under the lock once per call, so a reconfiguration source cannot tear a
read across fields used together in one cost computation.
"""
import logging
import math
import threading
from dataclasses import dataclass, fields, replace
from enum import IntEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)


class PlanningMode(IntEnum):
    ROBOT_ONLY = 0
    HUMAN_AWARE = 1
    APPROACH = 2


# ───────────────────────────────────────────────────────────────────────────────
# 1) TRAJECTORY (seconds, meters)
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class TrajectoryConfig:
    # Resize the band w.r.t. the temporal resolution during optimization
    teb_autosize: bool = True
    # Desired temporal resolution (s); should match the control rate
    dt_ref: float = 0.3
    # Hysteresis for automatic resizing (s); usually ~10% of dt_ref
    dt_hysteresis: float = 0.1
    # Minimum number of robot poses (never below 3)
    min_samples: int = 3
    # Minimum number of samples on predicted human trajectories
    human_min_samples: int = 3
    # Upper bound on the band size while autosizing
    max_samples: int = 500
    # Overwrite the local goal orientation with the heading of the reference path
    global_plan_overwrite_orientation: bool = True
    # Min. separation of via-points extracted from the reference path (m); <=0 disables
    global_plan_viapoint_sep: float = -1.0
    # Attach via-points in storage order instead of to the closest pose
    via_points_ordered: bool = False
    # Max. cumulative length of the reference path taken into account (m); <=0 disables
    max_global_plan_lookahead_dist: float = 1.0
    # Re-initialise instead of warm-starting when the goal jumps farther than this (m)
    force_reinit_new_goal_dist: float = 1.0
    # Number of poses swept by the feasibility check
    feasibility_check_no_poses: int = 5
    # Publish full planner feedback (debugging only)
    publish_feedback: bool = False
    # Temporarily shrink the horizon when issues are detected
    shrink_horizon_backup: bool = True
    # Keep the reduced horizon at least this long after the last infeasible plan (s)
    shrink_horizon_min_duration: float = 10.0
    # Fraction of the reference path dropped while the horizon is reduced
    horizon_reduction_amount: float = 0.5
    # Skip reference poses closer than this to the start when initialising (m)
    teb_init_skip_dist: float = 0.4


# ───────────────────────────────────────────────────────────────────────────────
# 2) ROBOT KINODYNAMICS (m/s, rad/s, m/s², rad/s²)
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class RobotConfig:
    max_vel_x: float = 0.4
    min_vel_x: float = 0.0
    max_vel_x_backwards: float = 0.2
    min_vel_x_backwards: float = 0.0
    max_vel_theta: float = 0.3
    min_vel_theta: float = 0.0
    acc_lim_x: float = 0.5
    acc_lim_theta: float = 0.5
    # Minimum turning radius of a car-like robot (m); 0 for diff-drive
    min_turning_radius: float = 0.0
    # Distance between drive shaft and steering axle (m); negative for back-wheeled robots
    wheelbase: float = 1.0
    # Replace the rotational velocity of the command by the steering angle
    cmd_angle_instead_rotvel: bool = False


# ───────────────────────────────────────────────────────────────────────────────
# 3) HUMAN KINODYNAMICS / SAFETY
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class HumanConfig:
    radius: float = 0.2
    min_human_robot_dist: float = 0.6
    min_human_human_dist: float = 0.6
    max_vel_x: float = 1.1
    min_vel_x: float = 0.0
    # Walking speed assumed when predicting along a human's reference path (m/s)
    nominal_vel_x: float = 0.8
    max_vel_x_backwards: float = 0.0
    min_vel_x_backwards: float = 0.0
    max_vel_theta: float = 1.1
    min_vel_theta: float = 0.0
    acc_lim_x: float = 0.6
    acc_lim_theta: float = 0.8
    # Use the stamps of the supplied human path as the prediction timing
    use_external_prediction: bool = False
    # Keep humans standing behind the robot in the prediction
    predict_human_behind_robot: bool = False
    # Time-to-collision below this is penalized (s)
    ttc_threshold: float = 5.0
    ttcplus_threshold: float = 5.0
    # Time to the closest point of approach below this is penalized (s)
    ttclosest_threshold: float = 0.5
    # TTC+ only looks this far along the trajectory (s)
    ttcplus_timer: float = 5.0
    # Directional cost above this is penalized (1/s)
    dir_cost_threshold: float = 0.5
    # Visibility cost above this is penalized (1/m)
    visibility_cost_threshold: float = 0.5
    # Host-side reset time for stale human predictions (s)
    pose_prediction_reset_time: float = 2.0
    # Human field of view (rad)
    fov: float = 2.0


# ───────────────────────────────────────────────────────────────────────────────
# 4) GOAL TOLERANCE / OBSTACLES
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class GoalToleranceConfig:
    xy_goal_tolerance: float = 0.2
    yaw_goal_tolerance: float = 0.2
    # Allow a nonzero final velocity for planning purposes
    free_goal_vel: bool = False


@dataclass
class ObstacleConfig:
    # Minimum desired separation from obstacles (m)
    min_obstacle_dist: float = 0.5
    use_nonlinear_obstacle_penalty: bool = True
    # Multiplier applied to every obstacle cost term
    obstacle_cost_mult: float = 1.0
    # Take obstacles converted from the costmap into account
    include_costmap_obstacles: bool = True
    # Ignore costmap obstacles farther than this behind the robot (m)
    costmap_obstacles_behind_robot_dist: float = 0.5
    # Each obstacle is attached to its closest pose and this many neighbours
    obstacle_poses_affected: int = 25
    # External costmap-to-polygon conversion (carried, not executed here)
    costmap_converter_plugin: str = ""
    costmap_converter_spin_thread: bool = True
    costmap_converter_rate: int = 5


# ───────────────────────────────────────────────────────────────────────────────
# 5) OPTIMIZATION
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class OptimizationConfig:
    # Solver iterations per outer loop
    no_inner_iterations: int = 8
    # Outer loops; each resizes the band and restarts the solver
    no_outer_iterations: int = 4
    optimization_activate: bool = True
    optimization_verbose: bool = False
    # Safety margin added to penalty functions approximating hard constraints
    penalty_epsilon: float = 0.1
    time_penalty_epsilon: float = 0.1
    cap_optimaltime_penalty: bool = True

    weight_max_vel_x: float = 1.0
    weight_max_human_vel_x: float = 2.0
    weight_nominal_human_vel_x: float = 2.0
    weight_max_vel_theta: float = 1.0
    weight_max_human_vel_theta: float = 2.0
    weight_acc_lim_x: float = 1.0
    weight_human_acc_lim_x: float = 1.0
    weight_acc_lim_theta: float = 1.0
    weight_human_acc_lim_theta: float = 1.0
    weight_kinematics_nh: float = 1000.0
    weight_kinematics_forward_drive: float = 1.0
    weight_kinematics_turning_radius: float = 1.0
    weight_optimaltime: float = 1.0
    weight_human_optimaltime: float = 1.0
    weight_obstacle: float = 10.0
    weight_dynamic_obstacle: float = 10.0
    weight_viapoint: float = 1.0
    weight_human_viapoint: float = 1.0
    weight_human_robot_safety: float = 20.0
    weight_human_human_safety: float = 20.0
    weight_human_robot_ttc: float = 20.0
    weight_human_robot_ttcplus: float = 20.0
    weight_human_robot_ttclosest: float = 10.0
    weight_human_robot_dir: float = 20.0
    weight_human_robot_visibility: float = 20.0
    # Distance exponents of the scaled TTC terms
    human_robot_ttc_scale_alpha: float = 1.0
    human_robot_ttcplus_scale_alpha: float = 1.0

    use_human_robot_safety_c: bool = False
    use_human_human_safety_c: bool = True
    use_human_robot_ttc_c: bool = True
    use_human_robot_ttcplus_c: bool = False
    use_human_robot_ttclosest_c: bool = True
    scale_human_robot_ttc_c: bool = True
    scale_human_robot_ttcplus_c: bool = True
    use_human_robot_dir_c: bool = True
    use_human_robot_visi_c: bool = False
    use_human_elastic_vel: bool = True
    disable_warm_start: bool = False
    # Penalize angular velocity sign reversals closer than the separation below (s)
    disable_rapid_omega_chage: bool = True
    omega_chage_time_seperation: float = 1.0


# ───────────────────────────────────────────────────────────────────────────────
# 6) HOMOTOPY-CLASS EXPLORATION
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class HomotopyClassConfig:
    enable_homotopy_class_planning: bool = True
    enable_multithreading: bool = True
    # Left/right keypoints around obstacles instead of a sampled roadmap
    simple_exploration: bool = False
    max_number_classes: int = 5
    # A new candidate replaces the previous best only if new_cost < old_cost * factor
    selection_cost_hysteresis: float = 1.0
    selection_obst_cost_scale: float = 100.0
    selection_viapoint_cost_scale: float = 1.0
    # Replace the time cost by the total transition time when selecting
    selection_alternative_time_cost: bool = False
    roadmap_graph_no_samples: int = 15
    # Width of the sampling rectangle between start and goal (m)
    roadmap_graph_area_width: float = 6.0
    # Scales signature values (0.2 < prescaler <= 1)
    h_signature_prescaler: float = 1.0
    h_signature_threshold: float = 0.1
    # Extra lateral offset of simple-exploration keypoints (m)
    obstacle_keypoint_offset: float = 0.1
    # Normalized scalar product obstacle/goal direction required for exploration [0, 1]
    obstacle_heading_threshold: float = 0.45
    viapoints_all_candidates: bool = True
    visualize_hc_graph: bool = False


# ───────────────────────────────────────────────────────────────────────────────
# 7) VISUALIZATION / APPROACH
# ───────────────────────────────────────────────────────────────────────────────
@dataclass
class VisualizationConfig:
    publish_robot_global_plan: bool = True
    publish_robot_local_plan: bool = True
    publish_robot_local_plan_poses: bool = False
    publish_robot_local_plan_fp_poses: bool = False
    publish_human_global_plans: bool = False
    publish_human_local_plans: bool = True
    publish_human_local_plan_poses: bool = False
    publish_human_local_plan_fp_poses: bool = False
    pose_array_z_scale: float = 1.0


@dataclass
class ApproachConfig:
    # Identifier of the human to approach in APPROACH mode
    approach_id: int = 1
    approach_dist: float = 0.5
    # Bearing of the target around the human, relative to its heading (rad)
    approach_angle: float = 3.14
    approach_dist_tolerance: float = 0.2
    approach_angle_tolerance: float = 0.3


GROUP_TYPES = {
    'trajectory': TrajectoryConfig,
    'robot': RobotConfig,
    'goal_tolerance': GoalToleranceConfig,
    'obstacles': ObstacleConfig,
    'optim': OptimizationConfig,
    'hcp': HomotopyClassConfig,
    'visualization': VisualizationConfig,
    'approach': ApproachConfig,
    'human': HumanConfig,
}

# resolution order for bare keys; 'human' last so bare velocity keys address the robot
GROUP_ORDER = tuple(GROUP_TYPES)

TOP_LEVEL_KEYS = ('odom_topic', 'map_frame', 'planning_mode')

DEPRECATED_PARAMETERS = {
    'line_obstacle_poses_affected': 'obstacle_poses_affected',
    'polygon_obstacle_poses_affected': 'obstacle_poses_affected',
    'weight_point_obstacle': 'weight_obstacle',
    'weight_line_obstacle': 'weight_obstacle',
    'weight_poly_obstacle': 'weight_obstacle',
    'costmap_obstacles_front_only': 'costmap_obstacles_behind_robot_dist',
    'global_plan_via_point_sep': 'global_plan_viapoint_sep',
    'alternative_time_cost': 'selection_alternative_time_cost',
}

_TRUE_STRINGS = ('true', '1', 'yes', 'on')
_FALSE_STRINGS = ('false', '0', 'no', 'off')


def _coerce(value: Any, default: Any) -> Any:
    """Convert ``value`` to the type of ``default``.

    Raises ValueError when the value cannot represent the parameter type.
    """
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        elif isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        raise ValueError(f"cannot interpret {value!r} as bool")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        try:
            as_float = float(value)
        except TypeError as exc:
            raise ValueError(f"expected an integer, got {value!r}") from exc
        if not as_float.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(as_float)
    if isinstance(default, float):
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        try:
            return float(value)
        except TypeError as exc:
            raise ValueError(f"expected a number, got {value!r}") from exc
    return str(value)


class PlannerConfig:
    """Parameter aggregate shared between a planning thread and a reconfiguration source.

    Every write, and every read spanning several fields that must be consistent,
    holds ``config_mutex()``. The groups are plain dataclasses; reading a single
    field without the lock is fine.
    """

    def __init__(self):
        self.odom_topic = "odom"
        self.map_frame = "odom"
        self.planning_mode = int(PlanningMode.HUMAN_AWARE)

        self.trajectory = TrajectoryConfig()
        self.robot = RobotConfig()
        self.human = HumanConfig()
        self.goal_tolerance = GoalToleranceConfig()
        self.obstacles = ObstacleConfig()
        self.optim = OptimizationConfig()
        self.hcp = HomotopyClassConfig()
        self.visualization = VisualizationConfig()
        self.approach = ApproachConfig()

        self._mutex = threading.RLock()

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "PlannerConfig":
        cfg = cls()
        cfg.update(params)
        return cfg

    def config_mutex(self) -> threading.RLock:
        """Return the lock guarding this configuration."""
        return self._mutex

    @property
    def mode(self) -> PlanningMode:
        try:
            return PlanningMode(self.planning_mode)
        except ValueError:
            return PlanningMode.HUMAN_AWARE

    # ---------------------------------------------------------------- accessors
    @property
    def weight_optimaltime(self) -> float:
        with self._mutex:
            return self.optim.weight_optimaltime

    def set_weight_optimaltime(self, value: float) -> None:
        with self._mutex:
            self.optim.weight_optimaltime = float(value)

    def resolve_key(self, key: str) -> Tuple[Optional[str], Optional[str]]:
        """Map a flat or dotted key to ``(group, field)``.

        Top-level keys return ``(None, key)``; unknown keys return ``(None, None)``.
        """
        if '.' in key:
            group, name = key.split('.', 1)
            group_type = GROUP_TYPES.get(group)
            if group_type is not None and name in _field_names(group_type):
                return group, name
            return None, None
        if key in TOP_LEVEL_KEYS:
            return None, key
        for group in GROUP_ORDER:
            if key in _field_names(GROUP_TYPES[group]):
                return group, key
        return None, None

    def get(self, key: str) -> Any:
        group, name = self.resolve_key(key)
        if name is None:
            raise KeyError(key)
        with self._mutex:
            target = self if group is None else getattr(self, group)
            return getattr(target, name)

    def to_dict(self) -> Dict[str, Any]:
        """Flat view with dotted keys (top-level keys stay bare)."""
        with self._mutex:
            out = {key: getattr(self, key) for key in TOP_LEVEL_KEYS}
            for group in GROUP_ORDER:
                obj = getattr(self, group)
                for f in fields(obj):
                    out[f"{group}.{f.name}"] = getattr(obj, f.name)
            return out

    def snapshot(self) -> "PlannerConfig":
        """Independent copy taken under the lock; it owns a fresh lock."""
        clone = PlannerConfig()
        with self._mutex:
            for key in TOP_LEVEL_KEYS:
                setattr(clone, key, getattr(self, key))
            for group in GROUP_ORDER:
                setattr(clone, group, replace(getattr(self, group)))
        return clone

    # ------------------------------------------------------------ loading
    def update(self, params: Mapping[str, Any]) -> List[str]:
        """Apply a flat key/value set. Returns (and logs) every warning raised.

        Unknown, deprecated or non-convertible entries are reported and skipped;
        the remaining entries are still applied.
        """
        warnings = self.check_deprecated(params)
        with self._mutex:
            for key, value in params.items():
                if key in DEPRECATED_PARAMETERS:
                    continue
                group, name = self.resolve_key(key)
                if name is None:
                    msg = f"unknown parameter '{key}' ignored"
                    log.warning('[CONFIG] %s', msg)
                    warnings.append(msg)
                    continue
                target = self if group is None else getattr(self, group)
                try:
                    coerced = _coerce(value, getattr(target, name))
                except ValueError as exc:
                    msg = f"parameter '{key}' not changed: {exc}"
                    log.warning('[CONFIG] %s', msg)
                    warnings.append(msg)
                    continue
                setattr(target, name, coerced)
        return warnings

    def reconfigure(self, params: Mapping[str, Any]) -> List[str]:
        """Apply a runtime change and validate the result under one lock hold."""
        with self._mutex:
            warnings = self.update(params)
            warnings.extend(self.check_parameters())
        return warnings

    @staticmethod
    def check_deprecated(params: Mapping[str, Any]) -> List[str]:
        warnings = []
        for key in params:
            replacement = DEPRECATED_PARAMETERS.get(key)
            if replacement is None:
                continue
            msg = f"parameter '{key}' is deprecated and ignored; use '{replacement}' instead"
            log.warning('[CONFIG] %s', msg)
            warnings.append(msg)
        return warnings

    def check_parameters(self) -> List[str]:
        """Report parameter discrepancies. Never changes a value."""
        issues = []
        with self._mutex:
            robot, human, traj = self.robot, self.human, self.trajectory
            optim, hcp, approach = self.optim, self.hcp, self.approach
            eps = optim.penalty_epsilon

            for label, lo, hi in (
                ('robot.min_vel_x', robot.min_vel_x, robot.max_vel_x),
                ('robot.min_vel_x_backwards', robot.min_vel_x_backwards, robot.max_vel_x_backwards),
                ('robot.min_vel_theta', robot.min_vel_theta, robot.max_vel_theta),
                ('human.min_vel_x', human.min_vel_x, human.max_vel_x),
                ('human.min_vel_x_backwards', human.min_vel_x_backwards, human.max_vel_x_backwards),
                ('human.min_vel_theta', human.min_vel_theta, human.max_vel_theta),
            ):
                if lo > hi:
                    issues.append(f"{label} ({lo}) exceeds its maximum ({hi})")

            if robot.max_vel_x_backwards <= 0:
                issues.append("max_vel_x_backwards <= 0; disable backwards driving by raising "
                              "weight_kinematics_forward_drive instead")
            for label, value in (('max_vel_x', robot.max_vel_x),
                                 ('max_vel_x_backwards', robot.max_vel_x_backwards),
                                 ('max_vel_theta', robot.max_vel_theta),
                                 ('acc_lim_x', robot.acc_lim_x),
                                 ('acc_lim_theta', robot.acc_lim_theta)):
                if value <= eps:
                    issues.append(f"{label} ({value}) is not larger than penalty_epsilon ({eps})")

            if traj.dt_hysteresis < 0:
                issues.append(f"dt_hysteresis is negative ({traj.dt_hysteresis})")
            if traj.dt_ref <= traj.dt_hysteresis:
                issues.append("dt_ref <= dt_hysteresis; the band would oscillate while resizing")
            if traj.min_samples < 3:
                issues.append(f"min_samples ({traj.min_samples}) is smaller than 3")
            if traj.human_min_samples < 3:
                issues.append(f"human_min_samples ({traj.human_min_samples}) is smaller than 3")
            if traj.min_samples > traj.max_samples:
                issues.append("min_samples exceeds max_samples")
            if not 0.0 < traj.horizon_reduction_amount < 1.0:
                issues.append(f"horizon_reduction_amount ({traj.horizon_reduction_amount}) "
                              "should lie in (0, 1)")
            if traj.shrink_horizon_min_duration < 0:
                issues.append("shrink_horizon_min_duration is negative")

            if robot.cmd_angle_instead_rotvel and robot.wheelbase == 0:
                issues.append("cmd_angle_instead_rotvel is set but wheelbase is zero")
            if robot.cmd_angle_instead_rotvel and robot.min_turning_radius == 0:
                issues.append("cmd_angle_instead_rotvel is set but min_turning_radius is zero; "
                              "a diff-drive robot should command rotational velocities")

            if human.nominal_vel_x > human.max_vel_x:
                issues.append("human.nominal_vel_x exceeds human.max_vel_x")
            if not 0.0 < human.fov <= 2.0 * math.pi:
                issues.append(f"human.fov ({human.fov}) should lie in (0, 2*pi]")

            if optim.no_inner_iterations < 0 or optim.no_outer_iterations < 0:
                issues.append("iteration counts must not be negative")

            if hcp.max_number_classes < 1:
                issues.append("max_number_classes must be at least 1")
            if hcp.selection_cost_hysteresis < 0:
                issues.append("selection_cost_hysteresis is negative")
            if not 0.2 < hcp.h_signature_prescaler <= 1.0:
                issues.append(f"h_signature_prescaler ({hcp.h_signature_prescaler}) "
                              "should lie in (0.2, 1]")
            if not 0.0 <= hcp.obstacle_heading_threshold <= 1.0:
                issues.append("obstacle_heading_threshold should lie in [0, 1]")

            if approach.approach_dist_tolerance < 0 or approach.approach_angle_tolerance < 0:
                issues.append("approach tolerances must not be negative")

            if self.planning_mode not in {m.value for m in PlanningMode}:
                issues.append(f"unknown planning_mode {self.planning_mode}")

        for msg in issues:
            log.warning('[CONFIG] %s', msg)
        return issues


def _field_names(group_type) -> Tuple[str, ...]:
    return tuple(f.name for f in fields(group_type))
