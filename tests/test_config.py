import logging
import math

from hateb.local_planner.config import PlannerConfig, PlanningMode
from hateb.local_planner.optimal_planner import TebOptimalPlanner


EXPECTED_DEFAULTS = {
    "odom_topic": "odom",
    "map_frame": "odom",
    "planning_mode": 1,
    "trajectory.teb_autosize": True,
    "trajectory.dt_ref": 0.3,
    "trajectory.dt_hysteresis": 0.1,
    "trajectory.min_samples": 3,
    "trajectory.human_min_samples": 3,
    "trajectory.global_plan_viapoint_sep": -1.0,
    "trajectory.max_global_plan_lookahead_dist": 1.0,
    "trajectory.force_reinit_new_goal_dist": 1.0,
    "trajectory.feasibility_check_no_poses": 5,
    "trajectory.shrink_horizon_backup": True,
    "trajectory.teb_init_skip_dist": 0.4,
    "robot.max_vel_x": 0.4,
    "robot.max_vel_x_backwards": 0.2,
    "robot.max_vel_theta": 0.3,
    "robot.acc_lim_x": 0.5,
    "robot.acc_lim_theta": 0.5,
    "robot.min_turning_radius": 0.0,
    "robot.wheelbase": 1.0,
    "robot.cmd_angle_instead_rotvel": False,
    "human.radius": 0.2,
    "human.min_human_robot_dist": 0.6,
    "human.max_vel_x": 1.1,
    "human.nominal_vel_x": 0.8,
    "human.acc_lim_theta": 0.8,
    "human.ttc_threshold": 5.0,
    "human.ttclosest_threshold": 0.5,
    "human.ttcplus_timer": 5.0,
    "goal_tolerance.xy_goal_tolerance": 0.2,
    "goal_tolerance.free_goal_vel": False,
    "obstacles.min_obstacle_dist": 0.5,
    "obstacles.obstacle_poses_affected": 25,
    "obstacles.costmap_converter_plugin": "",
    "obstacles.costmap_converter_rate": 5,
    "optim.no_inner_iterations": 8,
    "optim.no_outer_iterations": 4,
    "optim.penalty_epsilon": 0.1,
    "optim.weight_kinematics_nh": 1000.0,
    "optim.weight_obstacle": 10.0,
    "optim.weight_human_robot_ttclosest": 10.0,
    "optim.use_human_robot_safety_c": False,
    "optim.use_human_robot_ttc_c": True,
    "optim.use_human_robot_ttcplus_c": False,
    "optim.disable_rapid_omega_chage": True,
    "optim.omega_chage_time_seperation": 1.0,
    "hcp.enable_homotopy_class_planning": True,
    "hcp.max_number_classes": 5,
    "hcp.selection_obst_cost_scale": 100.0,
    "hcp.roadmap_graph_no_samples": 15,
    "hcp.roadmap_graph_area_width": 6.0,
    "hcp.h_signature_threshold": 0.1,
    "hcp.obstacle_heading_threshold": 0.45,
    "visualization.publish_robot_local_plan": True,
    "visualization.publish_human_global_plans": False,
    "visualization.pose_array_z_scale": 1.0,
    "approach.approach_id": 1,
    "approach.approach_dist": 0.5,
    "approach.approach_angle": 3.14,
}


def test_defaults_after_construction():
    cfg = PlannerConfig()
    for key, expected in EXPECTED_DEFAULTS.items():
        assert cfg.get(key) == expected, key
    assert cfg.mode is PlanningMode.HUMAN_AWARE


def test_defaults_pass_validation():
    assert PlannerConfig().check_parameters() == []


def test_bare_keys_resolve_robot_before_human():
    cfg = PlannerConfig.from_mapping({"max_vel_x": 0.8, "human.max_vel_x": 1.5, "radius": 0.35})
    assert cfg.robot.max_vel_x == 0.8
    assert cfg.human.max_vel_x == 1.5
    assert cfg.human.radius == 0.35


def test_update_coerces_to_default_types():
    cfg = PlannerConfig()
    warnings = cfg.update({"min_samples": "7", "teb_autosize": "false", "dt_ref": 1,
                           "planning_mode": 2.0, "costmap_converter_plugin": 42})
    assert warnings == []
    assert cfg.trajectory.min_samples == 7 and isinstance(cfg.trajectory.min_samples, int)
    assert cfg.trajectory.teb_autosize is False
    assert isinstance(cfg.trajectory.dt_ref, float)
    assert cfg.mode is PlanningMode.APPROACH
    assert cfg.obstacles.costmap_converter_plugin == "42"


def test_update_reports_unknown_and_invalid_values():
    cfg = PlannerConfig()
    warnings = cfg.update({"no_such_param": 1, "min_samples": 2.5, "teb_autosize": "maybe",
                           "bogus.max_vel_x": 3.0, "max_vel_theta": 0.6})
    assert len(warnings) == 4
    assert any("no_such_param" in w for w in warnings)
    assert cfg.trajectory.min_samples == 3
    assert cfg.trajectory.teb_autosize is True
    # valid entries in the same mapping are still applied
    assert cfg.robot.max_vel_theta == 0.6


def test_deprecated_keys_warn_and_are_ignored():
    cfg = PlannerConfig()
    warnings = cfg.update({"weight_point_obstacle": 50, "line_obstacle_poses_affected": 3})
    assert len(warnings) == 2
    assert any("weight_obstacle" in w for w in warnings)
    assert cfg.optim.weight_obstacle == 10.0
    assert cfg.obstacles.obstacle_poses_affected == 25


def test_check_parameters_flags_without_mutating():
    cfg = PlannerConfig()
    cfg.robot.min_vel_x = 1.0
    cfg.human.min_vel_theta = 2.0
    cfg.trajectory.dt_hysteresis = 0.5
    before = cfg.to_dict()
    issues = cfg.check_parameters()
    assert any("robot.min_vel_x" in msg for msg in issues)
    assert any("human.min_vel_theta" in msg for msg in issues)
    assert any("dt_ref <= dt_hysteresis" in msg for msg in issues)
    assert cfg.to_dict() == before


def test_check_parameters_logs_warnings(caplog):
    cfg = PlannerConfig()
    cfg.robot.cmd_angle_instead_rotvel = True
    with caplog.at_level(logging.WARNING, logger="hateb.local_planner.config"):
        issues = cfg.check_parameters()
    assert issues
    assert all("[CONFIG]" in rec.getMessage() for rec in caplog.records)


def test_check_parameters_flags_out_of_range_values():
    cfg = PlannerConfig()
    cfg.update({"h_signature_prescaler": 0.1, "fov": 7.0, "min_samples": 2,
                "horizon_reduction_amount": 1.0, "max_number_classes": 0})
    issues = " ".join(cfg.check_parameters())
    for fragment in ("h_signature_prescaler", "fov", "min_samples", "horizon_reduction_amount",
                     "max_number_classes"):
        assert fragment in issues


def test_reconfigure_combines_update_and_validation():
    cfg = PlannerConfig()
    warnings = cfg.reconfigure({"unknown_key": 1, "min_vel_x": 0.9})
    assert any("unknown_key" in w for w in warnings)
    assert any("robot.min_vel_x" in w for w in warnings)


def test_snapshot_is_isolated_from_later_writes():
    cfg = PlannerConfig()
    snap = cfg.snapshot()
    cfg.update({"max_vel_x": 1.0, "human.radius": 0.5})
    assert snap.robot.max_vel_x == 0.4
    assert snap.human.radius == 0.2
    assert snap.config_mutex() is not cfg.config_mutex()


def test_lock_is_reentrant():
    cfg = PlannerConfig()
    with cfg.config_mutex():
        cfg.reconfigure({"acc_lim_x": 0.7})
        assert cfg.robot.acc_lim_x == 0.7


def test_weight_optimaltime_goes_through_locked_accessor(cfg):
    planner = TebOptimalPlanner(cfg)
    assert planner.local_weight_optimaltime == 1.0
    planner.local_weight_optimaltime = 2.5
    assert cfg.optim.weight_optimaltime == 2.5
    assert cfg.weight_optimaltime == 2.5


def test_to_dict_uses_dotted_keys():
    flat = PlannerConfig().to_dict()
    assert flat["odom_topic"] == "odom"
    assert math.isclose(flat["robot.max_vel_x"], 0.4)
    assert "human.max_vel_x" in flat and "max_vel_x" not in flat
