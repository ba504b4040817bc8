import math
from types import SimpleNamespace

import numpy as np
import pytest

from hateb.local_planner import optimal_planner
from hateb.local_planner.obstacles import Obstacle
from hateb.local_planner.optimal_planner import (
    TebOptimalPlanner,
    convert_trans_rot_vel_to_steering_angle,
)
from hateb.local_planner.plan_types import PlanRequest, PoseSE2, PoseStamped, Twist
from hateb.local_planner.planner_interface import PlannerState
from hateb.local_planner.visualization import LoggingVisualization

START = PoseSE2(0.0, 0.0, 0.0)
GOAL = PoseSE2(0.8, 0.0, 0.0)


def _human_ahead():
    return {1: PlanRequest([PoseSE2(1.1, 0.0, math.pi)])}


def test_overloads_produce_the_same_band(cfg):
    by_plan = TebOptimalPlanner(cfg)
    by_pair = TebOptimalPlanner(cfg)
    by_se2 = TebOptimalPlanner(cfg)
    assert by_plan.plan([PoseStamped(START), PoseStamped(GOAL)])
    assert by_pair.plan_pose_pair((0.0, 0.0, 0.0), (0.8, 0.0, 0.0))
    assert by_se2.plan_se2(START, GOAL, pre_plan_time=0.0)
    ref = by_se2.timed_elastic_band
    for planner in (by_plan, by_pair):
        band = planner.timed_elastic_band
        assert np.allclose(band.poses, ref.poses)
        assert np.allclose(band.time_diffs, ref.time_diffs)


def test_pre_plan_time_advances_the_start(cfg):
    planner = TebOptimalPlanner(cfg)
    assert planner.plan_se2(START, GOAL, start_vel=Twist(0.2, 0.0, 0.0), pre_plan_time=0.5)
    assert planner.timed_elastic_band.start.x == pytest.approx(0.1)


def test_straight_plan_gives_forward_command(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg)
    assert planner.state is PlannerState.UNINITIALIZED
    assert planner.get_velocity_command() is None
    assert planner.plan(straight_plan)
    assert planner.state is PlannerState.FEASIBLE
    traj = planner.get_full_trajectory()
    assert len(traj) >= cfg.trajectory.min_samples
    assert traj[-1].pose.x == pytest.approx(0.8)
    cmd = planner.get_velocity_command()
    assert cmd is not None
    assert cmd.v >= 0.0
    assert abs(cmd.v) <= cfg.robot.max_vel_x + 0.2


def test_malformed_input_fails_without_state_change(cfg):
    planner = TebOptimalPlanner(cfg)
    assert not planner.plan([PoseStamped(START)])
    assert not planner.plan([PoseStamped(PoseSE2(float('nan'), 0.0, 0.0)), PoseStamped(GOAL)])
    assert not planner.plan_pose_pair((0.0, 0.0), (1.0, 0.0, 0.0))
    assert not planner.plan_se2(START, GOAL, start_vel=Twist(float('inf'), 0.0, 0.0))
    assert planner.state is PlannerState.UNINITIALIZED


def test_solver_error_keeps_previous_trajectory(cfg, straight_plan, monkeypatch):
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan)
    before = planner.get_full_trajectory()

    def broken(*args, **kwargs):
        raise ValueError("residuals are not finite")

    monkeypatch.setattr(optimal_planner, 'least_squares', broken)
    assert not planner.plan(straight_plan)
    assert planner.state is PlannerState.INFEASIBLE
    assert planner.get_velocity_command() is None
    assert planner.get_full_trajectory() == before


def test_solver_status_failure(cfg, straight_plan, monkeypatch):
    def failing(fun, x0, *args, **kwargs):
        return SimpleNamespace(status=-1, x=x0, cost=0.0, message='improper input')

    monkeypatch.setattr(optimal_planner, 'least_squares', failing)
    planner = TebOptimalPlanner(cfg)
    assert not planner.plan(straight_plan)
    assert planner.state is PlannerState.UNINITIALIZED
    assert planner.horizon.no_infeasible_plans == 1


def test_clear_planner(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan)
    planner.clear_planner()
    assert planner.state is PlannerState.UNINITIALIZED
    assert planner.get_full_trajectory() == []
    assert planner.get_velocity_command() is None


def test_op_costs_are_filled(cfg, straight_plan):
    op_costs = {'stale': 1.0}
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan, op_costs=op_costs)
    assert 'stale' not in op_costs
    assert op_costs['time_optimal'] > 0.0


def test_human_close_to_path_raises_safety_cost(cfg, straight_plan):
    cfg.optim.use_human_robot_safety_c = True
    alone, crowded = {}, {}
    assert TebOptimalPlanner(cfg).plan(straight_plan, op_costs=alone)
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan, human_plans=_human_ahead(), op_costs=crowded)
    assert alone['human_robot_safety'] == 0.0
    assert crowded['human_robot_safety'] > 0.0
    assert len(planner.get_full_human_trajectory(1)) >= cfg.trajectory.human_min_samples
    assert planner.get_full_human_trajectory(42) == []


def test_robot_only_mode_ignores_humans(cfg, straight_plan):
    cfg.planning_mode = 0
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan, human_plans=_human_ahead())
    assert planner.get_full_human_trajectory(1) == []


def test_approach_mode_targets_the_human(cfg, straight_plan):
    cfg.planning_mode = 2
    cfg.approach.approach_angle = 0.0
    planner = TebOptimalPlanner(cfg)
    humans = {1: PlanRequest([PoseSE2(1.5, 0.0, math.pi)])}
    assert planner.plan(straight_plan, human_plans=humans)
    goal = planner.timed_elastic_band.goal
    assert goal.x == pytest.approx(1.0)
    assert goal.theta == pytest.approx(0.0, abs=1e-9)
    # the approached human is a target, not a moving obstacle
    assert planner.get_full_human_trajectory(1) == []


def test_obstacle_cost_mult_scales_obstacle_term(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg, obstacles=[Obstacle.circle(0.4, 0.2, 0.05)])
    assert planner.plan(straight_plan)
    base = planner.compute_cost_terms()
    cfg.obstacles.obstacle_cost_mult = 2.0
    scaled = planner.compute_cost_terms()
    assert base['obstacle'] > 0.0
    assert scaled['obstacle'] == pytest.approx(2.0 * base['obstacle'])
    assert scaled['time_optimal'] == pytest.approx(base['time_optimal'])


def test_cost_terms_use_the_given_snapshot(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg, obstacles=[Obstacle.circle(0.4, 0.2, 0.05)])
    assert planner.plan(straight_plan)
    frozen = cfg.snapshot()
    base = planner.compute_cost_terms(cfg=frozen)
    cfg.obstacles.obstacle_cost_mult = 2.0
    assert planner.compute_cost_terms(cfg=frozen) == base
    assert planner.compute_cost_terms()['obstacle'] == pytest.approx(2.0 * base['obstacle'])


def test_compute_current_cost_writes_first_slot(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg)
    costs = []
    planner.compute_current_cost(costs)
    assert costs == []
    assert planner.plan(straight_plan)
    planner.compute_current_cost(costs)
    assert len(costs) == 1 and costs[0] > 0.0
    costs = [-1.0, 7.0]
    planner.compute_current_cost(costs)
    assert costs[0] > 0.0 and costs[1] == 7.0


def test_steering_angle_conversion(cfg, straight_plan):
    assert convert_trans_rot_vel_to_steering_angle(0.5, 0.5, 1.0) == pytest.approx(math.pi / 4)
    assert convert_trans_rot_vel_to_steering_angle(0.0, 0.5, 1.0) == 0.0
    # turning radius clamped to the minimum
    assert convert_trans_rot_vel_to_steering_angle(0.1, 1.0, 1.0, 0.5) == pytest.approx(math.atan(2.0))

    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan)
    cfg.robot.cmd_angle_instead_rotvel = True
    v, steering = planner.get_velocity_command()
    assert abs(steering) < math.pi / 2


def test_visualize_follows_toggles(cfg, straight_plan):
    sink = LoggingVisualization()
    planner = TebOptimalPlanner(cfg, visualization=sink)
    planner.visualize()
    assert sink.published == []
    assert planner.plan(straight_plan, human_plans=_human_ahead())
    planner.visualize()
    assert sink.published == ['robot_global_plan', 'robot_local_plan', 'human_local_plans']
