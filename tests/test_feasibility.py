from hateb.local_planner.footprint import PolygonFootprintModel
from hateb.local_planner.obstacles import Obstacle
from hateb.local_planner.optimal_planner import TebOptimalPlanner
from hateb.local_planner.plan_types import PoseSE2
from hateb.local_planner.planner_interface import PlannerState


def _planned(cfg, straight_plan):
    planner = TebOptimalPlanner(cfg)
    assert planner.plan(straight_plan)
    return planner


def test_free_space_is_feasible(cfg, straight_plan):
    planner = _planned(cfg, straight_plan)
    assert planner.is_trajectory_feasible(PolygonFootprintModel(), [], 0.1, 0.1)
    assert planner.state is PlannerState.FEASIBLE


def test_look_ahead_limits_checked_poses(cfg, straight_plan):
    planner = _planned(cfg, straight_plan)
    model = PolygonFootprintModel([Obstacle.circle(0.8, 0.0, 0.1)])
    assert planner.is_trajectory_feasible(model, [], 0.1, 0.1, look_ahead_idx=2)
    assert planner.state is PlannerState.FEASIBLE


def test_whole_trajectory_is_checked_for_negative_or_large_look_ahead(cfg, straight_plan):
    model = PolygonFootprintModel([Obstacle.circle(0.8, 0.0, 0.1)])
    for idx in (-1, 10000):
        planner = _planned(cfg, straight_plan)
        assert not planner.is_trajectory_feasible(model, [], 0.1, 0.1, look_ahead_idx=idx)
        assert planner.state is PlannerState.INFEASIBLE


def test_gaps_are_interpolated_with_inscribed_radius(cfg):
    cfg.optim.optimization_activate = False
    planner = TebOptimalPlanner(cfg)
    assert planner.plan_se2(PoseSE2(0.0, 0.0, 0.0), PoseSE2(1.0, 0.0, 0.0))
    assert len(planner.timed_elastic_band) == 3
    model = PolygonFootprintModel([Obstacle.circle(0.25, 0.0, 0.05)])
    # the stored poses alone clear the obstacle
    assert planner.is_trajectory_feasible(model, [], 0.0, 0.1)
    assert not planner.is_trajectory_feasible(model, [], 0.1, 0.1)


def test_default_look_ahead_comes_from_config(cfg, straight_plan):
    model = PolygonFootprintModel([Obstacle.circle(0.8, 0.0, 0.1)])
    cfg.trajectory.feasibility_check_no_poses = 2
    planner = _planned(cfg, straight_plan)
    assert planner.is_trajectory_feasible(model, [], 0.1, 0.1)
    assert planner.state is PlannerState.FEASIBLE
    cfg.trajectory.feasibility_check_no_poses = -1
    assert not planner.is_trajectory_feasible(model, [], 0.1, 0.1)
    assert planner.state is PlannerState.INFEASIBLE
