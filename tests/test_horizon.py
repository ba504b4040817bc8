import pytest

from hateb.local_planner.config import TrajectoryConfig
from hateb.local_planner.horizon import SEVERE_FAILURE_COUNT, HorizonReductionPolicy
from hateb.local_planner.optimal_planner import TebOptimalPlanner
from hateb.local_planner.plan_types import PoseSE2, PoseStamped


def _path(n):
    return [PoseSE2(0.2 * i, 0.0, 0.0) for i in range(n)]


def test_inactive_policy_keeps_path(clock):
    policy = HorizonReductionPolicy(clock)
    path = _path(11)
    assert policy.reduce(path, TrajectoryConfig()) is path


def test_reduction_after_failure(clock):
    policy = HorizonReductionPolicy(clock)
    policy.record_infeasible()
    reduced = policy.reduce(_path(11), TrajectoryConfig())
    assert len(reduced) == 6
    assert reduced[0] == PoseSE2(0.0, 0.0, 0.0)


def test_reduction_persists_for_min_duration(clock):
    traj = TrajectoryConfig()
    policy = HorizonReductionPolicy(clock)
    policy.record_infeasible()
    policy.record_success()
    clock.now = 5.0
    assert len(policy.reduce(_path(11), traj)) == 6
    clock.now = 11.0
    assert len(policy.reduce(_path(11), traj)) == 11


def test_severe_failures_halve_again(clock):
    policy = HorizonReductionPolicy(clock)
    for _ in range(SEVERE_FAILURE_COUNT):
        policy.record_infeasible()
    assert len(policy.reduce(_path(21), TrajectoryConfig())) == 6


def test_disabled_backup_never_reduces(clock):
    policy = HorizonReductionPolicy(clock)
    policy.record_infeasible()
    traj = TrajectoryConfig(shrink_horizon_backup=False)
    assert len(policy.reduce(_path(11), traj)) == 11


def test_short_paths_are_left_alone(clock):
    policy = HorizonReductionPolicy(clock)
    policy.record_infeasible()
    assert len(policy.reduce(_path(2), TrajectoryConfig())) == 2


def test_planner_plans_on_reduced_horizon(cfg, clock):
    cfg.trajectory.max_global_plan_lookahead_dist = 0.0
    planner = TebOptimalPlanner(cfg, clock=clock)
    planner.horizon.record_infeasible()
    plan = [PoseStamped(p) for p in _path(11)]
    assert planner.plan(plan)
    assert planner.timed_elastic_band.goal.x == pytest.approx(1.0)
