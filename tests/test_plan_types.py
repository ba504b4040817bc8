import dataclasses
import math

import pytest

from hateb.local_planner.config import ApproachConfig, GoalToleranceConfig
from hateb.local_planner.plan_types import (
    PlanRequest,
    PoseSE2,
    PoseStamped,
    Twist,
    VelocityCommand,
    approach_pose,
    is_goal_reached,
    path_length,
    poses_from_array,
)


def test_plan_request_is_immutable_tuple_of_stamped_poses():
    req = PlanRequest([PoseSE2(0.0, 0.0, 0.0), PoseStamped(PoseSE2(1.0, 0.0, 0.0), 0.5)])
    assert isinstance(req.plan, tuple)
    assert all(isinstance(p, PoseStamped) for p in req.plan)
    assert req.plan[1].stamp == 0.5
    with pytest.raises(dataclasses.FrozenInstanceError):
        req.start_vel = Twist(1.0)


def test_propagated_straight_and_arc():
    straight = PoseSE2(0.0, 0.0, 0.0).propagated(Twist(1.0, 0.0, 0.0), 2.0)
    assert straight.x == pytest.approx(2.0)
    assert straight.y == pytest.approx(0.0)

    arc = PoseSE2(0.0, 0.0, 0.0).propagated(Twist(1.0, 0.0, math.pi / 2), 1.0)
    assert arc.x == pytest.approx(2.0 / math.pi)
    assert arc.y == pytest.approx(2.0 / math.pi)
    assert arc.theta == pytest.approx(math.pi / 2)


def test_propagated_zero_time_is_identity():
    pose = PoseSE2(1.0, 2.0, 0.3)
    assert pose.propagated(Twist(1.0, 0.0, 1.0), 0.0) == pose


def test_from_array_validates_size():
    with pytest.raises(ValueError):
        PoseSE2.from_array([1.0, 2.0])
    pose = PoseSE2.from_array([1.0, 2.0, 2.5 * math.pi])
    assert pose.theta == pytest.approx(0.5 * math.pi)


def test_poses_from_array_and_length():
    plan = poses_from_array([[0, 0, 0], [3, 4, 0], [3, 5, 0]])
    assert len(plan) == 3
    assert path_length([p.pose for p in plan]) == pytest.approx(6.0)


def test_is_goal_reached():
    tol = GoalToleranceConfig()
    goal = PoseSE2(1.0, 1.0, 0.0)
    assert is_goal_reached(PoseSE2(1.1, 1.0, 0.1), goal, tol)
    assert not is_goal_reached(PoseSE2(1.3, 1.0, 0.0), goal, tol)
    assert not is_goal_reached(PoseSE2(1.0, 1.0, 0.5), goal, tol)


def test_approach_pose_faces_the_human():
    behind = approach_pose(PoseSE2(0.0, 0.0, 0.0), ApproachConfig(approach_angle=math.pi))
    assert behind.x == pytest.approx(-0.5)
    assert behind.y == pytest.approx(0.0, abs=1e-9)
    assert behind.theta == pytest.approx(0.0, abs=1e-9)

    front = approach_pose(PoseSE2(2.0, 0.0, math.pi), ApproachConfig(approach_angle=0.0, approach_dist=1.0))
    assert front.x == pytest.approx(1.0)
    assert front.theta == pytest.approx(0.0, abs=1e-9)


def test_velocity_command_is_a_named_tuple():
    cmd = VelocityCommand(0.2, -0.1)
    v, omega = cmd
    assert (v, omega) == (cmd.v, cmd.omega)
