import numpy as np

from hateb.local_planner.graph_search import (
    GOAL,
    START,
    enumerate_paths,
    roadmap_exploration_graph,
    simple_exploration_graph,
)
from hateb.local_planner.obstacles import Obstacle
from hateb.local_planner.plan_types import PoseSE2

START_POSE = PoseSE2(0.0, 0.0, 0.0)
GOAL_POSE = PoseSE2(4.0, 0.0, 0.0)


def test_simple_exploration_goes_around_both_sides(cfg):
    graph = simple_exploration_graph(START_POSE, GOAL_POSE, [Obstacle.circle(2.0, 0.0, 0.3)], cfg)
    assert not graph.has_edge(START, GOAL)
    paths = enumerate_paths(graph, 10)
    assert len(paths) == 2
    sides = sorted(float(np.sign(p[1, 1])) for p in paths)
    assert sides == [-1.0, 1.0]
    for p in paths:
        assert np.allclose(p[0], [0.0, 0.0])
        assert np.allclose(p[-1], [4.0, 0.0])


def test_obstacles_behind_the_robot_add_no_keypoints(cfg):
    obstacles = [Obstacle.circle(2.0, 0.0, 0.3), Obstacle.circle(-2.0, 0.0, 0.3)]
    graph = simple_exploration_graph(START_POSE, GOAL_POSE, obstacles, cfg)
    assert graph.number_of_nodes() == 4
    assert len(enumerate_paths(graph, 10)) == 2


def test_free_space_connects_directly(cfg):
    graph = simple_exploration_graph(START_POSE, GOAL_POSE, [], cfg)
    paths = enumerate_paths(graph, 3)
    assert len(paths) == 1
    assert paths[0].shape == (2, 2)
    assert enumerate_paths(graph, 0) == []


def test_roadmap_is_reproducible_with_seed(cfg):
    obstacles = [Obstacle.circle(2.0, 0.0, 0.3)]
    a = roadmap_exploration_graph(START_POSE, GOAL_POSE, obstacles, cfg, np.random.default_rng(7))
    b = roadmap_exploration_graph(START_POSE, GOAL_POSE, obstacles, cfg, np.random.default_rng(7))
    assert sorted(a.nodes, key=str) == sorted(b.nodes, key=str)
    assert a.number_of_edges() == b.number_of_edges()
    assert a.number_of_nodes() <= cfg.hcp.roadmap_graph_no_samples + 2
    for path in enumerate_paths(a, 5):
        assert np.all(np.diff(path[:, 0]) > 0)
