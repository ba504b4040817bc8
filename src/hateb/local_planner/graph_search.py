"""
Exploration graphs for the homotopy-class planner.

Both strategies place keypoints between start and goal and connect them with
forward-only edges (w.r.t. the start->goal direction) that keep clear of every
obstacle. Candidate paths are enumerated shortest-first with networkx.

Simple exploration puts one keypoint left and one right of each obstacle ahead
of the robot. Roadmap exploration samples keypoints uniformly in a rectangle
spanning start and goal.
"""
import logging
from itertools import islice
from typing import List, Optional

import networkx as nx
import numpy as np

log = logging.getLogger(__name__)

START = 'start'
GOAL = 'goal'


def _frame(start, goal):
    s, g = start.position(), goal.position()
    diff = g - s
    length = float(np.hypot(*diff))
    direction = diff / length if length > 1e-9 else start.orientation_unit_vec()
    normal = np.array([-direction[1], direction[0]])
    return s, g, direction, normal, length


def _base_graph(start, goal) -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_node(START, pos=start.position())
    graph.add_node(GOAL, pos=goal.position())
    return graph


def _connect(graph: nx.DiGraph, obstacles, clearance: float, origin, direction) -> None:
    """Add every forward edge whose segment clears the obstacles by ``clearance``."""
    nodes = list(graph.nodes(data='pos'))
    for a, pa in nodes:
        for b, pb in nodes:
            if a == b or a == GOAL or b == START:
                continue
            if float(np.dot(pb - pa, direction)) <= 0.0:
                continue
            if any(obst.line_clearance(pa, pb) < clearance for obst in obstacles):
                continue
            graph.add_edge(a, b, length=float(np.hypot(*(pb - pa))))


def simple_exploration_graph(start, goal, obstacles, cfg) -> nx.DiGraph:
    hcp, min_dist = cfg.hcp, cfg.obstacles.min_obstacle_dist
    s, g, direction, normal, length = _frame(start, goal)
    graph = _base_graph(start, goal)
    for k, obst in enumerate(obstacles):
        center = obst.centroid()
        to_obst = center - s
        dist = float(np.hypot(*to_obst))
        if dist < 1e-9 or float(np.dot(to_obst, direction)) > length:
            continue
        if float(np.dot(to_obst / dist, direction)) < hcp.obstacle_heading_threshold:
            continue
        offset = obst.extent_radius() + min_dist + hcp.obstacle_keypoint_offset
        graph.add_node(('left', k), pos=center + offset * normal)
        graph.add_node(('right', k), pos=center - offset * normal)
    _connect(graph, obstacles, 0.5 * min_dist, s, direction)
    return graph


def roadmap_exploration_graph(start, goal, obstacles, cfg,
                              rng: Optional[np.random.Generator] = None) -> nx.DiGraph:
    hcp, min_dist = cfg.hcp, cfg.obstacles.min_obstacle_dist
    rng = rng if rng is not None else np.random.default_rng()
    s, g, direction, normal, length = _frame(start, goal)
    graph = _base_graph(start, goal)
    along = rng.uniform(0.0, length, hcp.roadmap_graph_no_samples)
    across = rng.uniform(-0.5 * hcp.roadmap_graph_area_width, 0.5 * hcp.roadmap_graph_area_width,
                         hcp.roadmap_graph_no_samples)
    samples = s + np.outer(along, direction) + np.outer(across, normal)
    for k, pos in enumerate(samples):
        if any(obst.distances(pos[None, :])[0] < min_dist for obst in obstacles):
            continue
        graph.add_node(('sample', k), pos=pos)
    _connect(graph, obstacles, 0.5 * min_dist, s, direction)
    return graph


def enumerate_paths(graph: nx.DiGraph, limit: int) -> List[np.ndarray]:
    """Up to ``limit`` start->goal polylines, shortest first."""
    if limit <= 0:
        return []
    try:
        paths = list(islice(nx.shortest_simple_paths(graph, START, GOAL, weight='length'), limit))
    except nx.NetworkXNoPath:
        log.debug('[HCP] exploration graph does not connect start and goal')
        return []
    return [np.array([graph.nodes[n]['pos'] for n in path]) for path in paths]
