"""
Homotopy-class planner: optimizes several topologically distinct trajectories
and follows the cheapest.

Per planning cycle:

1. prepare the reference path exactly like ``TebOptimalPlanner``;
2. explore start->goal keypoint paths (simple or roadmap strategy);
3. keep the reference path plus one path per new H-signature, at most
   ``max_number_classes`` in total;
4. optimize each candidate in its own ``TebOptimalPlanner`` (thread pool when
   ``enable_multithreading``), reusing last cycle's planner for a matching
   signature;
5. select the cheapest candidate with the selection scales; the previous best
   gets the ``selection_cost_hysteresis`` factor.
"""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from hateb.local_planner.config import PlannerConfig
from hateb.local_planner.graph_search import (
    enumerate_paths,
    roadmap_exploration_graph,
    simple_exploration_graph,
)
from hateb.local_planner.h_signature import HSignature
from hateb.local_planner.horizon import HorizonReductionPolicy
from hateb.local_planner.optimal_planner import (
    TebOptimalPlanner,
    plan_poses,
    prepare_reference,
    valid_request,
)
from hateb.local_planner.plan_types import PlanRequest, PoseSE2
from hateb.local_planner.planner_interface import PlannerInterface, PlannerState

log = logging.getLogger(__name__)

# explored paths per kept class; bounds the simple-path enumeration
PATHS_PER_CLASS = 4


@dataclass
class Candidate:
    signature: HSignature
    path: List[PoseSE2]
    planner: TebOptimalPlanner
    is_reference: bool = False
    cost: float = math.inf


def _poses_along(xy: np.ndarray, start: PoseSE2, goal: PoseSE2) -> List[PoseSE2]:
    """Reference poses through explored keypoints, headed at the next keypoint."""
    poses = [start]
    for k in range(1, len(xy) - 1):
        dx, dy = xy[k + 1] - xy[k]
        poses.append(PoseSE2(float(xy[k, 0]), float(xy[k, 1]), math.atan2(dy, dx)))
    poses.append(goal)
    return poses


class HomotopyClassPlanner(PlannerInterface):
    """Multi-candidate planner.

    Parameters
    - config, obstacles, via_points, visualization, robot_radius, clock: as for ``TebOptimalPlanner``
    - rng: ``numpy.random.Generator`` for roadmap sampling; seed it for reproducible candidates
    """

    def __init__(self, config: Optional[PlannerConfig] = None, obstacles=None, via_points=None,
                 visualization=None, robot_radius: float = 0.0, rng=None, clock=time.monotonic):
        super().__init__(config)
        self.obstacles = list(obstacles or [])
        self.via_points = [tuple(vp) for vp in (via_points or [])]
        self.visualization = visualization
        self.robot_radius = float(robot_radius)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.clock = clock
        self.horizon = HorizonReductionPolicy(clock)

        self._candidates: List[Candidate] = []
        self._best: Optional[Candidate] = None
        self._graph = None

    def set_obstacles(self, obstacles) -> None:
        self.obstacles = list(obstacles or [])

    def set_via_points(self, via_points) -> None:
        self.via_points = [tuple(vp) for vp in (via_points or [])]

    @property
    def candidates(self) -> List[Candidate]:
        return list(self._candidates)

    @property
    def best_planner(self) -> Optional[TebOptimalPlanner]:
        return self._best.planner if self._best is not None else None

    # ------------------------------------------------------------------ planning
    def plan(self, initial_plan, start_vel=None, free_goal_vel: bool = False,
             human_plans=None, op_costs=None) -> bool:
        cfg = self.config.snapshot()
        if isinstance(initial_plan, PlanRequest) and start_vel is None:
            start_vel = initial_plan.start_vel
        try:
            path = plan_poses(initial_plan)
        except (TypeError, ValueError) as exc:
            log.warning('[HCP] malformed reference path: %s', exc)
            return self._fail(record=False)
        if not valid_request(path, start_vel, '[HCP]'):
            return self._fail(record=False)
        path, extracted = prepare_reference(path, cfg, self.horizon)
        return self._plan_candidates(path, start_vel, free_goal_vel, human_plans, cfg, op_costs, extracted)

    def plan_pose_pair(self, start, goal, start_vel=None, free_goal_vel: bool = False) -> bool:
        try:
            start_pose, goal_pose = PoseSE2.from_array(start), PoseSE2.from_array(goal)
        except (TypeError, ValueError) as exc:
            log.warning('[HCP] malformed start/goal pose: %s', exc)
            return self._fail(record=False)
        return self.plan_se2(start_pose, goal_pose, start_vel, free_goal_vel)

    def plan_se2(self, start, goal, start_vel=None, free_goal_vel: bool = False,
                 pre_plan_time: float = 0.0) -> bool:
        if not valid_request([start, goal], start_vel, '[HCP]'):
            return self._fail(record=False)
        if pre_plan_time > 0.0 and start_vel is not None:
            start = start.propagated(start_vel, pre_plan_time)
        return self._plan_candidates([start, goal], start_vel, free_goal_vel, None,
                                     self.config.snapshot(), None, ())

    def _fail(self, record: bool = True) -> bool:
        if self._best is not None:
            self._state = PlannerState.INFEASIBLE
        if record:
            self.horizon.record_infeasible()
        return False

    def _explore(self, path: List[PoseSE2], cfg: PlannerConfig) -> List[np.ndarray]:
        hcp = cfg.hcp
        start, goal = path[0], path[-1]
        if hcp.simple_exploration:
            graph = simple_exploration_graph(start, goal, self.obstacles, cfg)
        else:
            graph = roadmap_exploration_graph(start, goal, self.obstacles, cfg, self.rng)
        self._graph = graph
        return enumerate_paths(graph, PATHS_PER_CLASS * hcp.max_number_classes)

    def _collect_candidates(self, path: List[PoseSE2], cfg: PlannerConfig) -> List[Candidate]:
        hcp = cfg.hcp
        reference_xy = np.array([p.position() for p in path])
        ref_sig = HSignature.from_path(reference_xy, self.obstacles, hcp.h_signature_prescaler)
        kept = [(ref_sig, path, True)]
        if hcp.enable_homotopy_class_planning and hcp.max_number_classes > 1:
            start, goal = path[0], path[-1]
            for xy in self._explore(path, cfg):
                if len(kept) >= hcp.max_number_classes:
                    break
                sig = HSignature.from_path(xy, self.obstacles, hcp.h_signature_prescaler)
                if not sig.is_valid():
                    continue
                if any(sig.is_equivalent(other, hcp.h_signature_threshold) for other, _, _ in kept):
                    continue
                kept.append((sig, _poses_along(xy, start, goal), False))

        candidates = []
        previous = list(self._candidates)
        for sig, cand_path, is_ref in kept:
            planner = None
            for old in previous:
                if old.signature.is_equivalent(sig, hcp.h_signature_threshold):
                    planner = old.planner
                    previous.remove(old)
                    break
            if planner is None:
                planner = TebOptimalPlanner(self.config, robot_radius=self.robot_radius, clock=self.clock)
            candidates.append(Candidate(sig, cand_path, planner, is_ref))
        return candidates

    def _plan_candidates(self, path, start_vel, free_goal_vel, human_plans, cfg, op_costs,
                         extracted) -> bool:
        hcp = cfg.hcp
        candidates = self._collect_candidates(list(path), cfg)
        for cand in candidates:
            cand.planner.set_obstacles(self.obstacles)
            with_via = hcp.viapoints_all_candidates or cand.is_reference
            cand.planner.set_via_points(self.via_points if with_via else [])

        def run(cand: Candidate) -> bool:
            with_via = hcp.viapoints_all_candidates or cand.is_reference
            return cand.planner.plan_path(cand.path, start_vel, free_goal_vel, human_plans, cfg=cfg,
                                          extra_via_points=extracted if with_via else ())

        if hcp.enable_multithreading and len(candidates) > 1:
            results = [False] * len(candidates)
            with ThreadPoolExecutor(max_workers=len(candidates)) as executor:
                futures = {executor.submit(run, cand): i for i, cand in enumerate(candidates)}
                for future, i in futures.items():
                    results[i] = future.result()
        else:
            results = [run(cand) for cand in candidates]

        successful = [cand for cand, ok in zip(candidates, results) if ok]
        if not successful:
            log.warning('[HCP] all %d candidates failed', len(candidates))
            return self._fail()

        previous_best = self._best.planner if self._best is not None else None
        for cand in successful:
            terms = cand.planner.compute_cost_terms(hcp.selection_obst_cost_scale,
                                                    hcp.selection_viapoint_cost_scale,
                                                    hcp.selection_alternative_time_cost, cfg=cfg)
            cand.cost = sum(terms.values())
            if cand.planner is previous_best:
                cand.cost *= hcp.selection_cost_hysteresis
        best = min(successful, key=lambda c: c.cost)
        log.debug('[HCP] %d/%d candidates feasible, best cost %.4f', len(successful),
                  len(candidates), best.cost)

        self._candidates = successful
        self._best = best
        self._state = PlannerState.FEASIBLE
        if cfg.trajectory.shrink_horizon_backup and best.planner.is_horizon_reduction_appropriate(path):
            self.horizon.record_infeasible()
        else:
            self.horizon.record_success()
        if op_costs is not None:
            op_costs.clear()
            op_costs.update(best.planner.compute_cost_terms(cfg=cfg))
        return True

    # ------------------------------------------------------------------ outputs
    def get_velocity_command(self):
        if self._state != PlannerState.FEASIBLE or self._best is None:
            return None
        return self._best.planner.get_velocity_command()

    def clear_planner(self) -> None:
        for cand in self._candidates:
            cand.planner.clear_planner()
        self._candidates = []
        self._best = None
        self._graph = None
        self._state = PlannerState.UNINITIALIZED

    def get_full_trajectory(self) -> List:
        if self._best is None:
            return []
        return self._best.planner.get_full_trajectory()

    def get_full_human_trajectory(self, human_id: int) -> List:
        if self._best is None:
            return []
        return self._best.planner.get_full_human_trajectory(human_id)

    def is_trajectory_feasible(self, footprint_model, footprint_spec, inscribed_radius: float = 0.0,
                               circumscribed_radius: float = 0.0,
                               look_ahead_idx: Optional[int] = None) -> bool:
        if self._best is None:
            return True
        ok = self._best.planner.is_trajectory_feasible(footprint_model, footprint_spec, inscribed_radius,
                                                       circumscribed_radius, look_ahead_idx)
        if not ok:
            self._state = PlannerState.INFEASIBLE
            self.horizon.record_infeasible()
        return ok

    def is_horizon_reduction_appropriate(self, initial_plan) -> bool:
        if self._best is None:
            return False
        return self._best.planner.is_horizon_reduction_appropriate(initial_plan)

    def compute_current_cost(self, costs: List[float], obst_cost_scale: float = 1.0,
                             alternative_time_cost: bool = False) -> None:
        """Replace ``costs`` with one total per maintained candidate."""
        values = []
        for cand in self._candidates:
            values.append(sum(cand.planner.compute_cost_terms(obst_cost_scale, 1.0,
                                                              alternative_time_cost).values()))
        costs[:] = values

    def visualize(self) -> None:
        if self.visualization is None or self._best is None:
            return
        planner = self._best.planner
        planner.visualization = self.visualization
        planner.visualize()
        if self._graph is not None and self.config.snapshot().hcp.visualize_hc_graph:
            self.visualization.publish_homotopy_graph(self._graph)
