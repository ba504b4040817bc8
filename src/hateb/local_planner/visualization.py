"""Visualization sink for the local planners.

The base class swallows every publish; hosts subclass it and forward the
data to whatever display they use. Planners only call the hooks whose
visualization toggle is on.
"""
import logging

log = logging.getLogger(__name__)


class PlannerVisualization:
    def publish_robot_global_plan(self, plan):
        pass

    def publish_robot_local_plan(self, trajectory):
        pass

    def publish_robot_local_plan_poses(self, poses, z_scale=1.0):
        pass

    def publish_human_global_plans(self, human_plans):
        pass

    def publish_human_local_plans(self, trajectories):
        pass

    def publish_human_local_plan_poses(self, trajectories, z_scale=1.0):
        pass

    def publish_homotopy_graph(self, graph):
        pass


class LoggingVisualization(PlannerVisualization):
    """Logs a one-line summary of every publish at debug level."""

    def __init__(self):
        self.published = []

    def _note(self, hook, size):
        self.published.append(hook)
        log.debug('[VIS] %s (%d items)', hook, size)

    def publish_robot_global_plan(self, plan):
        self._note('robot_global_plan', len(plan))

    def publish_robot_local_plan(self, trajectory):
        self._note('robot_local_plan', len(trajectory))

    def publish_robot_local_plan_poses(self, poses, z_scale=1.0):
        self._note('robot_local_plan_poses', len(poses))

    def publish_human_global_plans(self, human_plans):
        self._note('human_global_plans', len(human_plans))

    def publish_human_local_plans(self, trajectories):
        self._note('human_local_plans', len(trajectories))

    def publish_human_local_plan_poses(self, trajectories, z_scale=1.0):
        self._note('human_local_plan_poses', len(trajectories))

    def publish_homotopy_graph(self, graph):
        self._note('homotopy_graph', graph.number_of_nodes())
