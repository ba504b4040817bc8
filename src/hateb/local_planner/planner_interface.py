"""
Lifecycle contract shared by every local planner.

A planner moves between three states::

    UNINITIALIZED -> FEASIBLE <-> INFEASIBLE
          ^______________________________|   (clear_planner only)

Planning failures never raise across this boundary: ``plan*`` returns False,
``get_velocity_command`` returns None and the previously stored trajectory is
kept. Optional capabilities have no-op defaults here.
"""
import abc
import logging
from enum import Enum
from typing import List, Optional

from hateb.local_planner.config import PlannerConfig

log = logging.getLogger(__name__)


class PlannerState(Enum):
    UNINITIALIZED = 'uninitialized'
    FEASIBLE = 'feasible'
    INFEASIBLE = 'infeasible'


class PlannerInterface(abc.ABC):
    """Abstract local planner.

    Parameters
    - config: shared ``PlannerConfig``; planners read a snapshot per call and
      never hold the lock during an optimization
    """

    def __init__(self, config: Optional[PlannerConfig] = None):
        self.config = config if config is not None else PlannerConfig()
        self._state = PlannerState.UNINITIALIZED

    @property
    def state(self) -> PlannerState:
        return self._state

    @property
    def local_weight_optimaltime(self) -> float:
        return self.config.weight_optimaltime

    @local_weight_optimaltime.setter
    def local_weight_optimaltime(self, value: float) -> None:
        self.config.set_weight_optimaltime(value)

    # ------------------------------------------------------------- planning
    @abc.abstractmethod
    def plan(self, initial_plan, start_vel=None, free_goal_vel: bool = False,
             human_plans=None, op_costs=None) -> bool:
        """Plan along a reference path (sequence of ``PoseStamped`` or a ``PlanRequest``)."""

    @abc.abstractmethod
    def plan_pose_pair(self, start, goal, start_vel=None, free_goal_vel: bool = False) -> bool:
        """Plan between two raw ``(x, y, theta)`` poses."""

    @abc.abstractmethod
    def plan_se2(self, start, goal, start_vel=None, free_goal_vel: bool = False,
                 pre_plan_time: float = 0.0) -> bool:
        """Plan between two ``PoseSE2``; the start is advanced by ``pre_plan_time`` first."""

    @abc.abstractmethod
    def get_velocity_command(self):
        """First command of the current trajectory, or None unless FEASIBLE."""

    @abc.abstractmethod
    def clear_planner(self) -> None:
        """Drop every stored trajectory and return to UNINITIALIZED."""

    @abc.abstractmethod
    def is_trajectory_feasible(self, footprint_model, footprint_spec, inscribed_radius: float = 0.0,
                               circumscribed_radius: float = 0.0,
                               look_ahead_idx: Optional[int] = None) -> bool:
        """True when the swept footprint up to ``look_ahead_idx`` poses is collision-free.

        None checks ``trajectory.feasibility_check_no_poses`` poses; a negative index checks them all.
        """

    @abc.abstractmethod
    def get_full_human_trajectory(self, human_id: int) -> List:
        """Predicted trajectory of one human; [] for unknown ids."""

    # ------------------------------------------------------------- optional
    def visualize(self) -> None:
        pass

    def is_horizon_reduction_appropriate(self, initial_plan) -> bool:
        return False

    def compute_current_cost(self, costs: List[float], obst_cost_scale: float = 1.0,
                             alternative_time_cost: bool = False) -> None:
        pass

    def get_full_trajectory(self) -> List:
        return []
