"""
Local planner package: configuration model, plan exchange types, the planner
lifecycle contract and its optimizer-backed implementations.
"""
from hateb.local_planner.config import PlannerConfig, PlanningMode
from hateb.local_planner.footprint import FootprintModel, PolygonFootprintModel
from hateb.local_planner.homotopy_planner import HomotopyClassPlanner
from hateb.local_planner.obstacles import Obstacle
from hateb.local_planner.optimal_planner import TebOptimalPlanner
from hateb.local_planner.plan_types import (
    HumanPlanIndex,
    PlanRequest,
    PoseSE2,
    PoseStamped,
    TrajectoryPoint,
    Twist,
    VelocityCommand,
)
from hateb.local_planner.planner_interface import PlannerInterface, PlannerState
from hateb.local_planner.visualization import LoggingVisualization, PlannerVisualization

__all__ = [
    "FootprintModel",
    "HomotopyClassPlanner",
    "HumanPlanIndex",
    "LoggingVisualization",
    "Obstacle",
    "PlanRequest",
    "PlannerConfig",
    "PlannerInterface",
    "PlannerState",
    "PlannerVisualization",
    "PlanningMode",
    "PolygonFootprintModel",
    "PoseSE2",
    "PoseStamped",
    "TebOptimalPlanner",
    "TrajectoryPoint",
    "Twist",
    "VelocityCommand",
]
