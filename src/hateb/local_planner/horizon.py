"""
Horizon reduction backup mode.

After an infeasible cycle the planner works on a shortened reference path for
a while. The policy keeps that state with hysteresis: it stays reduced while
failures keep coming and for ``shrink_horizon_min_duration`` seconds after the
last one.
"""
import logging
import time
from typing import Callable, Sequence

log = logging.getLogger(__name__)

# consecutive failures after which the kept part is halved again
SEVERE_FAILURE_COUNT = 10


class HorizonReductionPolicy:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.no_infeasible_plans = 0
        self.time_last_infeasible_plan = None

    def record_infeasible(self) -> None:
        self.no_infeasible_plans += 1
        self.time_last_infeasible_plan = self.clock()
        log.debug('[HORIZON] infeasible cycle #%d', self.no_infeasible_plans)

    def record_success(self) -> None:
        self.no_infeasible_plans = 0

    def reset(self) -> None:
        self.no_infeasible_plans = 0
        self.time_last_infeasible_plan = None

    def active(self, trajectory_cfg) -> bool:
        if not trajectory_cfg.shrink_horizon_backup:
            return False
        if self.no_infeasible_plans > 0:
            return True
        if self.time_last_infeasible_plan is None:
            return False
        elapsed = self.clock() - self.time_last_infeasible_plan
        return elapsed < trajectory_cfg.shrink_horizon_min_duration

    def reduce(self, path: Sequence, trajectory_cfg) -> Sequence:
        """Return the (possibly shortened) reference path; the start is always kept."""
        if len(path) < 3 or not self.active(trajectory_cfg):
            return path
        keep = 1.0 - trajectory_cfg.horizon_reduction_amount
        if self.no_infeasible_plans >= SEVERE_FAILURE_COUNT:
            keep *= 0.5
        n_beyond = len(path) - 1
        n_keep = max(1, int(round(n_beyond * keep)))
        if n_keep >= n_beyond:
            return path
        log.info('[HORIZON] reduced reference path from %d to %d poses', len(path), n_keep + 1)
        return path[:n_keep + 1]
