import pytest

from hateb.local_planner.config import PlannerConfig
from hateb.local_planner.plan_types import PoseSE2, PoseStamped


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: multi-candidate planning runs")


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def cfg():
    return PlannerConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def straight_plan():
    # 0.8 m along x, inside the default look-ahead
    return [PoseStamped(PoseSE2(0.2 * i, 0.0, 0.0)) for i in range(5)]
