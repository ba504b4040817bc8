import math
import numpy as np
from hateb.local_planner import angle_utils as au


def test_normalize_theta_basic():
    assert abs(au.normalize_theta(math.pi - 1e-6) - (math.pi - 1e-6)) < 1e-9
    assert abs(au.normalize_theta(math.pi + 0.1) - (-math.pi + 0.1)) < 1e-9
    assert isinstance(au.normalize_theta(7.0), float)


def test_angle_diff_examples():
    # a = -179.5°, b = +179° -> expected ~ +1.5°
    a = math.radians(-179.5)
    b = math.radians(179.0)
    assert abs(math.degrees(au.angle_diff(a, b)) - 1.5) < 1e-6


def test_angle_diff_broadcasting():
    a = np.array([0.0, math.pi - 0.1])
    b = 2.0 * math.pi + np.array([0.0, -math.pi + 0.05])
    d = au.angle_diff(a, b)
    assert d.shape == (2,)
    assert abs(d[0]) < 1e-9
    assert abs(abs(d[1]) - 0.15) < 1e-9


def test_average_angle_across_wrap():
    avg = au.average_angle(math.pi - 0.1, -math.pi + 0.1)
    assert abs(abs(avg) - math.pi) < 1e-9
    assert abs(au.average_angle(0.2, 0.4) - 0.3) < 1e-9


def test_interpolate_angle_takes_short_way():
    mid = au.interpolate_angle(math.pi - 0.1, -math.pi + 0.1, 0.5)
    assert abs(abs(mid) - math.pi) < 1e-9
    assert abs(au.interpolate_angle(0.0, 1.0, 0.25) - 0.25) < 1e-12
