"""Fixed-point sanitizer tests."""

import math

import pytest


def test_sanitize_rounds_to_scale():
    from agentloop.shell.numeric import sanitize_numeric
    assert sanitize_numeric(1.123456789) == pytest.approx(1.12345679)
    assert sanitize_numeric("2.5") == 2.5
    assert sanitize_numeric(0.1, scale=0) == 0.0
    assert sanitize_numeric(0.5, scale=0) == 1.0


def test_sanitize_non_finite_returns_default():
    from agentloop.shell.numeric import sanitize_numeric
    assert sanitize_numeric(math.nan) == 0.0
    assert sanitize_numeric(math.inf, default=-1.0) == -1.0
    assert sanitize_numeric("not a number", default=3.0) == 3.0
    assert sanitize_numeric(None) == 0.0
    assert sanitize_numeric(True) == 0.0


def test_sanitize_clamps_to_precision():
    from agentloop.shell.numeric import max_abs_for, sanitize_numeric
    max_abs = max_abs_for(18, 8)
    assert sanitize_numeric(1e20) == pytest.approx(max_abs)
    assert sanitize_numeric(-1e20) == pytest.approx(-max_abs)
    assert sanitize_numeric(12345.0, precision=6, scale=2) == pytest.approx(9999.99)


def test_sanitize_disallow_negative():
    from agentloop.shell.numeric import sanitize_numeric
    assert sanitize_numeric(-5.0, allow_negative=False) == 0.0
    assert sanitize_numeric(5.0, allow_negative=False) == 5.0


def test_sanitize_bounds_hold_for_samples():
    from agentloop.shell.numeric import max_abs_for, sanitize_numeric
    max_abs = max_abs_for()
    for x in (0.0, 1e-12, -3.333333333333, 98765.4321, 1e9, -1e15, 7.000000005):
        result = sanitize_numeric(x)
        assert -max_abs <= result <= max_abs
        # At most 8 decimals
        assert round(result, 8) == pytest.approx(result, abs=1e-12)


def test_to_number():
    from agentloop.shell.numeric import to_number
    assert to_number("97000.5") == 97000.5
    assert to_number(None) == 0.0
    assert to_number("", 1.0) == 1.0
    assert to_number(float("nan"), 2.0) == 2.0
