"""Tolerance-aware float comparisons for STEPPE.

Every size and PR comparison in the engine goes through these helpers so
that accumulated floating-point drift never flips a rule. EPSILON is the
single tolerance used throughout.
"""

from __future__ import annotations

EPSILON = 1.0e-6


def is_zero(x: float, eps: float = EPSILON) -> bool:
    """True if |x| < eps."""
    return -eps < x < eps


def gt(x: float, y: float, eps: float = EPSILON) -> bool:
    """True if x exceeds y by more than eps."""
    return x - y > eps


def lt(x: float, y: float, eps: float = EPSILON) -> bool:
    """True if x is below y by more than eps."""
    return y - x > eps


def le(x: float, y: float, eps: float = EPSILON) -> bool:
    return not gt(x, y, eps)


def safe_ratio(num: float, den: float, sentinel: float) -> float:
    """num / den, or sentinel when den is (near) zero."""
    return num / den if gt(den, 0.0) else sentinel
