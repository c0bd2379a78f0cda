"""Small numerical helpers."""

from __future__ import annotations


def lerp(x: float, x0: float, x1: float, y0: float, y1: float) -> float:
    """Linearly interpolate (or extrapolate) y at x on the line through (x0, y0), (x1, y1)."""
    return y0 + (x - x0) * (y1 - y0) / (x1 - x0)