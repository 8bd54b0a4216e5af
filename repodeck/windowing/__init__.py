"""Virtual window and prefetch calculations for long repository lists."""

from __future__ import annotations

from .prefetch import DEFAULT_PREFETCH_THRESHOLD, should_prefetch
from .virtual_window import (
    VirtualItem,
    VirtualWindow,
    VirtualWindowCalculator,
    WindowState,
    compute_window,
    slice_window,
    total_height,
    visible_capacity,
)

__all__ = [
    "DEFAULT_PREFETCH_THRESHOLD",
    "VirtualItem",
    "VirtualWindow",
    "VirtualWindowCalculator",
    "WindowState",
    "compute_window",
    "should_prefetch",
    "slice_window",
    "total_height",
    "visible_capacity",
]
