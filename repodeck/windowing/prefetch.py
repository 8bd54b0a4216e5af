"""Stateless next-page prefetch trigger."""

from __future__ import annotations

import math

DEFAULT_PREFETCH_THRESHOLD = 0.8


def should_prefetch(
    cursor: int,
    loaded_count: int,
    *,
    has_next_page: bool,
    loading: bool,
    threshold: float = DEFAULT_PREFETCH_THRESHOLD,
) -> bool:
    """Return ``True`` when the next page should be requested now.

    The trigger fires once the UI cursor reaches ``floor(loaded_count *
    threshold)``. It keeps no state: callers pass the accumulator's
    ``loading`` flag so a crossing only produces one request.
    """
    if not has_next_page or loading or loaded_count <= 0:
        return False
    return cursor >= math.floor(loaded_count * threshold)


__all__ = ["DEFAULT_PREFETCH_THRESHOLD", "should_prefetch"]
