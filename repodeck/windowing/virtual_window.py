"""Cursor-centred virtual window over a long item list.

A fixed-height surface only renders ``visible_capacity`` rows. For a list
of any length the calculator returns the contiguous ``[start, end)`` range
to materialise: the rows around the UI cursor plus ``overscan`` extra rows
on each side.

Window bounds
-------------
For ``n`` items, capacity ``cap`` and overscan ``o``::

    half  = cap // 2
    start = clamp(cursor - half - o, 0, n - cap)
    end   = min(n, start + cap + 2 * o)

so ``start <= cursor < end`` always holds for ``0 <= cursor < n``.

Hysteresis
----------
Small cursor moves (fewer than three rows) that stay inside the previous
window reuse it unchanged. :class:`WindowState` carries the previous window
together with the inputs it was computed from; a window is never reused
for a different item count, capacity or overscan.
"""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_HYSTERESIS_ROWS = 3
DEFAULT_OVERSCAN = 2


@dataclasses.dataclass(frozen=True, slots=True)
class VirtualWindow:
    """Half-open index range ``[start, end)`` of rows to render."""

    start: int
    end: int

    def __len__(self) -> int:
        """Return the number of rows inside the window."""
        return self.end - self.start

    def __contains__(self, index: object) -> bool:
        """Return ``True`` when ``index`` falls inside the window."""
        return isinstance(index, int) and self.start <= index < self.end


@dataclasses.dataclass(frozen=True, slots=True)
class WindowState:
    """Previous computation kept for hysteresis."""

    last_cursor: int
    window: VirtualWindow
    item_count: int
    visible_capacity: int
    overscan: int


@dataclasses.dataclass(frozen=True, slots=True)
class VirtualItem[T]:
    """One rendered row: the item, its list index and its offset in the window."""

    item: T
    index: int
    offset_index: int


def visible_capacity(item_height: int, container_height: int) -> int:
    """Return how many whole rows fit in the container, at least one."""
    if item_height <= 0:
        msg = f"item_height must be positive, got {item_height}"
        raise ValueError(msg)
    return max(1, container_height // item_height)


def _reusable(
    previous: WindowState | None,
    cursor: int,
    item_count: int,
    capacity: int,
    overscan: int,
) -> bool:
    if previous is None:
        return False
    if (previous.item_count, previous.visible_capacity, previous.overscan) != (
        item_count,
        capacity,
        overscan,
    ):
        return False
    return (
        abs(cursor - previous.last_cursor) < _HYSTERESIS_ROWS
        and cursor in previous.window
    )


def compute_window(  # noqa: PLR0913
    cursor: int,
    item_count: int,
    item_height: int,
    container_height: int,
    overscan: int = DEFAULT_OVERSCAN,
    previous: WindowState | None = None,
) -> VirtualWindow:
    """Return the rows to render for ``cursor``.

    Parameters
    ----------
    cursor
        Highlighted row. Callers clamp it into ``[0, item_count)`` first.
    item_count
        Length of the current item list.
    item_height, container_height
        Row height and viewport height in the same unit (terminal lines).
    overscan
        Extra rows rendered on each side of the visible area.
    previous
        State from the last computation; its window is returned as-is when
        the hysteresis rule applies.

    """
    if overscan < 0:
        msg = f"overscan must not be negative, got {overscan}"
        raise ValueError(msg)
    if item_count <= 0:
        return VirtualWindow(0, 0)
    capacity = visible_capacity(item_height, container_height)
    if capacity >= item_count:
        return VirtualWindow(0, item_count)
    if previous is not None and _reusable(
        previous, cursor, item_count, capacity, overscan
    ):
        return previous.window

    half = capacity // 2
    start = min(max(cursor - half - overscan, 0), item_count - capacity)
    end = min(item_count, start + capacity + 2 * overscan)
    return VirtualWindow(start, end)


class VirtualWindowCalculator:
    """Owns the hysteresis state between successive window requests."""

    def __init__(self, *, overscan: int = DEFAULT_OVERSCAN) -> None:
        """Create a calculator with no previous window."""
        self._overscan = overscan
        self._state: WindowState | None = None
        self.recomputations = 0

    @property
    def state(self) -> WindowState | None:
        """Return the state recorded by the last recomputation."""
        return self._state

    def reset(self) -> None:
        """Forget the previous window, e.g. after a list reset."""
        self._state = None

    def window_for(
        self, cursor: int, item_count: int, item_height: int, container_height: int
    ) -> VirtualWindow:
        """Return the window for ``cursor``, reusing the last one when allowed."""
        window = compute_window(
            cursor,
            item_count,
            item_height,
            container_height,
            self._overscan,
            self._state,
        )
        if self._state is not None and window is self._state.window:
            return window
        self.recomputations += 1
        self._state = WindowState(
            last_cursor=cursor,
            window=window,
            item_count=item_count,
            visible_capacity=(
                visible_capacity(item_height, container_height) if item_count else 0
            ),
            overscan=self._overscan,
        )
        return window


def slice_window[T](
    items: cabc.Sequence[T], window: VirtualWindow
) -> list[VirtualItem[T]]:
    """Materialise the rows of ``items`` inside ``window``."""
    end = min(window.end, len(items))
    return [
        VirtualItem(item=items[index], index=index, offset_index=index - window.start)
        for index in range(window.start, end)
    ]


def total_height(item_count: int, item_height: int) -> int:
    """Return the height of the full, unwindowed list."""
    return max(0, item_count) * item_height


__all__ = [
    "DEFAULT_OVERSCAN",
    "VirtualItem",
    "VirtualWindow",
    "VirtualWindowCalculator",
    "WindowState",
    "compute_window",
    "slice_window",
    "total_height",
    "visible_capacity",
]
