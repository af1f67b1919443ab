# grid_client/window.py - Scroll-driven window recentering

import logging
from typing import List, Optional, Sequence, Tuple

from grid_client.config import settings
from grid_server.models import Filter, Row, SortKey, WindowResponse

logger = logging.getLogger(__name__)


def compute_recenter(
    visible_first: int,
    visible_last: int,
    start_index: int,
    window_size: int,
    total_count: int,
) -> Optional[int]:
    """New window start when the visible rows near an edge of the loaded window.

    Returns None when the current window still covers the visible range with
    a quarter-window margin on each side (or recentering would not move it).
    """
    buffer = window_size // 4
    window_end = start_index + window_size

    need_shift_up = visible_first < start_index + buffer and start_index > 0
    need_shift_down = visible_last > window_end - buffer and window_end < total_count
    if not need_shift_up and not need_shift_down:
        return None

    center = (visible_first + visible_last) // 2
    new_start = center - window_size // 2
    new_start = max(0, min(new_start, max(0, total_count - window_size)))
    return new_start if new_start != start_index else None


class WindowRecenterController:
    """Keeps the loaded window around the visible rows of one table view.

    The last successful response stays current until a newer one arrives,
    so rendering never drops to empty during a refetch. Responses are tagged
    with a request generation and only the latest request's response is
    applied.
    """

    def __init__(self, client, table_id: str, window_size: Optional[int] = None, row_height: Optional[int] = None):
        self.client = client
        self.table_id = table_id
        self.window_size = window_size or settings.WINDOW_SIZE
        self.row_height = row_height or settings.ROW_HEIGHT
        self.start_index = 0
        self.filters: List[Filter] = []
        self.sort: List[SortKey] = []
        self.is_fetching = False
        self.last_response: Optional[WindowResponse] = None
        self._generation = 0

    @property
    def total_count(self) -> int:
        return self.last_response.totalCount if self.last_response else 0

    @property
    def window_start(self) -> int:
        return self.last_response.windowStart if self.last_response else 0

    @property
    def rows(self) -> List[Row]:
        return self.last_response.rows if self.last_response else []

    def row_at(self, absolute_index: int) -> Optional[Row]:
        """Row at a position of the ordered view, None outside the loaded window"""
        relative = absolute_index - self.window_start
        rows = self.rows
        return rows[relative] if 0 <= relative < len(rows) else None

    def visible_range(self, scroll_offset: float, viewport_height: float) -> Optional[Tuple[int, int]]:
        """First and last visible data rows for a scroll position"""
        total = self.total_count
        if total == 0 or viewport_height <= 0:
            return None
        first = max(0, int(scroll_offset // self.row_height))
        last = max(first, int((scroll_offset + viewport_height - 1) // self.row_height))
        # Positions past the data (e.g. an "add row" control) count as the last row
        return min(first, total - 1), min(last, total - 1)

    async def on_scroll(self, scroll_offset: float, viewport_height: float) -> bool:
        """Handle a scroll/resize/data event; returns True when a new window was requested"""
        if self.is_fetching:
            return False
        visible = self.visible_range(scroll_offset, viewport_height)
        if visible is None:
            return False

        new_start = compute_recenter(
            visible[0], visible[1], self.start_index, self.window_size, self.total_count
        )
        if new_start is None:
            return False

        logger.debug(f"Recentering {self.table_id} window {self.start_index} -> {new_start}")
        await self.load(new_start)
        return True

    async def load(self, start_index: Optional[int] = None) -> Optional[WindowResponse]:
        """Fetch the window at start_index (default: current); None if superseded.

        start_index only moves when a response is applied, so after a failed
        fetch it still describes the window on screen.
        """
        target = self.start_index if start_index is None else start_index

        self._generation += 1
        generation = self._generation
        self.is_fetching = True
        try:
            response = await self.client.get_rows(
                self.table_id, target, self.window_size, self.filters, self.sort
            )
        except Exception as e:
            logger.error(f"Window fetch for {self.table_id} at {target} failed: {e}")
            raise
        finally:
            if generation == self._generation:
                self.is_fetching = False

        if generation != self._generation:
            logger.debug(f"Discarding superseded window response (generation {generation})")
            return None

        self.last_response = response
        self.start_index = response.windowStart
        return response

    async def set_query(self, filters: Sequence[Filter] = (), sort: Sequence[SortKey] = ()) -> Optional[WindowResponse]:
        """Replace filters and sort, then reload from the top"""
        self.filters = list(filters)
        self.sort = list(sort)
        return await self.load(0)

    async def on_row_created(self, index: int) -> Optional[WindowResponse]:
        """Recenter so a newly appended row is inside the loaded window"""
        return await self.load(max(0, index - self.window_size // 2))
