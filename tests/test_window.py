"""
Tests for window recentering and the window controller.
"""
import asyncio

import pytest

from grid_client.window import WindowRecenterController, compute_recenter
from grid_server.models import Filter, Row, SortKey, WindowResponse


class FakeGridClient:
    """Serves windows over a fixed number of rows; calls can be held on a gate."""

    def __init__(self, total=1000, fail=False):
        self.total = total
        self.fail = fail
        self.calls = []
        self.gates = []

    async def get_rows(self, table_id, start_index=0, window_size=300, filters=None, sort=None):
        self.calls.append({"start": start_index, "size": window_size, "filters": filters, "sort": sort})
        if self.gates:
            await self.gates.pop(0).wait()
        if self.fail:
            raise ConnectionError("backend down")
        start = max(0, min(start_index, max(0, self.total - 1)))
        rows = [
            Row(id=f"row-{i}", tableId=table_id, index=i)
            for i in range(start, min(start + window_size, self.total))
        ]
        return WindowResponse(rows=rows, totalCount=self.total, windowStart=start)


@pytest.fixture
def grid_client():
    return FakeGridClient()


@pytest.fixture
def controller(grid_client):
    return WindowRecenterController(grid_client, "t1", window_size=100, row_height=10)


class TestComputeRecenter:
    """Tests for the recentering rule"""

    def test_shift_down_near_bottom_edge(self):
        """Should center the window on rows 290-310 of 5000"""
        assert compute_recenter(290, 310, 0, 300, 5000) == 150

    def test_no_shift_in_the_middle(self):
        """Should keep the window while the visible rows sit well inside it"""
        assert compute_recenter(100, 120, 0, 300, 5000) is None

    def test_shift_up_near_top_edge(self):
        """Should move the window up when the visible rows near its start"""
        assert compute_recenter(1000, 1020, 1000, 300, 5000) == 860

    def test_clamped_at_zero(self):
        """Should never start before row 0"""
        assert compute_recenter(10, 30, 100, 300, 5000) == 0

    def test_clamped_at_last_full_window(self):
        """Should never start past total - window size"""
        assert compute_recenter(4990, 4999, 4500, 300, 5000) == 4700

    def test_window_already_covers_everything(self):
        """Should not shift when the whole result fits in the window"""
        assert compute_recenter(150, 199, 0, 300, 200) is None


class TestVisibleRange:
    """Tests for mapping scroll position to row positions"""

    def test_no_rows_loaded(self, controller):
        """Should report nothing visible before the first load"""
        assert controller.visible_range(0, 500) is None

    @pytest.mark.asyncio
    async def test_clamped_to_last_row(self, controller):
        """Should treat positions past the data as the last row"""
        await controller.load()
        assert controller.visible_range(0, 200) == (0, 19)
        assert controller.visible_range(9990, 100) == (999, 999)


class TestWindowRecenterController:
    """Tests for scroll-driven window loading"""

    @pytest.mark.asyncio
    async def test_scroll_recenters(self, controller, grid_client):
        """Should request a recentered window when scrolling near the edge"""
        await controller.load()

        assert await controller.on_scroll(900, 200) is True

        assert grid_client.calls[-1]["start"] == 49
        assert controller.window_start == 49
        assert controller.row_at(100).id == "row-100"

    @pytest.mark.asyncio
    async def test_scroll_inside_window_does_nothing(self, controller, grid_client):
        """Should not refetch while the visible rows are inside the buffer"""
        await controller.load()

        assert await controller.on_scroll(200, 200) is False
        assert len(grid_client.calls) == 1

    @pytest.mark.asyncio
    async def test_skips_while_fetching_and_keeps_rows(self, controller, grid_client):
        """Should ignore scroll events during a fetch and keep showing the last window"""
        await controller.load()
        gate = asyncio.Event()
        grid_client.gates.append(gate)

        pending = asyncio.ensure_future(controller.load(500))
        await asyncio.sleep(0)

        assert controller.is_fetching is True
        assert await controller.on_scroll(900, 200) is False
        assert controller.window_start == 0
        assert len(controller.rows) == 100

        gate.set()
        await pending
        assert controller.is_fetching is False
        assert controller.window_start == 500

    @pytest.mark.asyncio
    async def test_superseded_response_discarded(self, controller, grid_client):
        """Should apply only the latest request's response"""
        gate = asyncio.Event()
        grid_client.gates.append(gate)

        older = asyncio.ensure_future(controller.load(100))
        await asyncio.sleep(0)
        await controller.load(300)

        gate.set()
        assert await older is None
        assert controller.window_start == 300
        assert controller.is_fetching is False

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_last_response(self, controller, grid_client):
        """Should raise the fetch error and keep the previous window"""
        await controller.load()
        grid_client.fail = True

        with pytest.raises(ConnectionError):
            await controller.load(400)

        assert controller.is_fetching is False
        assert controller.window_start == 0
        assert controller.total_count == 1000

    @pytest.mark.asyncio
    async def test_recenter_retried_after_failed_fetch(self):
        """Should still recenter once the backend recovers from a failed fetch"""
        grid_client = FakeGridClient(total=5000)
        controller = WindowRecenterController(grid_client, "t1", window_size=300, row_height=10)
        await controller.load()

        grid_client.fail = True
        with pytest.raises(ConnectionError):
            await controller.on_scroll(2900, 210)
        assert controller.start_index == controller.window_start == 0

        grid_client.fail = False
        assert await controller.on_scroll(2900, 210) is True

        assert grid_client.calls[-1]["start"] == 150
        assert controller.start_index == 150
        assert controller.row_at(305).index == 305

    @pytest.mark.asyncio
    async def test_row_created_recenters_on_new_row(self, controller, grid_client):
        """Should load a window that contains the appended row"""
        await controller.load()

        await controller.on_row_created(999)

        assert grid_client.calls[-1]["start"] == 949
        assert controller.row_at(999).index == 999

    @pytest.mark.asyncio
    async def test_set_query_reloads_from_top(self, controller, grid_client):
        """Should reset to the first window and pass the new filters and sort"""
        await controller.load(600)
        filters = [Filter(columnId="c1", operator="isNotEmpty")]
        sort = [SortKey(columnId="c1", direction="desc")]

        await controller.set_query(filters, sort)

        assert grid_client.calls[-1] == {"start": 0, "size": 100, "filters": filters, "sort": sort}
        assert controller.window_start == 0

    @pytest.mark.asyncio
    async def test_row_at_outside_window(self, controller):
        """Should return None for positions outside the loaded window"""
        await controller.load()
        assert controller.row_at(0).id == "row-0"
        assert controller.row_at(100) is None
        assert controller.row_at(-1) is None
