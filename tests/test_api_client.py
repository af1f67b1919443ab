"""
End-to-end tests for the async API client against the in-process app.
"""
import httpx
import pytest
import pytest_asyncio

import grid_server.app as server
from grid_client.api_client import GridApiClient
from grid_client.edit_session import CellEditSession, SaveState
from grid_client.window import WindowRecenterController
from grid_server.models import Filter


@pytest_asyncio.fixture
async def api():
    """GridApiClient routed straight into the ASGI app, with a fresh database."""
    await server.db.init()
    transport = httpx.ASGITransport(app=server.app)
    async with GridApiClient(base_url="http://grid.test", transport=transport) as client:
        yield client
    await server.db.close()


@pytest_asyncio.fixture
async def table_id(api):
    table = await server.db.create_table("Inventory")
    return table["id"]


class TestGridApiClient:
    """Tests for the client routes"""

    @pytest.mark.asyncio
    async def test_columns_and_rows(self, api, table_id):
        """Should create columns and rows and read them back"""
        sku = await api.create_column(table_id, "SKU", "text")
        qty = await api.create_column(table_id, "Qty", "number")
        created = [await api.create_row(table_id) for _ in range(3)]

        columns = await api.get_columns(table_id)
        window = await api.get_rows(table_id, 0, 10)

        assert [c.id for c in columns] == [sku.id, qty.id]
        assert [r.index for r in created] == [0, 1, 2]
        assert window.totalCount == 3
        assert [r.id for r in window.rows] == [r.id for r in created]

    @pytest.mark.asyncio
    async def test_update_and_filter(self, api, table_id):
        """Should write cells and filter on them through the window route"""
        qty = await api.create_column(table_id, "Qty", "number")
        rows = [await api.create_row(table_id) for _ in range(3)]
        for row, value in zip(rows, ["5", "12", "30"]):
            assert await api.update_cell(row.id, qty.id, value) is True

        window = await api.get_rows(
            table_id, 0, 10, filters=[Filter(columnId=qty.id, operator="gt", value=10)]
        )

        assert window.totalCount == 2
        assert [r.values[qty.id] for r in window.rows] == [12, 30]

    @pytest.mark.asyncio
    async def test_rejected_filter_raises(self, api, table_id):
        """Should surface a 400 as an HTTPStatusError"""
        name = await api.create_column(table_id, "Name", "text")

        with pytest.raises(httpx.HTTPStatusError) as excinfo:
            await api.get_rows(table_id, 0, 10, filters=[Filter(columnId=name.id, operator="lt", value=1)])

        assert excinfo.value.response.status_code == 400


class TestClientComponents:
    """Tests for the edit session and window controller over the real client"""

    @pytest.mark.asyncio
    async def test_edit_session_commits_through_client(self, api, table_id):
        """Should persist a debounced edit so the next window shows it"""
        name = await api.create_column(table_id, "Name", "text")
        row = await api.create_row(table_id)

        async with CellEditSession(api.update_cell, debounce_ms=10) as session:
            session.set_draft(row.id, name.id, "Widget")
            session.queue_commit(row.id, name.id)
            await session.flush_commit(row.id, name.id)

        assert session.save_state(row.id, name.id) == SaveState.SAVED
        window = await api.get_rows(table_id, 0, 10)
        assert window.rows[0].values[name.id] == "Widget"

    @pytest.mark.asyncio
    async def test_controller_follows_new_row(self, api, table_id):
        """Should load a window containing a freshly appended row"""
        await api.create_column(table_id, "Name", "text")
        controller = WindowRecenterController(api, table_id, window_size=4, row_height=10)
        await controller.load()
        assert controller.total_count == 0

        created = [await api.create_row(table_id) for _ in range(10)]
        await controller.on_row_created(created[-1].index)

        assert controller.total_count == 10
        assert controller.row_at(9).id == created[-1].id
