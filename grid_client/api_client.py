# grid_client/api_client.py - Async HTTP client for the grid backend

import logging
from typing import Any, List, Optional, Sequence

import httpx

from grid_client.config import settings
from grid_server.models import Column, CreatedRow, Filter, SortKey, WindowResponse

logger = logging.getLogger(__name__)


class GridApiClient:
    """Thin wrapper over the backend routes; one shared httpx.AsyncClient"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_URL,
            timeout=timeout or settings.API_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "GridApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        r = await self._client.request(method, url, **kwargs)
        if r.is_error:
            logger.warning(f"{method} {url} failed with {r.status_code}: {r.text}")
        r.raise_for_status()
        return r.json()

    async def get_columns(self, table_id: str) -> List[Column]:
        data = await self._request("GET", f"/api/tables/{table_id}/columns")
        return [Column(**c) for c in data]

    async def create_column(self, table_id: str, name: str, column_type: str) -> Column:
        data = await self._request(
            "POST", f"/api/tables/{table_id}/columns", json={"name": name, "type": column_type}
        )
        return Column(**data)

    async def create_row(self, table_id: str) -> CreatedRow:
        data = await self._request("POST", f"/api/tables/{table_id}/rows")
        return CreatedRow(**data)

    async def get_rows(
        self,
        table_id: str,
        start_index: int,
        window_size: int,
        filters: Optional[Sequence[Filter]] = None,
        sort: Optional[Sequence[SortKey]] = None,
    ) -> WindowResponse:
        body = {
            "startIndex": start_index,
            "windowSize": window_size,
            "filters": [f.model_dump(mode="json") for f in filters or []],
            "sort": [s.model_dump(mode="json") for s in sort or []],
        }
        data = await self._request("POST", f"/api/tables/{table_id}/rows/window", json=body)
        return WindowResponse(**data)

    async def update_cell(self, row_id: str, column_id: str, value: Any) -> bool:
        data = await self._request(
            "PATCH", f"/api/rows/{row_id}/cells/{column_id}", json={"value": value}
        )
        return bool(data.get("ok"))
