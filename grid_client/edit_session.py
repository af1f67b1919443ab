# grid_client/edit_session.py - Per-cell drafts and debounced commits

"""
Cell edit session.

Holds every cell the user has touched in one grid session, keyed by
(row id, column id), independent of whether the row is still inside the
loaded window. Each cell moves through

    idle -> queued -> saving -> saved | error

with ``queued`` re-entered (and its timer restarted) on every further
edit. Commits carry a per-cell generation number; only the response of the
latest issued commit may settle the cell's state.

All methods must be called from the event loop thread that owns the
session.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from grid_client.config import settings
from grid_server.cell_values import string_form

logger = logging.getLogger(__name__)

UpdateCell = Callable[[str, str, Any], Awaitable[Any]]


class SaveState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass(frozen=True)
class CellKey:
    row_id: str
    column_id: str


@dataclass
class CellEntry:
    text: Optional[str] = None  # None until the first keystroke or paste
    state: SaveState = SaveState.IDLE
    generation: int = 0
    timer: Optional[asyncio.TimerHandle] = None

    @property
    def has_draft(self) -> bool:
        return self.text is not None


class CellEditSession:
    def __init__(self, update_cell: UpdateCell, debounce_ms: Optional[int] = None):
        self._update_cell = update_cell
        debounce_ms = settings.COMMIT_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.debounce_seconds = debounce_ms / 1000.0
        self._cells: Dict[CellKey, CellEntry] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._closed = False

    async def __aenter__(self) -> "CellEditSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ---------- drafts ----------

    def set_draft(self, row_id: str, column_id: str, text: str) -> None:
        """Overwrite the draft text; does not schedule a save"""
        self._entry(row_id, column_id).text = text

    def has_draft(self, row_id: str, column_id: str) -> bool:
        entry = self._cells.get(CellKey(row_id, column_id))
        return entry is not None and entry.has_draft

    def draft(self, row_id: str, column_id: str) -> Optional[str]:
        entry = self._cells.get(CellKey(row_id, column_id))
        return entry.text if entry else None

    def display_value(self, row_id: str, column_id: str, server_value: Any) -> str:
        """Text to render for a cell; a draft shadows the server value"""
        # TODO: drop drafts once saved and the next window shows the same value,
        # so edits from other users become visible for cells edited here.
        text = self.draft(row_id, column_id)
        if text is not None:
            return text
        if server_value is None or isinstance(server_value, (dict, list)):
            return ""
        return string_form(server_value)

    # ---------- save state ----------

    def save_state(self, row_id: str, column_id: str) -> SaveState:
        entry = self._cells.get(CellKey(row_id, column_id))
        return entry.state if entry else SaveState.IDLE

    @property
    def status(self) -> SaveState:
        """Worst state across all cells: error > saving > saved"""
        states = {entry.state for entry in self._cells.values()}
        if SaveState.ERROR in states:
            return SaveState.ERROR
        if SaveState.QUEUED in states or SaveState.SAVING in states:
            return SaveState.SAVING
        return SaveState.SAVED

    # ---------- commit pipeline ----------

    def queue_commit(self, row_id: str, column_id: str) -> None:
        """(Re)start the debounce timer for a cell"""
        self._ensure_open()
        key = CellKey(row_id, column_id)
        entry = self._entry(row_id, column_id)
        self._cancel_timer(entry)
        entry.state = SaveState.QUEUED
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.debounce_seconds, self._fire, key)

    def flush_commit(self, row_id: str, column_id: str) -> asyncio.Task:
        """Cancel any pending timer and commit now.

        Used on blur, keyboard navigation away from the cell, and when the
        cell is about to stop being rendered with an edit pending.
        """
        self._ensure_open()
        entry = self._cells.get(CellKey(row_id, column_id))
        if entry is not None:
            self._cancel_timer(entry)
        return self._spawn(self.commit(row_id, column_id))

    async def commit(self, row_id: str, column_id: str) -> bool:
        """Send the cell's draft; returns True when the write succeeded.

        A cell that was only selected, never typed into, is never written.
        Failures are not retried.
        """
        entry = self._cells.get(CellKey(row_id, column_id))
        if entry is None or not entry.has_draft:
            if entry is not None and entry.state == SaveState.QUEUED:
                entry.state = SaveState.IDLE
            return False

        entry.generation += 1
        generation = entry.generation
        entry.state = SaveState.SAVING

        try:
            await self._update_cell(row_id, column_id, entry.text)
        except Exception as e:
            logger.warning(f"Commit of {row_id}:{column_id} failed: {e}")
            self._settle(entry, generation, SaveState.ERROR)
            return False

        self._settle(entry, generation, SaveState.SAVED)
        return True

    async def drain(self) -> None:
        """Wait for every in-flight commit to finish"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        """Cancel every pending timer; queued edits are not sent"""
        self._closed = True
        for entry in self._cells.values():
            self._cancel_timer(entry)
            if entry.state == SaveState.QUEUED:
                entry.state = SaveState.IDLE

    async def aclose(self) -> None:
        self.close()
        await self.drain()

    # ---------- internals ----------

    def _entry(self, row_id: str, column_id: str) -> CellEntry:
        key = CellKey(row_id, column_id)
        entry = self._cells.get(key)
        if entry is None:
            entry = self._cells[key] = CellEntry()
        return entry

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Edit session is closed")

    @staticmethod
    def _cancel_timer(entry: CellEntry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    def _fire(self, key: CellKey) -> None:
        entry = self._cells.get(key)
        if entry is not None:
            entry.timer = None
        self._spawn(self.commit(key.row_id, key.column_id))

    def _spawn(self, coro: Awaitable[bool]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    @staticmethod
    def _settle(entry: CellEntry, generation: int, state: SaveState) -> None:
        # A superseded commit never overwrites the state of a newer one
        if generation == entry.generation and entry.state == SaveState.SAVING:
            entry.state = state
