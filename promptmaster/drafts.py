"""Unsaved edits, kept apart from the saved collection and its history."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .config import DRAFT_DEBOUNCE_SECONDS
from .errors import PromptMasterError
from .models import PromptRecord, now_ms
from .storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class Draft:
    record: PromptRecord
    updated_at: int


class DraftCache:
    """Persisted drafts keyed by prompt id. Never synced, never exported."""

    def __init__(self, store: RecordStore):
        self._store = store

    def put(self, record: PromptRecord, updated_at: int) -> None:
        self._store.put_draft(record.id, record.to_dict(), updated_at)

    def get(self, record_id: str) -> Draft | None:
        row = self._store.get_draft(record_id)
        if row is None:
            return None
        data, updated_at = row
        try:
            record = PromptRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping malformed draft for %s: %s", record_id, e)
            self.discard(record_id)
            return None
        return Draft(record=record, updated_at=updated_at)

    def discard(self, record_id: str) -> None:
        self._store.delete_draft(record_id)

    def ids(self) -> list[str]:
        return self._store.list_drafts()

    def resolve(self, canonical: PromptRecord) -> tuple[PromptRecord, bool]:
        """Pick what the editor should start from.

        Returns (record, restored). The draft wins only when it is strictly
        newer than the saved record; a stale draft is discarded here.
        """
        draft = self.get(canonical.id)
        if draft is None:
            return canonical, False
        if draft.updated_at > canonical.updated_at:
            return draft.record, True
        self.discard(canonical.id)
        return canonical, False


class DraftWriter:
    """Debounced draft persistence: one write per record per idle window.

    Each record id owns at most one armed timer. Scheduling again inside the
    window replaces the pending record and restarts the timer. ``close()``
    (or leaving the ``with`` block) cancels every timer that has not fired.
    """

    def __init__(
        self,
        cache: DraftCache,
        delay: float = DRAFT_DEBOUNCE_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self._cache = cache
        self._delay = delay
        self._clock = clock
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._pending: dict[str, tuple[PromptRecord, int]] = {}

    def __enter__(self) -> DraftWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def pending(self) -> list[str]:
        return list(self._handles)

    def schedule(self, record: PromptRecord) -> None:
        loop = asyncio.get_running_loop()
        handle = self._handles.pop(record.id, None)
        if handle is not None:
            handle.cancel()
        self._pending[record.id] = (record, self._clock())
        self._handles[record.id] = loop.call_later(self._delay, self._write, record.id)

    def cancel(self, record_id: str) -> None:
        handle = self._handles.pop(record_id, None)
        if handle is not None:
            handle.cancel()
        self._pending.pop(record_id, None)

    def flush(self, record_id: str | None = None) -> None:
        ids = [record_id] if record_id is not None else list(self._handles)
        for rid in ids:
            handle = self._handles.get(rid)
            if handle is not None:
                handle.cancel()
                self._write(rid)

    def close(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._pending.clear()

    def _write(self, record_id: str) -> None:
        self._handles.pop(record_id, None)
        entry = self._pending.pop(record_id, None)
        if entry is None:
            return
        record, stamp = entry
        try:
            self._cache.put(record, stamp)
        except PromptMasterError as e:
            logger.error("Draft write failed for %s: %s", record_id, e.message)
