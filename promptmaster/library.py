"""
PromptLibrary: the in-memory collection and every user-facing mutation.

Each mutation builds the next full collection, writes it to the record
store and hands it to the sync coordinator for upload. Mutations are plain
methods and run to completion before returning; when cloud sync is enabled
they must be called from inside a running event loop so the upload task
can be scheduled.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date
from pathlib import Path

from .config import DRAFT_DEBOUNCE_SECONDS
from .drafts import DraftCache, DraftWriter
from .errors import PromptMasterError
from .history import duplicate_record, restore_version, with_snapshot
from .models import UNTITLED, PromptRecord, now_ms
from .storage import RecordStore, records_from_entries
from .sync import (
    SyncClient,
    SyncCoordinator,
    check_cloud_url,
    clear_cloud_config,
    resolve_cloud_config,
    save_cloud_config,
)
from .template import fill_template, validate_variables
from .transfer import (
    MERGE,
    REPLACE,
    ImportResult,
    export_filename,
    export_records,
    merge_import,
    parse_import,
    replace_import,
)
from .views import FilterType, apply_order, filter_records, tag_index

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

DELETE_MESSAGE = "Delete this prompt? This cannot be undone."
MERGE_MESSAGE = (
    "Importing merges the backup into your local prompts. Prompts with the "
    "same id are overwritten. Continue?"
)
REPLACE_MESSAGE = (
    "WARNING: importing will REPLACE every prompt in the cloud database and "
    "on this machine with the contents of the backup. The current cloud data "
    "will be lost permanently. Replace the cloud database?"
)


def clean_tags(tags: list[str]) -> list[str]:
    stripped = (t.strip() for t in tags)
    return list(dict.fromkeys(t for t in stripped if t))


class PromptLibrary:
    def __init__(
        self,
        store: RecordStore,
        sync: SyncCoordinator | None = None,
        *,
        clock: Callable[[], int] = now_ms,
        draft_delay: float = DRAFT_DEBOUNCE_SECONDS,
    ):
        self.store = store
        self.sync = sync or SyncCoordinator()
        self.drafts = DraftCache(store)
        self._writer = DraftWriter(self.drafts, delay=draft_delay, clock=clock)
        self._clock = clock
        self._records = store.load_all()
        self._generation = 0

    @classmethod
    def open(
        cls, db_path: Path | None = None, environ: dict | None = None, **kwargs
    ) -> PromptLibrary:
        store = RecordStore(db_path)
        return cls(store, _build_coordinator(store, environ), **kwargs)

    @property
    def records(self) -> list[PromptRecord]:
        return list(self._records)

    @property
    def cloud_enabled(self) -> bool:
        return self.sync.enabled

    @property
    def pending_drafts(self) -> list[str]:
        return self._writer.pending

    # -- lifecycle --

    async def start(self) -> bool:
        """Pull the cloud copy once. Returns True if it replaced local data.

        A download that finishes after a local edit was made is ignored, so
        a slow startup never overwrites work done in the meantime.
        """
        if not self.sync.enabled:
            return False
        generation = self._generation
        remote = await self.sync.reconcile()
        if remote is None:
            return False
        if self._generation != generation:
            logger.warning("Discarding cloud download: local data changed meanwhile")
            return False
        records, _ = records_from_entries(remote)
        if not records:
            logger.warning("Cloud copy has no readable prompts, keeping local data")
            return False
        self._records = records
        self.store.save_all(records)
        logger.info("Loaded %d prompts from the cloud", len(records))
        return True

    async def reload_sync(self, environ: dict | None = None) -> None:
        """Tear down the current sync client and build one from fresh config."""
        await self.sync.aclose()
        self.sync = _build_coordinator(self.store, environ)

    async def configure_cloud(
        self, url: str, key: str, environ: dict | None = None
    ) -> None:
        check_cloud_url(url)
        save_cloud_config(self.store, url, key)
        await self.reload_sync(environ)

    async def clear_cloud(self, environ: dict | None = None) -> None:
        clear_cloud_config(self.store)
        await self.reload_sync(environ)

    async def aclose(self) -> None:
        self._writer.close()
        await self.sync.aclose()
        self.store.close()

    # -- reads --

    def get(self, record_id: str) -> PromptRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise PromptMasterError.record_not_found(record_id)

    def view(
        self, filter_type: FilterType = FilterType.ALL, tag: str | None = None
    ) -> list[PromptRecord]:
        return filter_records(self._records, filter_type, tag)

    def tags(self) -> list[str]:
        return tag_index(self._records)

    # -- drafts --

    def new_record(self) -> PromptRecord:
        now = self._clock()
        return PromptRecord(created_at=now, updated_at=now)

    def open_for_edit(self, record_id: str) -> tuple[PromptRecord, bool]:
        """Returns (record to edit, whether an unsaved draft was restored)."""
        return self.drafts.resolve(self.get(record_id))

    def edit(self, record: PromptRecord) -> None:
        self._writer.schedule(record)

    def flush_drafts(self) -> None:
        self._writer.flush()

    def discard_draft(self, record_id: str) -> None:
        self._writer.cancel(record_id)
        self.drafts.discard(record_id)

    # -- mutations --

    def save(self, record: PromptRecord) -> PromptRecord:
        now = self._clock()
        record = replace(
            record,
            title=record.title if record.title.strip() else UNTITLED,
            tags=clean_tags(record.tags),
        )
        records = list(self._records)
        for index, existing in enumerate(records):
            if existing.id == record.id:
                saved = with_snapshot(existing, record, now)
                records[index] = saved
                break
        else:
            saved = replace(record, history=[], updated_at=now)
            records.insert(0, saved)

        self.discard_draft(saved.id)
        self._commit(records)
        return saved

    def delete(self, record_id: str, confirm: Confirm) -> bool:
        self.get(record_id)
        if not confirm(DELETE_MESSAGE):
            return False
        self.discard_draft(record_id)
        self._commit([r for r in self._records if r.id != record_id])
        return True

    def toggle_favorite(self, record_id: str) -> PromptRecord:
        record = self.get(record_id)
        return self.save(replace(record, is_favorite=not record.is_favorite))

    def mark_used(self, record_id: str) -> PromptRecord:
        return self.save(replace(self.get(record_id), last_used_at=self._clock()))

    def fill(self, record_id: str, variables: dict[str, str]) -> str:
        record = self.get(record_id)
        missing = validate_variables(record.template, variables)
        if missing:
            raise PromptMasterError.missing_variables(missing)
        return fill_template(record.template, variables)

    def use(self, record_id: str, variables: dict[str, str]) -> str:
        """Fill the template and stamp the prompt as used."""
        filled = self.fill(record_id, variables)
        self.mark_used(record_id)
        return filled

    def duplicate(self, record_id: str) -> PromptRecord:
        copy = duplicate_record(self.get(record_id), self._clock())
        self._commit([copy, *self._records])
        return copy

    def reorder(self, ordered_ids: list[str]) -> list[PromptRecord]:
        for record_id in ordered_ids:
            self.get(record_id)
        self._commit(apply_order(self._records, ordered_ids))
        return self.view(FilterType.FAVORITES)

    def restore(self, record_id: str, version: int) -> PromptRecord:
        """Save version ``version`` (1 = oldest) as the current content."""
        record = self.get(record_id)
        if not 1 <= version <= len(record.history):
            raise PromptMasterError.record_not_found(f"{record_id} version {version}")
        return self.save(restore_version(record, len(record.history) - version))

    # -- backup --

    def export(self) -> str:
        return export_records(self._records)

    def export_filename(self, today: date | None = None) -> str:
        return export_filename(self.cloud_enabled, today)

    async def import_backup(self, text: str, confirm: Confirm) -> ImportResult | None:
        """Restore a backup. Returns None when the user declines.

        Without cloud sync the backup is merged by id. With cloud sync it
        replaces everything, and the upload is awaited so a failure can be
        reported; the local copy is written either way.
        """
        entries = parse_import(text)
        now = self._clock()

        if not self.sync.enabled:
            if not confirm(MERGE_MESSAGE):
                return None
            records, count = merge_import(self._records, entries, now)
            self._commit(records)
            return ImportResult(mode=MERGE, count=count)

        if not confirm(REPLACE_MESSAGE):
            return None
        records, count = replace_import(entries, now)
        result = ImportResult(mode=REPLACE, count=count)
        try:
            await self.sync.push_now(records)
            result.cloud_synced = True
        except PromptMasterError as e:
            logger.error("Cloud import failed, restored locally only: %s", e.message)
            result.cloud_error = e.message
        self._apply(records)
        return result

    def _apply(self, records: list[PromptRecord]) -> None:
        self._records = records
        self._generation += 1
        self.store.save_all(records)

    def _commit(self, records: list[PromptRecord]) -> None:
        self._apply(records)
        self.sync.push(records)


def _build_coordinator(store: RecordStore, environ: dict | None) -> SyncCoordinator:
    config = resolve_cloud_config(store, environ)
    if config is None:
        return SyncCoordinator()
    try:
        return SyncCoordinator(SyncClient(config))
    except PromptMasterError as e:
        logger.error("Cloud sync disabled: %s", e.message)
        return SyncCoordinator()
