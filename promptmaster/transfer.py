"""Backup files: export the collection, import it back by merge or replace."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date

from .errors import PromptMasterError
from .models import PromptRecord
from .storage import migrate_entry

MERGE = "merge"
REPLACE = "replace"


@dataclass
class ImportResult:
    mode: str
    count: int
    cloud_synced: bool = False
    cloud_error: str | None = None


def export_records(records: list[PromptRecord]) -> str:
    return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)


def export_filename(cloud_enabled: bool, today: date | None = None) -> str:
    mode = "cloud" if cloud_enabled else "local"
    day = (today or date.today()).isoformat()
    return f"promptmaster_{mode}_backup_{day}.json"


def parse_import(text: str) -> list:
    """Parse a backup file. Anything but a JSON array is rejected."""
    try:
        data = json.loads(text)
    except ValueError as e:
        raise PromptMasterError.invalid_import(f"not valid JSON ({e})") from e
    if not isinstance(data, list):
        raise PromptMasterError.invalid_import("top level must be a JSON array")
    return data


def validate_entry(raw, now: int | None = None) -> PromptRecord | None:
    """Backfill an imported entry, or return None if it lacks an id or template."""
    if not isinstance(raw, dict):
        return None
    if not raw.get("id"):
        return None
    template = raw.get("template")
    if not isinstance(template, str) or not template:
        return None
    entry, _ = migrate_entry(raw, now)
    try:
        return PromptRecord.from_dict(entry)
    except (KeyError, TypeError, ValueError):
        return None


def validate_entries(entries: list, now: int | None = None) -> list[PromptRecord]:
    validated = (validate_entry(raw, now) for raw in entries)
    return [record for record in validated if record is not None]


def merge_import(
    current: list[PromptRecord], entries: list, now: int | None = None
) -> tuple[list[PromptRecord], int]:
    """Overlay imported records onto ``current`` by id; imported wins whole.

    Returns (merged collection sorted by updatedAt descending, accepted count).
    """
    by_id = {record.id: record for record in current}
    imported = validate_entries(entries, now)
    for record in imported:
        by_id[record.id] = record
    merged = sorted(by_id.values(), key=lambda r: r.updated_at, reverse=True)
    return merged, len(imported)


def replace_import(
    entries: list, now: int | None = None
) -> tuple[list[PromptRecord], int]:
    imported = validate_entries(entries, now)
    return imported, len(imported)
