"""Version chain kept on each prompt: newest snapshot first, bounded."""

from __future__ import annotations

import copy
from dataclasses import replace

from .models import HISTORY_CAP, HistoricalRecord, PromptRecord, new_id

COPY_SUFFIX = " (copy)"


def with_snapshot(
    existing: PromptRecord, incoming: PromptRecord, now: int
) -> PromptRecord:
    """Return ``incoming`` carrying ``existing`` as its newest history entry.

    Only call this when ``existing`` is the stored record with the same id.
    The history chain comes from ``existing``; whatever history ``incoming``
    carries is ignored. Entries beyond HISTORY_CAP are dropped from the tail.
    """
    history = [existing.snapshot(), *existing.history][:HISTORY_CAP]
    return replace(incoming, history=history, updated_at=now)


def version_number(history: list[HistoricalRecord], index: int) -> int:
    return len(history) - index


def duplicate_record(
    record: PromptRecord, now: int, record_id: str | None = None
) -> PromptRecord:
    """Start a new lineage from ``record``: fresh id, no history, not a favorite."""
    return replace(
        record,
        id=record_id or new_id(),
        title=f"{record.title}{COPY_SUFFIX}",
        tags=list(record.tags),
        config=copy.deepcopy(record.config),
        created_at=now,
        updated_at=now,
        history=[],
        is_favorite=False,
        last_used_at=None,
        order=None,
    )


def restore_version(record: PromptRecord, index: int) -> PromptRecord:
    """Bring the editable content of ``history[index]`` back onto ``record``.

    The result is not saved; saving it snapshots the current content first.
    """
    try:
        version = record.history[index]
    except IndexError:
        raise IndexError(
            f"{record.id} has {len(record.history)} versions, no index {index}"
        ) from None
    return replace(
        record,
        title=version.title,
        description=version.description,
        system_instruction=version.system_instruction,
        template=version.template,
        tags=list(version.tags),
        config=copy.deepcopy(version.config),
    )
