"""Derived views over the collection: tag index, filters, favorites order."""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from enum import Enum

from .models import PromptRecord


class FilterType(Enum):
    ALL = "all"
    FAVORITES = "favorites"
    RECENT = "recent"
    TAG = "tag"


def tag_index(records: list[PromptRecord]) -> list[str]:
    """Tags by how many records use them, most used first.

    Ties keep the order in which tags first appear in the collection.
    """
    counts: Counter[str] = Counter()
    for record in records:
        counts.update(dict.fromkeys(record.tags, 1))
    return [tag for tag, _ in sorted(counts.items(), key=lambda item: -item[1])]


def _by_updated(records: list[PromptRecord]) -> list[PromptRecord]:
    return sorted(records, key=lambda r: r.updated_at, reverse=True)


def filter_records(
    records: list[PromptRecord],
    filter_type: FilterType = FilterType.ALL,
    tag: str | None = None,
) -> list[PromptRecord]:
    if filter_type is FilterType.FAVORITES:
        favorites = [r for r in records if r.is_favorite]
        return sorted(
            favorites,
            key=lambda r: (r.order is None, r.order or 0, -r.updated_at),
        )
    if filter_type is FilterType.RECENT:
        # never-used prompts go last, in collection order
        return sorted(records, key=lambda r: -(r.last_used_at or 0))
    if filter_type is FilterType.TAG and tag:
        return _by_updated([r for r in records if tag in r.tags])
    return _by_updated(records)


def apply_order(
    records: list[PromptRecord], reordered_ids: list[str]
) -> list[PromptRecord]:
    """Give the reordered subset ranks 0..n-1; everything else is untouched."""
    ranks = {record_id: index for index, record_id in enumerate(reordered_ids)}
    return [
        replace(r, order=ranks[r.id]) if r.id in ranks else r
        for r in records
    ]
