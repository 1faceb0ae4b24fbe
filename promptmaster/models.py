from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field, fields
from uuid import uuid4

SCHEMA_VERSION = 1

DEFAULT_MODEL = "claude-haiku-4-5"
UNTITLED = "Untitled prompt"
HISTORY_CAP = 20


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid4())


@dataclass
class PromptConfig:
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int | None = None

    def to_dict(self) -> dict:
        data = {
            "model": self.model,
            "temperature": self.temperature,
            "topP": self.top_p,
            "topK": self.top_k,
        }
        if self.max_output_tokens is not None:
            data["maxOutputTokens"] = self.max_output_tokens
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> PromptConfig:
        data = data if isinstance(data, dict) else {}
        defaults = cls()
        return cls(
            model=data.get("model") or defaults.model,
            temperature=data.get("temperature", defaults.temperature),
            top_p=data.get("topP", defaults.top_p),
            top_k=data.get("topK", defaults.top_k),
            max_output_tokens=data.get("maxOutputTokens"),
        )


@dataclass
class _RecordFields:
    """Fields shared by live records and their history snapshots."""

    id: str = field(default_factory=new_id)
    title: str = ""
    description: str = ""
    system_instruction: str = ""
    template: str = ""
    tags: list[str] = field(default_factory=list)
    config: PromptConfig = field(default_factory=PromptConfig)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    last_used_at: int | None = None
    is_favorite: bool = False
    order: int | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "systemInstruction": self.system_instruction,
            "template": self.template,
            "tags": list(self.tags),
            "config": self.config.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "isFavorite": self.is_favorite,
        }
        if self.last_used_at is not None:
            data["lastUsedAt"] = self.last_used_at
        if self.order is not None:
            data["order"] = self.order
        return data

    @staticmethod
    def _field_values(data: dict) -> dict:
        updated_at = data.get("updatedAt") or now_ms()
        return {
            "id": str(data["id"]),
            "title": data.get("title") or "",
            "description": data.get("description") or "",
            "system_instruction": data.get("systemInstruction") or "",
            "template": data.get("template") or "",
            "tags": [str(t) for t in data.get("tags") or []],
            "config": PromptConfig.from_dict(data.get("config")),
            "created_at": data.get("createdAt") or updated_at,
            "updated_at": updated_at,
            "last_used_at": data.get("lastUsedAt"),
            "is_favorite": data.get("isFavorite") is True,
            "order": data.get("order"),
        }


@dataclass
class HistoricalRecord(_RecordFields):
    """A past version of a prompt. Has no history of its own."""

    @classmethod
    def from_dict(cls, data: dict) -> HistoricalRecord:
        return cls(**cls._field_values(data))


@dataclass
class PromptRecord(_RecordFields):
    history: list[HistoricalRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["history"] = [h.to_dict() for h in self.history]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> PromptRecord:
        history = [
            HistoricalRecord.from_dict(h)
            for h in data.get("history") or []
            if isinstance(h, dict) and h.get("id")
        ][:HISTORY_CAP]
        return cls(history=history, **cls._field_values(data))

    def snapshot(self) -> HistoricalRecord:
        """Copy of this record as a history entry, without the history chain."""
        values = {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(HistoricalRecord)
        }
        return HistoricalRecord(**values)
