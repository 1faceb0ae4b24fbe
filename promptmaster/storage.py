import json
import logging
import sqlite3
from pathlib import Path

from .config import DEFAULT_DB_PATH
from .errors import PromptMasterError
from .models import SCHEMA_VERSION, PromptRecord, now_ms
from .seed import seed_records

logger = logging.getLogger(__name__)

COLLECTION_KEY = "promptmaster_prompts_v1"


def migrate_entry(entry: dict, now: int | None = None) -> tuple[dict, bool]:
    """Backfill fields older stores lack. Returns (entry, changed)."""
    migrated = dict(entry)
    changed = False
    if not migrated.get("createdAt"):
        migrated["createdAt"] = migrated.get("updatedAt") or (
            now if now is not None else now_ms()
        )
        changed = True
    if not isinstance(migrated.get("history"), list):
        migrated["history"] = []
        changed = True
    if not isinstance(migrated.get("isFavorite"), bool):
        migrated["isFavorite"] = False
        changed = True
    return migrated, changed


def records_from_entries(
    entries: list, now: int | None = None
) -> tuple[list[PromptRecord], bool]:
    """Migrate and parse stored entries one by one. Returns (records, changed).

    Non-objects and entries without an id are dropped; an entry that fails to
    parse is logged and dropped. Any drop counts as a change.
    """
    records = []
    changed = False
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("id"):
            changed = True
            continue
        migrated, entry_changed = migrate_entry(entry, now)
        try:
            records.append(PromptRecord.from_dict(migrated))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Dropping unreadable prompt %r: %s", entry.get("id"), e)
            changed = True
            continue
        changed = changed or entry_changed
    return records, changed


class RecordStore:
    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self.init_db()

    def init_db(self) -> None:
        try:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS slots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS drafts (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
            """)
            row = self._conn.execute(
                "SELECT value FROM meta WHERE key = 'schema_version'"
            ).fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO meta (key, value) VALUES ('schema_version', ?)",
                    (str(SCHEMA_VERSION),),
                )
                self._conn.commit()
            else:
                self.check_schema_version(int(row["value"]))
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e

    def check_schema_version(self, version: int) -> None:
        if version != SCHEMA_VERSION:
            raise PromptMasterError.schema_version(SCHEMA_VERSION, version)

    def close(self) -> None:
        self._conn.close()

    # -- collection slot --

    def _read_slot(self, key: str) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM slots WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e
        return None if row is None else row["value"]

    def _write_slot(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO slots (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e

    def load_all(self) -> list[PromptRecord]:
        stored = self._read_slot(COLLECTION_KEY)
        if stored is None:
            seed = seed_records()
            self.save_all(seed)
            logger.info("Seeded empty store with %d example prompts", len(seed))
            return seed

        try:
            parsed = json.loads(stored)
        except ValueError as e:
            logger.error("Failed to load prompts, falling back to examples: %s", e)
            return seed_records()
        if not isinstance(parsed, list):
            logger.error(
                "Failed to load prompts, falling back to examples: "
                "expected a JSON array, got %s",
                type(parsed).__name__,
            )
            return seed_records()

        records, needs_update = records_from_entries(parsed)

        if needs_update:
            logger.info("Migrated stored prompts to current shape")
            self.save_all(records)
        return records

    def save_all(self, records: list[PromptRecord]) -> None:
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False)
        self._write_slot(COLLECTION_KEY, payload)

    # -- drafts --

    def get_draft(self, record_id: str) -> tuple[dict, int] | None:
        try:
            row = self._conn.execute(
                "SELECT data, updated_at FROM drafts WHERE id = ?", (record_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e
        if row is None:
            return None
        try:
            return json.loads(row["data"]), row["updated_at"]
        except ValueError:
            logger.warning("Dropping unreadable draft for %s", record_id)
            self.delete_draft(record_id)
            return None

    def put_draft(self, record_id: str, data: dict, updated_at: int) -> None:
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO drafts (id, data, updated_at) VALUES (?, ?, ?)",
                (record_id, json.dumps(data, ensure_ascii=False), updated_at),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e

    def delete_draft(self, record_id: str) -> None:
        try:
            self._conn.execute("DELETE FROM drafts WHERE id = ?", (record_id,))
            self._conn.commit()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e

    def list_drafts(self) -> list[str]:
        try:
            rows = self._conn.execute(
                "SELECT id FROM drafts ORDER BY updated_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e
        return [row["id"] for row in rows]

    # -- settings --

    def get_setting(self, key: str) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e
        return None if row is None else row["value"]

    def set_setting(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e

    def delete_setting(self, key: str) -> None:
        try:
            self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._conn.commit()
        except sqlite3.Error as e:
            raise PromptMasterError.storage(str(e)) from e
