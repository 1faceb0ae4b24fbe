import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from promptmaster.errors import ErrorCode, PromptMasterError
from promptmaster.history import HISTORY_CAP
from promptmaster.library import PromptLibrary
from promptmaster.models import UNTITLED, PromptRecord
from promptmaster.storage import RecordStore
from promptmaster.sync import SyncCoordinator, SyncError
from promptmaster.template import extract_variables, fill_template
from promptmaster.views import FilterType


class FakeClock:
    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 10
        return self.now


def yes(_message):
    return True


def no(_message):
    return False


def _fake_client(remote=None, upload_error=None):
    client = MagicMock()
    client.download = AsyncMock(return_value=remote)
    client.upload = AsyncMock(side_effect=upload_error)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def store(tmp_path):
    s = RecordStore(db_path=tmp_path / "test.db")
    s.save_all([])
    return s


@pytest.fixture
def library(store):
    return PromptLibrary(store, clock=FakeClock(), draft_delay=0.01)


def _cloud_library(store, client):
    return PromptLibrary(store, SyncCoordinator(client), clock=FakeClock(), draft_delay=0.01)


def _new(library, **fields):
    return library.save(replace(library.new_record(), **fields))


class TestSave:
    def test_new_record_prepended_without_history(self, library):
        first = _new(library, title="First", template="a")
        second = _new(library, title="Second", template="b")
        assert [r.id for r in library.records] == [second.id, first.id]
        assert first.history == []

    def test_blank_title_becomes_untitled(self, library):
        assert _new(library, title="   ", template="x").title == UNTITLED

    def test_tags_deduplicated(self, library):
        saved = _new(library, template="x", tags=["a", " b ", "a", ""])
        assert saved.tags == ["a", "b"]

    def test_updated_at_stamped_by_library(self, library):
        record = replace(library.new_record(), template="x", updated_at=1)
        saved = library.save(record)
        assert saved.updated_at > 1

    def test_history_grows_to_cap(self, library):
        record = _new(library, title="v1", template="x")
        for i in range(2, HISTORY_CAP + 5):
            record = library.save(replace(record, title=f"v{i}"))
        assert len(record.history) == HISTORY_CAP
        assert record.history[0].title == f"v{HISTORY_CAP + 3}"

    def test_history_count_after_n_saves(self, library):
        record = _new(library, title="v1", template="x")
        for i in range(2, 6):
            record = library.save(replace(record, title=f"v{i}"))
        assert len(record.history) == 4
        assert all(not hasattr(h, "history") for h in record.history)

    def test_persisted(self, library, store):
        saved = _new(library, template="x")
        assert [r.id for r in store.load_all()] == [saved.id]


class TestEndToEnd:
    def test_hi_name_scenario(self, library):
        record = _new(library, title="Greeting", template="Hi {{name}}")
        assert extract_variables(record.template) == ["name"]
        assert fill_template(record.template, {"name": "Sam"}) == "Hi Sam"

        updated = library.save(replace(record, title="Greeting v2"))

        assert len(updated.history) == 1
        assert updated.history[0].title == "Greeting"
        assert updated.history[0].template == "Hi {{name}}"


class TestDrafts:
    def test_open_restores_newer_draft(self, library):
        record = _new(library, title="Saved", template="x")

        async def scenario():
            library.edit(replace(record, title="Draft"))
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        opened, restored = library.open_for_edit(record.id)
        assert restored is True
        assert opened.title == "Draft"

    def test_save_clears_draft(self, library):
        record = _new(library, title="Saved", template="x")

        async def scenario():
            library.edit(replace(record, title="Draft"))
            await asyncio.sleep(0.05)
            library.save(replace(record, title="Final"))

        asyncio.run(scenario())
        assert library.drafts.get(record.id) is None
        opened, restored = library.open_for_edit(record.id)
        assert restored is False
        assert opened.title == "Final"

    def test_save_cancels_pending_draft_write(self, library):
        record = _new(library, title="Saved", template="x")

        async def scenario():
            library.edit(replace(record, title="Draft"))
            library.save(replace(record, title="Final"))
            assert library.pending_drafts == []
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert library.drafts.get(record.id) is None

    def test_draft_not_exported(self, library):
        record = _new(library, title="Saved", template="x")

        async def scenario():
            library.edit(replace(record, title="Draft"))
            library.flush_drafts()

        asyncio.run(scenario())
        assert "Draft" not in library.export()


class TestDelete:
    def test_confirmed(self, library):
        record = _new(library, template="x")
        assert library.delete(record.id, yes) is True
        assert library.records == []

    def test_declined_changes_nothing(self, library):
        record = _new(library, template="x")
        assert library.delete(record.id, no) is False
        assert [r.id for r in library.records] == [record.id]

    def test_discards_draft(self, library):
        record = _new(library, template="x")
        library.drafts.put(replace(record, title="Draft"), updated_at=10**13)
        library.delete(record.id, yes)
        assert library.drafts.get(record.id) is None

    def test_missing(self, library):
        with pytest.raises(PromptMasterError) as exc_info:
            library.delete("nope", yes)
        assert exc_info.value.code == ErrorCode.RECORD_NOT_FOUND


class TestActions:
    def test_toggle_favorite(self, library):
        record = _new(library, template="x")
        assert library.toggle_favorite(record.id).is_favorite is True
        assert library.toggle_favorite(record.id).is_favorite is False

    def test_use_fills_and_stamps(self, library):
        record = _new(library, template="Hi {{name}}")
        assert library.use(record.id, {"name": "Sam"}) == "Hi Sam"
        assert library.get(record.id).last_used_at is not None

    def test_use_missing_variables(self, library):
        record = _new(library, template="Hi {{name}}")
        with pytest.raises(PromptMasterError) as exc_info:
            library.use(record.id, {})
        assert exc_info.value.code == ErrorCode.MISSING_VARIABLES
        assert library.get(record.id).last_used_at is None

    def test_fill_does_not_stamp(self, library):
        record = _new(library, template="Hi {{name}}")
        assert library.fill(record.id, {"name": "Sam"}) == "Hi Sam"
        assert library.get(record.id).last_used_at is None
        assert library.get(record.id).history == []

    def test_duplicate(self, library):
        record = _new(library, title="Orig", template="x", is_favorite=True)
        record = library.save(replace(record, title="Orig2"))
        copy = library.duplicate(record.id)
        assert library.records[0].id == copy.id
        assert copy.history == []
        assert copy.is_favorite is False

    def test_reorder(self, library):
        a = _new(library, template="a", is_favorite=True)
        b = _new(library, template="b", is_favorite=True)
        c = _new(library, template="c")
        favorites = library.reorder([a.id, b.id])
        assert [r.id for r in favorites] == [a.id, b.id]
        assert library.get(c.id).order is None

    def test_reorder_unknown_id(self, library):
        with pytest.raises(PromptMasterError):
            library.reorder(["ghost"])

    def test_restore(self, library):
        record = _new(library, title="v1", template="one")
        library.save(replace(record, title="v2", template="two"))
        restored = library.restore(record.id, 1)
        assert restored.template == "one"
        assert [h.title for h in restored.history] == ["v2", "v1"]

    def test_restore_bad_version(self, library):
        record = _new(library, template="one")
        with pytest.raises(PromptMasterError):
            library.restore(record.id, 1)

    def test_views_and_tags(self, library):
        _new(library, template="a", tags=["x", "y"])
        _new(library, template="b", tags=["y"])
        assert library.tags() == ["y", "x"]
        assert len(library.view(FilterType.TAG, "x")) == 1


class TestImportMerge:
    def test_merge_by_id(self, library):
        kept = _new(library, title="Kept", template="k")
        replaced = _new(library, title="Mine", template="m")
        backup = json.dumps([
            {"id": replaced.id, "template": "theirs", "updatedAt": 5},
            {"id": "new", "template": "n", "updatedAt": 1},
            {"id": "bad"},
        ])

        result = asyncio.run(library.import_backup(backup, yes))

        assert result.mode == "merge"
        assert result.count == 2
        assert library.get(replaced.id).template == "theirs"
        assert library.get(kept.id).title == "Kept"
        assert library.get("new").template == "n"

    def test_declined(self, library):
        _new(library, template="x")
        before = library.records
        assert asyncio.run(library.import_backup("[]", no)) is None
        assert library.records == before

    def test_non_array_rejected_before_confirm(self, library):
        asked = []

        def confirm(message):
            asked.append(message)
            return True

        with pytest.raises(PromptMasterError) as exc_info:
            asyncio.run(library.import_backup('{"id": "a"}', confirm))
        assert exc_info.value.code == ErrorCode.INVALID_IMPORT
        assert asked == []

    def test_long_history_capped(self, library):
        entry = PromptRecord(id="big", template="t", updated_at=5).to_dict()
        entry["history"] = [
            PromptRecord(id="big", title=f"v{i}", template="t").to_dict() for i in range(50)
        ]
        asyncio.run(library.import_backup(json.dumps([entry]), yes))

        history = library.get("big").history
        assert len(history) == HISTORY_CAP
        assert history[-1].title == f"v{HISTORY_CAP - 1}"

        saved = library.save(replace(library.get("big"), title="next"))
        assert len(saved.history) == HISTORY_CAP

    def test_round_trip(self, library, tmp_path):
        _new(library, title="A", template="a", tags=["t"])
        _new(library, title="B", template="b")
        exported = library.export()
        original = library.records

        fresh_store = RecordStore(db_path=tmp_path / "fresh.db")
        fresh_store.save_all([])
        fresh = PromptLibrary(fresh_store)
        asyncio.run(fresh.import_backup(exported, yes))

        assert fresh.records == original


class TestCloud:
    def test_startup_overwrites_local(self, store):
        store.save_all([PromptRecord(id="local", template="l")])
        client = _fake_client(remote=[{"id": "remote", "template": "r", "updatedAt": 5}])
        library = _cloud_library(store, client)

        replaced = asyncio.run(library.start())

        assert replaced is True
        assert [r.id for r in library.records] == ["remote"]
        assert [r.id for r in store.load_all()] == ["remote"]

    def test_startup_keeps_local_when_remote_empty(self, store):
        store.save_all([PromptRecord(id="local", template="l")])
        library = _cloud_library(store, _fake_client(remote=None))
        assert asyncio.run(library.start()) is False
        assert [r.id for r in library.records] == ["local"]

    def test_startup_drops_malformed_remote_entries(self, store):
        remote = [
            {"id": "a", "template": "x", "tags": 5},
            {"id": "b", "template": "y", "updatedAt": 5},
            "junk",
        ]
        library = _cloud_library(store, _fake_client(remote=remote))

        assert asyncio.run(library.start()) is True
        assert [r.id for r in library.records] == ["b"]
        assert [r.id for r in store.load_all()] == ["b"]

    def test_startup_keeps_local_when_nothing_remote_is_readable(self, store):
        store.save_all([PromptRecord(id="local", template="l")])
        client = _fake_client(remote=[{"id": "a", "template": "x", "tags": 5}])
        library = _cloud_library(store, client)

        assert asyncio.run(library.start()) is False
        assert [r.id for r in library.records] == ["local"]

    def test_startup_caps_remote_history(self, store):
        entry = PromptRecord(id="a", template="t").to_dict()
        entry["history"] = [PromptRecord(id="a", template="t").to_dict()] * 30
        library = _cloud_library(store, _fake_client(remote=[entry]))
        asyncio.run(library.start())
        assert len(library.get("a").history) == HISTORY_CAP

    def test_startup_ignores_download_after_local_edit(self, store):
        async def scenario():
            release = asyncio.Event()

            async def slow_download():
                await release.wait()
                return [{"id": "remote", "template": "r"}]

            client = _fake_client()
            client.download = AsyncMock(side_effect=slow_download)
            library = _cloud_library(store, client)
            start = asyncio.create_task(library.start())
            await asyncio.sleep(0.01)
            _new(library, template="local edit")
            release.set()
            assert await start is False
            await library.sync.drain()
            return library

        library = asyncio.run(scenario())
        assert [r.template for r in library.records] == ["local edit"]

    def test_mutations_upload_full_collection(self, store):
        client = _fake_client()

        async def scenario():
            library = _cloud_library(store, client)
            a = _new(library, template="a")
            library.toggle_favorite(a.id)
            library.duplicate(a.id)
            library.delete(a.id, yes)
            await library.sync.drain()

        asyncio.run(scenario())
        uploads = [call.args[0] for call in client.upload.await_args_list]
        assert len(uploads) == 4
        assert len(uploads[-1]) == 1

    def test_upload_failure_does_not_break_save(self, store):
        client = _fake_client(upload_error=SyncError("offline"))

        async def scenario():
            library = _cloud_library(store, client)
            saved = _new(library, template="a")
            await library.sync.drain()
            return saved

        saved = asyncio.run(scenario())
        assert [r.id for r in store.load_all()] == [saved.id]

    def test_import_replaces_and_awaits_upload(self, store):
        store.save_all([PromptRecord(id="local", template="l")])
        client = _fake_client()
        backup = json.dumps([{"id": "b", "template": "x"}, {"id": "bad"}])
        messages = []

        def confirm(message):
            messages.append(message)
            return True

        async def scenario():
            library = _cloud_library(store, client)
            return library, await library.import_backup(backup, confirm)

        library, result = asyncio.run(scenario())
        assert result.mode == "replace"
        assert result.count == 1
        assert result.cloud_synced is True
        assert "REPLACE" in messages[0]
        assert [r.id for r in library.records] == ["b"]
        client.upload.assert_awaited_once()

    def test_import_upload_failure_reported_and_local_kept(self, store):
        client = _fake_client(upload_error=SyncError("offline"))
        backup = json.dumps([{"id": "b", "template": "x"}])

        async def scenario():
            library = _cloud_library(store, client)
            return await library.import_backup(backup, yes)

        result = asyncio.run(scenario())
        assert result.cloud_synced is False
        assert "offline" in result.cloud_error
        assert [r.id for r in store.load_all()] == ["b"]

    def test_configure_and_clear_reload_sync(self, store):
        async def scenario():
            library = PromptLibrary(store)
            assert library.cloud_enabled is False
            await library.configure_cloud("https://proj.supabase.co", "key", environ={})
            enabled = library.cloud_enabled
            await library.clear_cloud(environ={})
            return enabled, library.cloud_enabled

        assert asyncio.run(scenario()) == (True, False)

    def test_configure_rejects_plain_http(self, store):
        library = PromptLibrary(store)
        with pytest.raises(PromptMasterError) as exc_info:
            asyncio.run(library.configure_cloud("http://example.com", "key", environ={}))
        assert exc_info.value.code == ErrorCode.INVALID_CLOUD_URL
        assert store.get_setting("SUPABASE_URL") is None
