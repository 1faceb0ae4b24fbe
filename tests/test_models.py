from dataclasses import fields

from promptmaster.models import (
    DEFAULT_MODEL,
    HistoricalRecord,
    PromptConfig,
    PromptRecord,
)


def _record(**overrides):
    values = dict(
        id="p1",
        title="Greeter",
        template="Hi {{name}}",
        tags=["a", "b"],
        created_at=1000,
        updated_at=2000,
    )
    values.update(overrides)
    return PromptRecord(**values)


class TestPromptConfig:
    def test_defaults_for_missing_keys(self):
        config = PromptConfig.from_dict({"temperature": 0.2})
        assert config.model == DEFAULT_MODEL
        assert config.temperature == 0.2
        assert config.top_p == 0.95
        assert config.top_k == 40
        assert config.max_output_tokens is None

    def test_non_dict_gives_defaults(self):
        assert PromptConfig.from_dict(None) == PromptConfig()

    def test_max_tokens_only_when_set(self):
        assert "maxOutputTokens" not in PromptConfig().to_dict()
        assert PromptConfig(max_output_tokens=256).to_dict()["maxOutputTokens"] == 256


class TestPromptRecordJson:
    def test_camel_case_keys(self):
        data = _record(system_instruction="Be nice", is_favorite=True).to_dict()
        assert data["systemInstruction"] == "Be nice"
        assert data["isFavorite"] is True
        assert data["createdAt"] == 1000
        assert data["updatedAt"] == 2000
        assert data["history"] == []

    def test_optional_fields_omitted(self):
        data = _record().to_dict()
        assert "lastUsedAt" not in data
        assert "order" not in data

    def test_round_trip(self):
        record = _record(last_used_at=3000, order=2, is_favorite=True)
        record.history = [record.snapshot()]
        assert PromptRecord.from_dict(record.to_dict()) == record

    def test_history_entries_drop_nested_history(self):
        data = _record().to_dict()
        nested = _record(title="old").to_dict()
        nested["history"] = [_record(title="older").to_dict()]
        data["history"] = [nested]

        record = PromptRecord.from_dict(data)

        assert isinstance(record.history[0], HistoricalRecord)
        assert "history" not in record.history[0].to_dict()


class TestSnapshot:
    def test_snapshot_has_no_history_field(self):
        names = {f.name for f in fields(HistoricalRecord)}
        assert "history" not in names

    def test_snapshot_is_independent_copy(self):
        record = _record()
        snap = record.snapshot()
        record.tags.append("c")
        record.config.temperature = 0.1
        assert snap.tags == ["a", "b"]
        assert snap.config.temperature == 0.7
