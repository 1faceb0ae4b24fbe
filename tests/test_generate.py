from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from promptmaster.errors import ErrorCode, PromptMasterError
from promptmaster.generate import DEFAULT_MAX_TOKENS, generate_content
from promptmaster.models import PromptConfig


def _client(text="Hello back"):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)]
    )
    return client


class TestGenerateContent:
    def test_passes_config(self):
        client = _client()
        config = PromptConfig(model="claude-x", temperature=0.3, top_p=0.8, top_k=12)

        result = generate_content("Be brief", "Hi Sam", config, client=client)

        assert result == "Hello back"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-x"
        assert kwargs["temperature"] == 0.3
        assert kwargs["top_p"] == 0.8
        assert kwargs["top_k"] == 12
        assert kwargs["max_tokens"] == DEFAULT_MAX_TOKENS
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "Hi Sam"}]

    def test_max_output_tokens(self):
        client = _client()
        generate_content("", "x", PromptConfig(max_output_tokens=100), client=client)
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 100
        assert "system" not in kwargs

    def test_empty_response(self):
        client = _client(text="")
        assert generate_content("", "x", PromptConfig(), client=client) == (
            "No response text generated."
        )

    def test_api_error_wrapped(self):
        client = MagicMock()
        client.messages.create.side_effect = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com")
        )
        with pytest.raises(PromptMasterError) as exc_info:
            generate_content("", "x", PromptConfig(), client=client)
        assert exc_info.value.code == ErrorCode.GENERATION

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(PromptMasterError) as exc_info:
            generate_content("", "x", PromptConfig())
        assert exc_info.value.code == ErrorCode.GENERATION
