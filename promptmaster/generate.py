"""Send a filled prompt to the model configured on the record."""

from __future__ import annotations

import os

import anthropic

from .config import ANTHROPIC_KEY_VAR
from .errors import PromptMasterError
from .models import PromptConfig

DEFAULT_MAX_TOKENS = 4096


def generate_content(
    system_instruction: str,
    user_prompt: str,
    config: PromptConfig,
    client: anthropic.Anthropic | None = None,
) -> str:
    if client is None:
        api_key = os.environ.get(ANTHROPIC_KEY_VAR)
        if not api_key:
            raise PromptMasterError.generation(
                f"No API key found. Set {ANTHROPIC_KEY_VAR} in the environment."
            )
        client = anthropic.Anthropic(api_key=api_key)

    kwargs: dict = {
        "model": config.model,
        "max_tokens": config.max_output_tokens or DEFAULT_MAX_TOKENS,
        "temperature": config.temperature,
        "top_p": config.top_p,
        "top_k": config.top_k,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    if system_instruction:
        kwargs["system"] = system_instruction

    try:
        response = client.messages.create(**kwargs)
    except anthropic.RateLimitError as e:
        raise PromptMasterError.generation(
            "Rate limit exceeded. Wait a minute and try again."
        ) from e
    except anthropic.APIError as e:
        raise PromptMasterError.generation(f"API error: {e}") from e

    texts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
    return "\n".join(texts) or "No response text generated."
