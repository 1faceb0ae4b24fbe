"""Example prompts written to a fresh store."""

from __future__ import annotations

from .models import PromptConfig, PromptRecord, now_ms


def seed_records(now: int | None = None) -> list[PromptRecord]:
    stamp = now if now is not None else now_ms()
    return [
        PromptRecord(
            id="1",
            title="Translation expert",
            description="Translate any text into natural, idiomatic English.",
            system_instruction=(
                "You are a professional translator fluent in many languages. "
                "Translate faithfully but adjust word order and phrasing so the "
                "result reads as if written by a native speaker."
            ),
            template="Translate the following text into English:\n\n{{text}}",
            tags=["tools", "translation"],
            config=PromptConfig(),
            created_at=stamp,
            updated_at=stamp,
            is_favorite=True,
        ),
        PromptRecord(
            id="2",
            title="Code explainer",
            description="Explain a tricky snippet; useful for learning and code review.",
            system_instruction=(
                "You are a senior software engineer and teacher. Explain the "
                "code in plain language: what it does, how control flows, "
                "possible performance problems and recommended practices."
            ),
            template="Explain this {{language}} code:\n\n```{{language}}\n{{code}}\n```",
            tags=["programming", "learning"],
            config=PromptConfig(model="claude-sonnet-4-5"),
            created_at=stamp,
            updated_at=stamp,
        ),
        PromptRecord(
            id="3",
            title="Social media copy",
            description="Punchy social post copy with emoji.",
            system_instruction=(
                "You write viral social media posts: warm, friendly, lots of "
                "emoji, short paragraphs."
            ),
            template="Write a post about {{topic}}. Key selling points: {{features}}.",
            tags=["writing", "social"],
            config=PromptConfig(temperature=0.9),
            created_at=stamp,
            updated_at=stamp,
        ),
    ]
