"""``{{name}}`` placeholders in prompt templates."""

import re

# Names are letters, digits and underscores; spaces inside the braces are allowed.
PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}", re.ASCII)


def extract_variables(template: str) -> list[str]:
    """Placeholder names in ``template``, each once, in first-appearance order."""
    return list(dict.fromkeys(PLACEHOLDER.findall(template)))


def fill_template(template: str, variables: dict[str, str]) -> str:
    # Values are inserted literally; unknown placeholders stay as written.
    return PLACEHOLDER.sub(
        lambda m: variables.get(m.group(1), m.group(0)), template
    )


def validate_variables(template: str, variables: dict[str, str]) -> list[str]:
    """Names the template needs that ``variables`` does not supply."""
    supplied = set(variables)
    return [name for name in extract_variables(template) if name not in supplied]


def parse_assignments(pairs: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Turn ``name=value`` strings into a variables dict. Later pairs win."""
    result: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected name=value, got {pair!r}")
        result[name.strip()] = value
    return result
