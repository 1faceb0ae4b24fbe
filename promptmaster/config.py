"""Paths and environment settings."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

CONFIG_DIR = Path.home() / ".config" / "promptmaster"
DEFAULT_DB_PATH = CONFIG_DIR / "promptmaster.db"
LOGS_DIR = CONFIG_DIR / "logs"

DB_ENV_VAR = "PROMPTMASTER_DB"
CLOUD_URL_KEY = "SUPABASE_URL"
CLOUD_KEY_KEY = "SUPABASE_ANON_KEY"
ANTHROPIC_KEY_VAR = "ANTHROPIC_API_KEY"

DRAFT_DEBOUNCE_SECONDS = 1.0


def db_path_from_env(environ: dict | None = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get(DB_ENV_VAR)
    return Path(override).expanduser() if override else DEFAULT_DB_PATH
