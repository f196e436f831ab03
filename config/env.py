"""Environment variable loading helpers.

Local configuration lives in dotenv-style files.

Load order (existing process env vars are never overridden):
- .env
- .env.dev (only when DJANGO_ENV=dev)

In production, prefer real environment variables instead of dotenv files.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def _should_load_dev_env() -> bool:
    return os.environ.get("DJANGO_ENV", "").lower() in {"dev", "development", "local"}


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean flag such as ``1``/``true``/``yes`` from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_list(name: str, default: str = "") -> list[str]:
    """Read a comma-separated list from the environment, dropping blanks."""
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_env(base_dir: Path | None = None) -> None:
    """Load .env files into process environment.

    Safe to call multiple times.

    Args:
        base_dir: Project root directory. Defaults to config/.., the same
            BASE_DIR used by config/settings.py.
    """

    if base_dir is None:
        base_dir = Path(__file__).resolve().parent.parent

    load_dotenv(base_dir / ".env", override=False)

    if _should_load_dev_env():
        load_dotenv(base_dir / ".env.dev", override=False)
