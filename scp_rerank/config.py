"""Process-wide settings, read once at startup and passed down explicitly."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path

from dotenv import dotenv_values

from scp_rerank.errors import ConfigError

DEFAULT_ENV_FILE = Path(".env")
TAGGING_PROVIDERS = ("openai", "claude")

# Settings field -> environment variable
_ENV_NAMES = {
    "supabase_url": "SUPABASE_URL",
    "supabase_anon_key": "SUPABASE_ANON_KEY",
    "supabase_service_role_key": "SUPABASE_SERVICE_ROLE_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "tagging_provider": "TAGGING_LLM_PROVIDER",
    "log_level": "LOG_LEVEL",
}


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    tagging_provider: str = "openai"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.tagging_provider not in TAGGING_PROVIDERS:
            raise ConfigError(
                f"TAGGING_LLM_PROVIDER must be one of {TAGGING_PROVIDERS}, "
                f"got {self.tagging_provider!r}"
            )

    def validate(self, *names: str) -> None:
        """Raise ConfigError listing every named setting that is empty."""
        missing = [_ENV_NAMES[n] for n in names if not getattr(self, n)]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    def require(self, name: str) -> str:
        self.validate(name)
        return getattr(self, name)

    @property
    def store_key(self) -> str:
        """Service role key when available (batch jobs bypass RLS), else anon."""
        return self.supabase_service_role_key or self.supabase_anon_key


def load_settings(
    env_file: Path | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """
    Build Settings from a .env file overlaid with the process environment.

    Real environment variables win over the file. Passing ``environ`` skips
    both the file and ``os.environ`` (used by tests).
    """
    if environ is None:
        path = env_file or DEFAULT_ENV_FILE
        file_values = {k: v for k, v in dotenv_values(path).items() if v is not None}
        environ = {**file_values, **os.environ}

    values: dict[str, str] = {}
    for f in fields(Settings):
        raw = environ.get(_ENV_NAMES[f.name])
        if raw is not None and raw.strip():
            values[f.name] = raw.strip()
    if "tagging_provider" in values:
        values["tagging_provider"] = values["tagging_provider"].lower()
    return Settings(**values)
