"""Core configuration.

Centralizes settings (pydantic-settings) without leaking into the CLI, so
adapters and services read configuration consistently.

Precedence, highest first: explicit CLI flags (passed as arguments, never
stored here), environment variables, `./.env`, the per-user `.env`.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.models import Source

APP_NAME = "wallow"
APP_VERSION = "0.3.0"
ENV_PREFIX = "WALLOW_"


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def read_user_env_vars(env_path: Path | None = None) -> dict[str, str]:
    env_path = env_path or get_user_env_file()
    if not env_path.exists():
        return {}
    return _parse_env_lines(env_path.read_text(encoding="utf-8"))


def write_user_env_vars(values: dict[str, str | None], env_path: Path | None = None) -> Path:
    """Write/update variables in the user's global .env.

    The file is rewritten through a temporary sibling and `os.replace`, so a
    crash never leaves it half written.
    """

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing = read_user_env_vars(env_path)
    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# wallow user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")

    tmp_path = env_path.with_name(env_path.name + ".tmp")
    tmp_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    os.replace(tmp_path, env_path)
    return env_path


def _key_aliases(field_name: str, provider_var: str) -> AliasChoices:
    return AliasChoices(f"{ENV_PREFIX}{field_name.upper()}", provider_var)


class AppSettings(BaseSettings):
    """Central application settings.

    Every field can be set as `WALLOW_<FIELD>`; provider credentials also
    accept the provider's conventional variable (`WALLHAVEN_API_KEY`,
    `UNSPLASH_ACCESS_KEY`).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        # Order: project first (dev), then the user's global config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    default_source: Source = Field(
        default=Source.WALLHAVEN,
        description="Provider used when no --source is given.",
    )
    default_theme: str | None = Field(
        default=None,
        description="gowall theme applied by `run` and scheduled runs when none is given.",
    )
    wallpaper_dir: Path = Field(
        default_factory=lambda: Path.home() / "Pictures" / APP_NAME,
        description="Where downloaded originals are committed.",
    )
    converted_dirs: list[Path] = Field(
        default_factory=list,
        description="Output directories for converted wallpapers (JSON list in env).",
    )

    wallhaven_api_key: str | None = Field(
        default=None,
        validation_alias=_key_aliases("wallhaven_api_key", "WALLHAVEN_API_KEY"),
        description="Optional Wallhaven API key (NSFW access, rate relief).",
    )
    unsplash_access_key: str | None = Field(
        default=None,
        validation_alias=_key_aliases("unsplash_access_key", "UNSPLASH_ACCESS_KEY"),
        description="Mandatory Unsplash access key.",
    )

    search_query: str | None = Field(default=None, description="Default search keywords.")
    search_resolution: str | None = Field(default=None, description="Default WIDTHxHEIGHT filter.")
    search_categories: str = Field(default="111", pattern=r"^[01]{3}$")
    search_purity: str = Field(default="100", pattern=r"^[01]{3}$")
    search_sorting: str = Field(default="date_added", min_length=1)

    schedule_cron: str | None = Field(
        default=None,
        description="Last cron expression installed by `wallow schedule`.",
    )

    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout (seconds).",
    )
    user_agent: str = Field(
        default=f"{APP_NAME}/{APP_VERSION}",
        min_length=1,
        description="User-Agent sent to providers.",
    )

    fetch_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Parallel download workers.",
    )
    fetch_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per download for transient failures.",
    )
    fetch_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Base delay of the exponential download backoff.",
    )
    rate_limit_backoff_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay before the single retry after a 429/403.",
    )
    rate_limit_backoff_max_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a provider's Retry-After.",
    )

    @property
    def output_dirs(self) -> list[Path]:
        """Configured converted-output directories, defaulting to `<wallpaper_dir>/converted`."""

        dirs = self.converted_dirs or [self.wallpaper_dir / "converted"]
        return [Path(d).expanduser() for d in dirs]

    @property
    def wallpaper_path(self) -> Path:
        return Path(self.wallpaper_dir).expanduser()

    def api_key_for(self, source: Source, override: str | None = None) -> str | None:
        """Resolve a provider credential: explicit flag > env > stored config."""

        if override:
            return override
        if source is Source.UNSPLASH:
            return self.unsplash_access_key or None
        return self.wallhaven_api_key or None


# Keys accepted by `wallow config set`, mapped to their env names.
CONFIG_KEYS: dict[str, str] = {
    "query": "WALLOW_SEARCH_QUERY",
    "resolution": "WALLOW_SEARCH_RESOLUTION",
    "res": "WALLOW_SEARCH_RESOLUTION",
    "sorting": "WALLOW_SEARCH_SORTING",
    "purity": "WALLOW_SEARCH_PURITY",
    "categories": "WALLOW_SEARCH_CATEGORIES",
    "source": "WALLOW_DEFAULT_SOURCE",
    "theme": "WALLOW_DEFAULT_THEME",
    "wallpaper_dir": "WALLOW_WALLPAPER_DIR",
}

SCHEDULE_CRON_KEY = "WALLOW_SCHEDULE_CRON"
