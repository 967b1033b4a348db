from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import httpx
import pytest

from core import config as config_module
from core.config import AppSettings

_CREDENTIAL_VARS = (
    "WALLHAVEN_API_KEY",
    "UNSPLASH_ACCESS_KEY",
    "WALLOW_WALLHAVEN_API_KEY",
    "WALLOW_UNSPLASH_ACCESS_KEY",
    "WALLOW_DEFAULT_THEME",
    "WALLOW_SCHEDULE_CRON",
)


@pytest.fixture(autouse=True)
def isolated_user_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test away from the real user config and credentials."""

    for name in _CREDENTIAL_VARS:
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / "config" / ".env"
    monkeypatch.setattr(config_module, "get_user_env_file", lambda: env_file)
    return env_file


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        wallpaper_dir=tmp_path / "walls",
        converted_dirs=[tmp_path / "converted"],
        fetch_backoff_seconds=0,
        rate_limit_backoff_seconds=0,
    )


@pytest.fixture
def wallhaven_page() -> Callable[..., dict]:
    def build(ids: list[str], *, page: int = 1, last_page: int = 1, seed: str | None = None) -> dict:
        return {
            "data": [
                {
                    "id": wid,
                    "path": f"https://w.wallhaven.cc/full/{wid[:2]}/wallhaven-{wid}.jpg",
                    "resolution": "1920x1080",
                    "thumbs": {"small": f"https://th.wallhaven.cc/small/{wid[:2]}/{wid}.jpg"},
                }
                for wid in ids
            ],
            "meta": {"current_page": page, "last_page": last_page, "seed": seed},
        }

    return build


def json_response(payload: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode(),
        headers={"content-type": "application/json"},
    )


@pytest.fixture
def make_json_response() -> Callable[..., httpx.Response]:
    return json_response
