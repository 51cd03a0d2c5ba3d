"""Shared fixtures."""

import pytest

from dicesim.config import SETTINGS


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Unset the config variables and run from an empty dir so no stray .env is picked up."""
    for setting in SETTINGS:
        monkeypatch.delenv(setting.env, raising=False)
    monkeypatch.chdir(tmp_path)
