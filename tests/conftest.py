"""Shared fixtures for the buddian test suite."""

import os
import textwrap
from pathlib import Path

import pytest


class FakeCarrier:
    """Command carrier that records replies instead of sending them."""

    def __init__(self, user_id: str = "user-1", chat_id: str = "chat-1"):
        self.user_id = user_id
        self.chat_id = chat_id
        self.message_id = "msg-1"
        self.language = "en"
        self.replies: list[str] = []

    async def reply(self, text: str, **kwargs) -> None:
        self.replies.append(text)


@pytest.fixture(autouse=True)
def _clean_buddian_env(monkeypatch):
    """Keep developer environment overrides out of config under test."""
    for key in list(os.environ):
        if key.startswith("BUDDIAN_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def carrier():
    return FakeCarrier()


@pytest.fixture
def carrier_factory():
    return FakeCarrier


@pytest.fixture
def write_plugin():
    """Write a plugin directory: ``write_plugin(root, "name", main_source, manifest=None)``."""

    def _write(root: Path, name: str, source: str, manifest: str | None = None) -> Path:
        plugin_dir = root / name
        plugin_dir.mkdir(parents=True, exist_ok=True)
        (plugin_dir / "main.py").write_text(textwrap.dedent(source), encoding="utf-8")
        if manifest is not None:
            (plugin_dir / "plugin.json").write_text(textwrap.dedent(manifest), encoding="utf-8")
        return plugin_dir

    return _write
