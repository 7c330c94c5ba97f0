"""Tests for :mod:`indexsync.resources`."""

from __future__ import annotations

import tomllib

import pytest

from indexsync.resources import get_resource


def test_get_resource_missing_file_raises() -> None:
    with pytest.raises(FileNotFoundError):
        get_resource("does-not-exist.toml")


def test_packaged_defaults_are_valid_toml() -> None:
    text = get_resource("indexsync.defaults.toml").read_text(encoding="utf-8")

    data = tomllib.loads(text)

    assert {"import", "journal", "sync", "strategy"} <= set(data)
