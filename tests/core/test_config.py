"""Tests for :mod:`indexsync.core.config`."""

from __future__ import annotations

import tomllib

import pytest
from pydantic import ValidationError

from indexsync.core.config import (
    AppConfig,
    env_config,
    load_config,
    load_packaged_defaults,
    render_user_config,
)
from indexsync.importing.options import ImportOptions


def test_packaged_defaults_match_model_defaults() -> None:
    config = load_config(defaults=load_packaged_defaults())

    assert config.model_dump() == AppConfig().model_dump()
    assert config.import_settings.batch_size == 1000
    assert config.journal.index_name == "indexsync_journal"
    assert config.journal.apply_retries == 10
    assert config.sync.batch_size == 20_000
    assert config.strategy.root == "base"
    assert config.strategy.delayed.latency == 10
    assert config.strategy.delayed.margin == 2


def test_layers_apply_in_precedence_order() -> None:
    config = load_config(
        defaults=load_packaged_defaults(),
        user_config={"import": {"batch_size": 10, "journal": True}},
        env={"import": {"batch_size": 20}},
        overrides={"log_level": "debug"},
    )

    assert config.import_settings.batch_size == 20
    assert config.import_settings.journal is True
    assert config.import_settings.refresh is True
    assert config.log_level == "DEBUG"


def test_env_config_reads_prefixed_variables() -> None:
    layer = env_config(
        {
            "INDEXSYNC_BULK_SIZE": "4096",
            "INDEXSYNC_JOURNAL": "yes",
            "INDEXSYNC_ROOT_STRATEGY": "Urgent",
            "INDEXSYNC_LOG_LEVEL": "  ",
            "OTHER": "1",
        }
    )

    assert layer == {
        "import": {"bulk_size": 4096, "journal": True},
        "strategy": {"root": "Urgent"},
    }
    loaded = load_config(defaults=load_packaged_defaults(), env=layer)
    assert loaded.strategy.root == "urgent"


def test_env_config_rejects_malformed_values() -> None:
    with pytest.raises(ValueError, match="INDEXSYNC_BATCH_SIZE"):
        env_config({"INDEXSYNC_BATCH_SIZE": "many"})
    with pytest.raises(ValueError, match="INDEXSYNC_JOURNAL"):
        env_config({"INDEXSYNC_JOURNAL": "perhaps"})


@pytest.mark.parametrize(
    "layer",
    [
        {"import": {"bulk_size": 1024}},
        {"import": {"batch_size": 0}},
        {"import": {"parallel": {"in_fibers": 2}}},
        {"journal": {"index_name": "   "}},
    ],
)
def test_invalid_settings_are_rejected(layer: dict) -> None:
    with pytest.raises(ValidationError):
        load_config(defaults=load_packaged_defaults(), overrides=layer)


def test_render_user_config_is_loadable() -> None:
    config = load_config(
        defaults=load_packaged_defaults(),
        overrides={"import": {"bulk_size": 2048, "parallel": 4}},
    )

    rendered = render_user_config(config)

    assert rendered.startswith("# indexsync configuration")
    reloaded = load_config(
        defaults=load_packaged_defaults(),
        user_config=tomllib.loads(rendered),
    )
    assert reloaded.model_dump() == config.model_dump()


def test_import_options_layer_over_settings() -> None:
    config = AppConfig()

    options = ImportOptions.resolve(
        config.import_settings,
        {"batch_size": 50, "timeout": "5s"},
        {"update_fields": ["name", "name", " "], "refresh": False},
    )

    assert options.batch_size == 50
    assert options.update_fields == ("name",)
    assert options.partial and options.failover_enabled
    assert options.request_options() == {"refresh": False, "timeout": "5s"}
    assert options.parallel_options() is None


def test_import_options_reject_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        ImportOptions.resolve(AppConfig().import_settings, {"bulk_sized": 10})
