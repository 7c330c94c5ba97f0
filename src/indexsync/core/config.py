"""Configuration models and loaders for :mod:`indexsync`."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping as MappingABC
from functools import lru_cache
from typing import Any, Literal, Mapping

import tomlkit
from pydantic import BaseModel, Field, field_validator, model_validator

from indexsync.resources import get_resource

ParallelValue = bool | int | dict[str, int]

ENV_PREFIX = "INDEXSYNC_"
DEFAULTS_RESOURCE_NAME = "indexsync.defaults.toml"


def validate_parallel(value: ParallelValue) -> ParallelValue:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value < 1:
            raise ValueError("parallel worker count must be >= 1")
        return value
    if isinstance(value, MappingABC):
        unknown = set(value) - {"in_threads", "in_processes"}
        if unknown:
            raise ValueError(
                f"Unsupported parallel options: {sorted(unknown)!r}"
            )
        if len(value) > 1:
            raise ValueError(
                "parallel accepts either in_threads or in_processes"
            )
        for key, workers in value.items():
            if int(workers) < 1:
                raise ValueError(f"parallel.{key} must be >= 1")
        return {key: int(workers) for key, workers in value.items()}
    raise TypeError(f"Unsupported parallel value: {value!r}")


class ImportSettings(BaseModel):
    """Defaults applied to every import call unless overridden."""

    batch_size: int = Field(
        default=1000,
        ge=1,
        description="Objects fetched from the source per round trip.",
    )
    bulk_size: int | None = Field(
        default=None,
        gt=1024,
        description=(
            "Upper bound in bytes for a single bulk request; unset sends one "
            "request per batch."
        ),
    )
    refresh: bool = Field(
        default=True,
        description="Make written documents visible before returning.",
    )
    journal: bool = Field(
        default=False,
        description="Record accepted import actions in the journal.",
    )
    update_failover: bool = Field(
        default=True,
        description=(
            "Retry partial updates that hit missing documents as full "
            "index operations."
        ),
    )
    parallel: ParallelValue = Field(
        default=False,
        description="Worker pool configuration for parallel imports.",
    )

    model_config = {"validate_assignment": True}

    @field_validator("parallel")
    @classmethod
    def _check_parallel(cls, value: ParallelValue) -> ParallelValue:
        return validate_parallel(value)


class JournalSettings(BaseModel):
    """Journal storage configuration."""

    index_name: str = Field(
        default="indexsync_journal",
        description="Index that stores journal entry documents.",
    )
    apply_retries: int = Field(
        default=10,
        ge=1,
        description="Maximum replay stages run by apply_changes_from.",
    )
    clean_batch_size: int = Field(
        default=10_000,
        ge=1,
        description="Entries deleted per bulk request while cleaning.",
    )

    model_config = {"str_strip_whitespace": True, "validate_assignment": True}

    @field_validator("index_name")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("journal index_name cannot be blank")
        return value


class SyncSettings(BaseModel):
    """Syncer configuration."""

    batch_size: int = Field(
        default=20_000,
        ge=1,
        description="Rows pulled from the source per field-resolution round.",
    )
    parallel: ParallelValue = Field(
        default=False,
        description="Worker pool configuration for drift detection.",
    )

    model_config = {"validate_assignment": True}

    @field_validator("parallel")
    @classmethod
    def _check_parallel(cls, value: ParallelValue) -> ParallelValue:
        return validate_parallel(value)


class DelayedSettings(BaseModel):
    """Time-chunk scheduling for the ``delayed`` strategy."""

    latency: int = Field(
        default=10,
        ge=1,
        description="Seconds ids are collected before a chunk becomes due.",
    )
    margin: int = Field(
        default=2,
        ge=0,
        description="Extra seconds a due chunk waits before it runs.",
    )
    ttl: int = Field(
        default=86_400,
        ge=1,
        description="Seconds an unprocessed chunk is kept.",
    )

    model_config = {"frozen": True}


class StrategySettings(BaseModel):
    """Strategy stack configuration."""

    root: str = Field(
        default="base",
        description="Policy installed as the bottom frame of every stack.",
    )
    delayed: DelayedSettings = Field(
        default_factory=DelayedSettings,
        description="Scheduling of the delayed strategy.",
    )

    model_config = {"str_strip_whitespace": True, "frozen": True}

    @field_validator("root")
    @classmethod
    def _normalize_root(cls, value: str) -> str:
        normalized = value.lower()
        if not normalized:
            raise ValueError("root strategy cannot be blank")
        return normalized


class AppConfig(BaseModel):
    """Root configuration for the synchronization engine."""

    log_level: str = Field(
        default="INFO",
        description="Default logging level.",
    )
    import_settings: ImportSettings = Field(
        default_factory=ImportSettings,
        alias="import",
        description="Import routine defaults.",
    )
    journal: JournalSettings = Field(
        default_factory=JournalSettings,
        description="Journal storage configuration.",
    )
    sync: SyncSettings = Field(
        default_factory=SyncSettings,
        description="Syncer configuration.",
    )
    strategy: StrategySettings = Field(
        default_factory=StrategySettings,
        description="Strategy stack configuration.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def _post_process(self) -> "AppConfig":
        object.__setattr__(self, "log_level", self.log_level.upper())
        return self


def read_packaged_defaults_text() -> str:
    """Return the packaged defaults TOML document."""

    return get_resource(DEFAULTS_RESOURCE_NAME).read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Parse the packaged defaults into a plain dictionary.

    Example:
        >>> load_packaged_defaults()["import"]["batch_size"]
        1000
    """

    return tomllib.loads(read_packaged_defaults_text())


def _deep_merge(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, MappingABC) and isinstance(value, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


_BOOL_WORDS: dict[str, bool] = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}

_ENV_KEYS: dict[str, tuple[tuple[str, ...], Literal["str", "int", "bool"]]] = {
    "LOG_LEVEL": (("log_level",), "str"),
    "BATCH_SIZE": (("import", "batch_size"), "int"),
    "BULK_SIZE": (("import", "bulk_size"), "int"),
    "JOURNAL": (("import", "journal"), "bool"),
    "JOURNAL_INDEX": (("journal", "index_name"), "str"),
    "ROOT_STRATEGY": (("strategy", "root"), "str"),
}


def _coerce_env(raw: str, kind: str, *, name: str) -> Any:
    if kind == "int":
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(
                f"{name} must be an integer (got {raw!r})"
            ) from exc
    if kind == "bool":
        try:
            return _BOOL_WORDS[raw.strip().lower()]
        except KeyError as exc:
            raise ValueError(
                f"{name} must be a boolean (got {raw!r})"
            ) from exc
    return raw


def env_config(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Build a configuration layer from ``INDEXSYNC_*`` variables.

    Example:
        >>> env_config({"INDEXSYNC_BATCH_SIZE": "50"})
        {'import': {'batch_size': 50}}
    """

    source = os.environ if environ is None else environ
    layer: dict[str, Any] = {}
    for suffix, (path, kind) in _ENV_KEYS.items():
        name = f"{ENV_PREFIX}{suffix}"
        raw = source.get(name)
        if raw is None or not raw.strip():
            continue
        target = layer
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = _coerce_env(raw, kind, name=name)
    return layer


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Merge configuration layers and validate the result.

    Precedence, lowest first: packaged defaults, user file, environment,
    explicit overrides.
    """

    stack = dict(defaults)
    for layer in (user_config, env, overrides):
        if layer:
            stack = _deep_merge(stack, layer)
    return AppConfig.model_validate(stack)


@lru_cache(maxsize=1)
def default_config() -> AppConfig:
    """Return the process-wide configuration built from defaults and env."""

    return load_config(defaults=load_packaged_defaults(), env=env_config())


def render_user_config(
    config: AppConfig,
    *,
    include_comments: bool = True,
) -> str:
    """Render ``config`` as a TOML document users can edit."""

    document = tomlkit.document()
    if include_comments:
        document.add(tomlkit.comment("indexsync configuration"))
        document.add(
            tomlkit.comment(
                "Precedence: overrides > INDEXSYNC_* env > file > defaults"
            )
        )
        document.add(tomlkit.nl())

    document["log_level"] = config.log_level

    import_table = tomlkit.table()
    settings = config.import_settings
    import_table["batch_size"] = settings.batch_size
    if settings.bulk_size is not None:
        import_table["bulk_size"] = settings.bulk_size
    import_table["refresh"] = settings.refresh
    import_table["journal"] = settings.journal
    import_table["update_failover"] = settings.update_failover
    import_table["parallel"] = settings.parallel
    document["import"] = import_table

    journal_table = tomlkit.table()
    journal_table["index_name"] = config.journal.index_name
    journal_table["apply_retries"] = config.journal.apply_retries
    journal_table["clean_batch_size"] = config.journal.clean_batch_size
    document["journal"] = journal_table

    sync_table = tomlkit.table()
    sync_table["batch_size"] = config.sync.batch_size
    sync_table["parallel"] = config.sync.parallel
    document["sync"] = sync_table

    strategy_table = tomlkit.table()
    strategy_table["root"] = config.strategy.root
    delayed_table = tomlkit.table()
    delayed_table["latency"] = config.strategy.delayed.latency
    delayed_table["margin"] = config.strategy.delayed.margin
    delayed_table["ttl"] = config.strategy.delayed.ttl
    strategy_table["delayed"] = delayed_table
    document["strategy"] = strategy_table

    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "DEFAULTS_RESOURCE_NAME",
    "DelayedSettings",
    "ENV_PREFIX",
    "ImportSettings",
    "JournalSettings",
    "ParallelValue",
    "StrategySettings",
    "SyncSettings",
    "default_config",
    "env_config",
    "load_config",
    "load_packaged_defaults",
    "read_packaged_defaults_text",
    "render_user_config",
    "validate_parallel",
]
