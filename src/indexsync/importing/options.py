"""Per-call import options resolved against configured defaults."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

from indexsync.core.config import (
    ImportSettings,
    ParallelValue,
    validate_parallel,
)
from indexsync.parallel import ParallelOptions, resolve_parallel

__all__ = ["BULK_PASSTHROUGH", "ImportOptions"]

# Options forwarded to the bulk client untouched.
BULK_PASSTHROUGH = frozenset(
    {"timeout", "pipeline", "routing", "wait_for_active_shards"}
)


class ImportOptions(BaseModel):
    """Validated options for one import call."""

    batch_size: int = Field(default=1000, ge=1)
    bulk_size: int | None = Field(default=None, gt=1024)
    refresh: bool = True
    journal: bool = False
    update_fields: tuple[str, ...] = ()
    update_failover: bool = True
    direct_import: bool = False
    parallel: ParallelValue = False
    bulk_options: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("update_fields", mode="before")
    @classmethod
    def _normalize_fields(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        names = (str(name).strip() for name in value)
        return tuple(dict.fromkeys(name for name in names if name))

    @field_validator("parallel")
    @classmethod
    def _check_parallel(cls, value: ParallelValue) -> ParallelValue:
        return validate_parallel(value)

    @classmethod
    def resolve(
        cls,
        settings: ImportSettings,
        *layers: Mapping[str, Any] | None,
    ) -> "ImportOptions":
        """Overlay ``layers`` (index defaults, call options) on ``settings``.

        Unknown keys listed in :data:`BULK_PASSTHROUGH` are collected into
        ``bulk_options``; any other unknown key is rejected.
        """

        data: dict[str, Any] = settings.model_dump()
        bulk_options: dict[str, Any] = {}
        for layer in layers:
            if not layer:
                continue
            for key, value in layer.items():
                if key in BULK_PASSTHROUGH:
                    bulk_options[key] = value
                elif key == "bulk_options":
                    bulk_options.update(value or {})
                else:
                    data[key] = value
        data["bulk_options"] = bulk_options
        return cls.model_validate(data)

    @property
    def partial(self) -> bool:
        return bool(self.update_fields)

    @property
    def failover_enabled(self) -> bool:
        return self.partial and self.update_failover

    def parallel_options(self) -> ParallelOptions | None:
        return resolve_parallel(self.parallel)

    def request_options(self) -> dict[str, Any]:
        """Options passed through to every bulk call."""

        return {"refresh": self.refresh, **self.bulk_options}
