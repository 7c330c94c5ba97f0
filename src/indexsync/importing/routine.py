"""Per-pass import state: bulk submission, failover leftovers, journaling."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from indexsync.adapters import ActionGroup, slices
from indexsync.core.logging import Logger, get_logger
from indexsync.errors import JournalStorageError
from indexsync.importing.builder import BulkBuilder
from indexsync.importing.bulk import BulkError, BulkRequest
from indexsync.importing.options import ImportOptions
from indexsync.journal.entry import JournalEntry

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = ["DOCUMENT_MISSING", "ImportRoutine", "WorkerResult"]

DOCUMENT_MISSING = "document_missing_exception"


@dataclass(frozen=True, slots=True)
class WorkerResult:
    """What one import worker hands back to the orchestrator."""

    errors: tuple[BulkError, ...] = ()
    stats: dict[str, int] = field(default_factory=dict)
    leftovers: tuple[Any, ...] = ()


@dataclass(slots=True)
class ImportRoutine:
    """Drive bulk requests for the action groups of one import pass.

    ``process`` handles one fetched group at a time. Partial updates that fail
    because the target document does not exist are not reported; their
    objects are collected as leftovers instead and re-sent as full documents
    by ``perform_leftovers`` once the first pass is over.
    """

    index: "IndexDefinition"
    options: ImportOptions
    logger: Logger | None = None
    stats: Counter[str] = field(default_factory=Counter)
    errors: list[BulkError] = field(default_factory=list)
    leftovers: list[Any] = field(default_factory=list)
    _bulk: BulkRequest | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(
                __name__,
                component="import-routine",
                index=self.index.name,
            )

    @property
    def bulk(self) -> BulkRequest:
        if self._bulk is None:
            self._bulk = BulkRequest(
                client=self.index.client,
                index_name=self.index.name,
                bulk_size=self.options.bulk_size,
                options=self.options.request_options(),
                logger=self.logger,
            )
        return self._bulk

    def process(self, group: ActionGroup) -> list[BulkError]:
        """Submit ``group`` and return the errors that remain reportable."""

        builder = BulkBuilder(
            self.index, group, fields=self.options.update_fields
        )
        errors = self.bulk.perform(builder.operations())
        if self.options.failover_enabled and errors:
            errors = self._extract_leftovers(
                errors, builder.index_objects_by_id()
            )

        if self.options.journal:
            self._journal(group)

        for action, objects in group.items():
            self.stats[action] += len(objects)
        self.errors.extend(errors)
        return errors

    def perform_leftovers(
        self,
        leftovers: Sequence[Any] | None = None,
    ) -> list[BulkError]:
        """Re-send ``leftovers`` as full writes; defaults to this routine's."""

        pending = list(self.leftovers if leftovers is None else leftovers)
        if not pending:
            return []

        errors: list[BulkError] = []
        for batch in slices(pending, self.options.batch_size):
            if self.options.direct_import:
                groups = [ActionGroup(index=batch)]
            else:
                groups = self.index.adapter.resolve(
                    self.index.adapter.identify(batch),
                    batch_size=self.options.batch_size,
                )
            for group in groups:
                builder = BulkBuilder(self.index, group)
                errors.extend(self.bulk.perform(builder.operations()))

        self.logger.info(
            "import-failover",
            leftovers=len(pending),
            errors=len(errors),
        )
        if leftovers is None:
            self.leftovers.clear()
        self.errors.extend(errors)
        return errors

    def result(self) -> WorkerResult:
        return WorkerResult(
            errors=tuple(self.errors),
            stats=dict(self.stats),
            leftovers=tuple(self.leftovers),
        )

    def _extract_leftovers(
        self,
        errors: list[BulkError],
        objects_by_id: dict[str, Any],
    ) -> list[BulkError]:
        remaining: list[BulkError] = []
        for error in errors:
            if (
                error.action == "update"
                and error.type == DOCUMENT_MISSING
                and error.id in objects_by_id
            ):
                self.leftovers.append(objects_by_id[error.id])
            else:
                remaining.append(error)
        return remaining

    def _journal(self, group: ActionGroup) -> None:
        entries = [
            JournalEntry(
                index_name=self.index.name,
                type_name=self.index.type_name,
                action=action,
                object_ids=tuple(self.index.adapter.identify(objects)),
                created_at=self.index.journal.timestamp(),
            )
            for action, objects in group.items()
        ]
        entries = [entry for entry in entries if entry.object_ids]
        if not entries:
            return
        try:
            self.index.journal.append(entries)
        except JournalStorageError:
            self.logger.exception(
                "journal-append-failed",
                entries=len(entries),
            )
