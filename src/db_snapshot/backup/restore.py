"""Restore a snapshot into a database: delete phase, then insert phase.

The orchestrator walks four phases:

    AUTHORIZING -> DELETING -> INSERTING -> REPORTING

Authorization is the only fatal step: an ``AuthError`` (or an unusable
snapshot) aborts before any row is touched.  After that every table-level
step returns ``Ok`` or ``Err`` and the run always reaches REPORTING, so
the caller gets a complete per-table report even when some tables fail.

Ordering comes from the table registry: deletes run children first and
never touch identity-owned tables; inserts run parents first.  Export-only
tables (``restorable=False``) are neither deleted nor inserted.  Ordinary
tables are inserted in batches, falling back to one row at a time when a
batch fails so the failing records can be named.  Identity-owned tables
are upserted row by row, since a row may reference an account that does
not exist yet in the identity store.

The two phases are not wrapped in one transaction.  A crash between them
leaves the destination partially restored; re-running the restore is the
recovery path.

Usage:
    orchestrator = RestoreOrchestrator(adapter, registry, authorizer)
    report = await orchestrator.run(RestoreRequest(backup_data=payload), "Bearer ...")
    print(report.to_response())
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.backup.snapshot import SnapshotEnvelope
from db_snapshot.outcome import Err, Ok, capture
from db_snapshot.registry import TableDescriptor, TableRegistry

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

# Error fragments that mean "the referenced identity does not exist"
_MISSING_IDENTITY_MARKERS = ("foreign key", "violates", "auth.users")


class RestorePhase(str, Enum):
    AUTHORIZING = "authorizing"
    DELETING = "deleting"
    INSERTING = "inserting"
    REPORTING = "reporting"


class RestoreRequest(BaseModel):
    """A restore invocation.

    ``mode="replace"`` empties every deletable table before inserting;
    ``mode="append"`` only inserts.  Any other mode fails validation.
    Accepts the camelCase wire names (``backupData``, ``emergencyRestore``,
    ``confirmText``) as well as the field names.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    backup_data: Any
    mode: Literal["replace", "append"] = "replace"
    emergency_restore: bool = False
    confirm_text: str | None = None


class RestoreAuthorizer(Protocol):
    async def authorize_restore(self, request: RestoreRequest, authorization: str | None) -> str:
        """Return the acting user, or raise ``AuthError``."""
        ...


class TableRestoreResult(BaseModel):
    """Per-table outcome.  ``len(errors)`` never exceeds the rows supplied."""

    deleted: int = 0
    inserted: int = 0
    errors: list[str] = Field(default_factory=list)


class RestoreSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_tables: int = 0
    total_records: int = 0
    total_errors: int = 0
    delete_errors: int = 0
    tables_processed: list[str] = Field(default_factory=list)


class RestoreReport(BaseModel):
    success: bool = True
    summary: RestoreSummary
    delete_errors: list[str] = Field(default_factory=list)
    details: dict[str, TableRestoreResult] = Field(default_factory=dict)
    skipped_tables: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Wire shape: camelCase summary, optional keys omitted when empty."""
        response: dict[str, Any] = {
            "success": self.success,
            "summary": self.summary.model_dump(by_alias=True),
        }
        if self.delete_errors:
            response["deleteErrors"] = list(self.delete_errors)
        response["details"] = {name: r.model_dump() for name, r in self.details.items()}
        if self.skipped_tables:
            response["skippedTables"] = list(self.skipped_tables)
        return response


def _chunks(rows: list[dict], size: int) -> list[list[dict]]:
    return [rows[i:i + size] for i in range(0, len(rows), size)]


class RestoreOrchestrator:
    """Runs one restore against *adapter*.

    *foreign_keys*, when given, is awaited after authorization for the live
    ``(child, parent)`` edges, which refine the declared table order.

    Tables are processed strictly one after another.  No lock prevents two
    orchestrators from restoring into the same database concurrently.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        registry: TableRegistry,
        authorizer: RestoreAuthorizer,
        batch_size: int = DEFAULT_BATCH_SIZE,
        foreign_keys: Callable[[], Awaitable[Iterable[tuple[str, str]]]] | None = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._authorizer = authorizer
        self._batch_size = batch_size
        self._foreign_keys = foreign_keys
        self.phase = RestorePhase.AUTHORIZING

    def _enter(self, phase: RestorePhase) -> None:
        logger.info(f"Restore phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    async def run(self, request: RestoreRequest, authorization: str | None = None) -> RestoreReport:
        """Authorize, then delete and insert every table.

        Raises:
            AuthError: Authorization failed; nothing was changed.
            InvalidSnapshotError: ``backup_data`` is unusable; nothing was changed.
        """
        self.phase = RestorePhase.AUTHORIZING
        actor = await self._authorizer.authorize_restore(request, authorization)
        envelope = SnapshotEnvelope.from_payload(request.backup_data)
        logger.info(
            f"Starting restore by {actor}: mode={request.mode}, "
            f"emergency={request.emergency_restore}, version={envelope.metadata.backup_version}"
        )

        registry = self._registry
        if self._foreign_keys is not None:
            registry = registry.with_foreign_keys(await self._foreign_keys())

        restorable = registry.restorable()
        restorable_names = {t.name for t in restorable}
        skipped = [name for name in envelope.tables if name not in restorable_names]
        for name in skipped:
            logger.warning(f"Skipping table not restored from backups: {name}")

        details: dict[str, TableRestoreResult] = {}
        delete_errors: list[str] = []

        if request.mode == "replace":
            self._enter(RestorePhase.DELETING)
            for descriptor in registry.deletable():
                outcome = await capture(self._adapter.delete_all(descriptor.name), descriptor.name)
                if isinstance(outcome, Err):
                    logger.error(f"Error deleting from {descriptor.name}: {outcome.error}")
                    delete_errors.append(outcome.error)
                    continue
                logger.info(f"Deleted from {descriptor.name}: {outcome.value} records")
                if outcome.value:
                    details.setdefault(descriptor.name, TableRestoreResult()).deleted = outcome.value

        self._enter(RestorePhase.INSERTING)
        processed: list[str] = []
        for descriptor in restorable:
            rows = envelope.tables.get(descriptor.name)
            if not rows:
                continue
            processed.append(descriptor.name)
            result = details.setdefault(descriptor.name, TableRestoreResult())
            rows = [dict(row) for row in rows]
            logger.info(f"Processing {descriptor.name}: {len(rows)} records")

            if descriptor.identity_owned:
                await self._upsert_rows(descriptor, rows, result)
            else:
                await self._insert_rows(descriptor, rows, result)

            logger.info(
                f"Completed {descriptor.name}: {result.inserted} inserted, {len(result.errors)} errors"
            )

        self._enter(RestorePhase.REPORTING)
        processed_results = [details[name] for name in processed]
        summary = RestoreSummary(
            total_tables=len(processed),
            total_records=sum(r.inserted for r in processed_results),
            total_errors=sum(len(r.errors) for r in processed_results),
            delete_errors=len(delete_errors),
            tables_processed=processed,
        )
        logger.info(
            f"Restore completed: {summary.total_records} records in {summary.total_tables} tables, "
            f"{summary.total_errors} errors, {summary.delete_errors} delete errors"
        )
        return RestoreReport(
            summary=summary,
            delete_errors=delete_errors,
            details=details,
            skipped_tables=skipped,
        )

    async def _upsert_rows(
        self, descriptor: TableDescriptor, rows: list[dict], result: TableRestoreResult
    ) -> None:
        """One upsert per row so a missing identity fails only that row."""
        for row in rows:
            outcome = await capture(self._adapter.upsert(descriptor.name, row, on_conflict="id"))
            if isinstance(outcome, Ok):
                result.inserted += 1
                continue

            message = outcome.error
            if any(marker in message for marker in _MISSING_IDENTITY_MARKERS):
                identity = row.get(descriptor.identity_column)
                result.errors.append(
                    f"User {identity}: not provisioned in the identity store - create the account first"
                )
            else:
                result.errors.append(f"Record {row.get('id')}: {message}")

    async def _insert_rows(
        self, descriptor: TableDescriptor, rows: list[dict], result: TableRestoreResult
    ) -> None:
        """Batch inserts; a failed batch is retried row by row."""
        for batch in _chunks(rows, self._batch_size):
            outcome = await capture(self._adapter.insert_many(descriptor.name, batch))
            if isinstance(outcome, Ok):
                result.inserted += len(batch)
                continue

            logger.error(f"Error inserting batch into {descriptor.name}: {outcome.error}")
            for row in batch:
                single = await capture(self._adapter.insert(descriptor.name, row))
                if isinstance(single, Ok):
                    result.inserted += 1
                else:
                    result.errors.append(f"Record {row.get('id')}: {single.error}")
