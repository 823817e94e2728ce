"""Engine entry points shared by the HTTP service and the CLI.

Each entry point takes an ``EngineContext`` holding the collaborators for
one configured database.  Authorization happens before these are called
(restore authorizes inside the orchestrator so the emergency path can be
checked against the request body).

Usage:
    ctx = EngineContext(adapter=adapter, registry=default_registry(), settings=settings)
    response = await run_backup(ctx, actor="system")
    export = await run_export(ctx)
    report = await run_restore(ctx, RestoreRequest(backup_data=payload), "Bearer ...")
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.backup.auth import Authorizer
from db_snapshot.backup.export import CatalogSource, SqlExport, export_sql
from db_snapshot.backup.notify import EmailSender, render_backup_report, report_subject
from db_snapshot.backup.publish import StoragePublisher
from db_snapshot.backup.restore import RestoreOrchestrator, RestoreReport, RestoreRequest
from db_snapshot.backup.schedule import BackupStatus, Scheduler, ScheduleStore
from db_snapshot.backup.snapshot import SnapshotMetadata, build_snapshot, serialize_snapshot, snapshot_timestamp
from db_snapshot.config.models import SnapshotSettings
from db_snapshot.errors import NotificationError, SnapshotError
from db_snapshot.outcome import Err, capture
from db_snapshot.registry import TableRegistry
from db_snapshot.schema.models import CatalogSnapshot

logger = logging.getLogger(__name__)

IntrospectorFactory = Callable[[], AbstractAsyncContextManager[CatalogSource]]


@dataclass
class EngineContext:
    """Collaborators for one database.

    Optional members switch features off when absent: no publisher means
    the artifact is only returned inline, no notifier means no email, and
    no introspector factory means values are decoded without column types
    (and the SQL export is unavailable).
    """

    adapter: DatabaseClient
    registry: TableRegistry
    settings: SnapshotSettings = field(default_factory=SnapshotSettings)
    publisher: StoragePublisher | None = None
    notifier: EmailSender | None = None
    schedule: ScheduleStore | None = None
    introspector_factory: IntrospectorFactory | None = None
    authorizer: Authorizer | None = None
    scheduler: Scheduler | None = None
    recipient: str | None = None
    # One restore at a time through this context
    restore_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def close(self) -> None:
        """Release the adapter pool and the email client."""
        await self.adapter.close()
        close_notifier = getattr(self.notifier, "close", None)
        if close_notifier is not None:
            await close_notifier()


class BackupResponse(BaseModel):
    """Result of one backup run, serialized camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    file_name: str
    download_url: str | None = None
    metadata: SnapshotMetadata
    record_counts: dict[str, int] = Field(default_factory=dict)
    backup_data: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        response = self.model_dump(by_alias=True, exclude={"errors", "download_url"})
        if self.download_url:
            response["downloadUrl"] = self.download_url
        if self.errors:
            response["errors"] = list(self.errors)
        return response


async def _introspect(ctx: EngineContext) -> CatalogSnapshot | None:
    """Live catalog of the registry tables, or None when unavailable."""
    if ctx.introspector_factory is None:
        return None

    async def run() -> CatalogSnapshot:
        async with ctx.introspector_factory() as introspector:
            return await introspector.introspect(ctx.registry.names())

    outcome = await capture(run(), "introspection")
    if isinstance(outcome, Err):
        logger.warning(f"Continuing without the live catalog: {outcome.error}")
        return None
    return outcome.value


async def _foreign_key_edges(ctx: EngineContext) -> list[tuple[str, str]]:
    catalog = await _introspect(ctx)
    return catalog.foreign_key_edges() if catalog is not None else []


async def _recipient(ctx: EngineContext) -> str | None:
    if ctx.schedule is not None:
        outcome = await capture(ctx.schedule.load())
        if not isinstance(outcome, Err) and outcome.value and outcome.value.notification_email:
            return outcome.value.notification_email
    return ctx.recipient or ctx.settings.default_recipient or None


async def _record(ctx: EngineContext, status: BackupStatus, file_name: str | None, error: str | None) -> None:
    if ctx.schedule is not None:
        await ctx.schedule.record_status(status, file_name=file_name, error=error)


async def run_backup(ctx: EngineContext, actor: str) -> BackupResponse:
    """Capture every registry table, publish the JSON artifact, and notify.

    Publishing and email failures are reported in ``errors`` and in the
    persisted run status; they never fail the response.
    """
    logger.info(f"Starting full backup by {actor}")
    settings = ctx.settings

    try:
        catalog = await _introspect(ctx)
        build = await build_snapshot(ctx.adapter, ctx.registry, settings.page_size, catalog)
    except Exception as e:
        await _record(ctx, BackupStatus.FAILED, None, str(e))
        raise

    envelope = build.envelope
    errors = list(build.errors)
    file_name = f"{settings.file_prefix}-{snapshot_timestamp()}.json"

    download_url = None
    if ctx.publisher is not None:
        published = await ctx.publisher.publish(file_name, serialize_snapshot(envelope), "application/json")
        download_url = published.download_url
        errors.extend(published.errors)

    status = BackupStatus.SUCCESS_WITH_ERRORS if errors else BackupStatus.SUCCESS
    await _record(ctx, status, file_name, "\n".join(errors) or None)

    if ctx.notifier is not None:
        recipient = await _recipient(ctx)
        if recipient:
            body = render_backup_report(envelope, file_name, download_url, errors, settings)
            try:
                await ctx.notifier.send(body, recipient, report_subject(settings))
            except NotificationError as e:
                logger.error(str(e))
                errors.append(str(e))
                await _record(ctx, BackupStatus.EMAIL_ERROR, None, "\n".join(errors))
        else:
            logger.warning("No notification recipient configured; email skipped")

    logger.info(
        f"Backup completed: {envelope.metadata.total_records} records "
        f"in {envelope.metadata.total_tables} tables, {len(errors)} errors"
    )
    return BackupResponse(
        file_name=file_name,
        download_url=download_url,
        metadata=envelope.metadata,
        record_counts=envelope.record_counts,
        backup_data=envelope.to_payload(),
        errors=errors,
    )


async def run_export(ctx: EngineContext) -> SqlExport:
    """Full SQL document (schema and data) for every registry table.

    Raises:
        SnapshotError: If the context has no introspector factory.
    """
    if ctx.introspector_factory is None:
        raise SnapshotError("SQL export needs a direct database connection")

    logger.info("Starting full SQL export")
    async with ctx.introspector_factory() as introspector:
        export = await export_sql(ctx.adapter, introspector, ctx.registry, ctx.settings)
    logger.info(f"SQL export completed: {export.file_name}, {len(export.errors)} errors")
    return export


async def run_restore(
    ctx: EngineContext,
    request: RestoreRequest,
    authorization: str | None = None,
) -> RestoreReport:
    """Restore *request* into the context database.

    Restores through the same context are serialized; restores from other
    processes are not.  With an introspector factory the live foreign keys
    refine the table order; without one, or when introspection fails, the
    declared order is used.

    Raises:
        AuthError: Authorization failed.
        InvalidSnapshotError: The snapshot is unusable.
        SnapshotError: The context has no authorizer.
    """
    if ctx.authorizer is None:
        raise SnapshotError("Restore needs an authorizer")

    foreign_keys = partial(_foreign_key_edges, ctx) if ctx.introspector_factory is not None else None

    if ctx.restore_lock.locked():
        logger.info("Waiting for a running restore to finish")
    async with ctx.restore_lock:
        orchestrator = RestoreOrchestrator(
            ctx.adapter,
            ctx.registry,
            ctx.authorizer,
            batch_size=ctx.settings.insert_batch_size,
            foreign_keys=foreign_keys,
        )
        return await orchestrator.run(request, authorization)
