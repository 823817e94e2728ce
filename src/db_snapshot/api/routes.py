"""HTTP routes: backup, SQL export, restore and schedule updates."""

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from db_snapshot.backup.auth import Authorizer
from db_snapshot.backup.jobs import EngineContext, run_backup, run_export, run_restore
from db_snapshot.backup.restore import RestoreRequest
from db_snapshot.backup.schedule import update_schedule
from db_snapshot.errors import SnapshotError
from db_snapshot.outcome import Err, capture

logger = logging.getLogger(__name__)

router = APIRouter()

AuthorizationHeader = Annotated[str | None, Header()]


def get_context(request: Request) -> EngineContext:
    """Get the engine context from app state."""
    ctx: EngineContext = request.app.state.context
    return ctx


def _authorizer(ctx: EngineContext) -> Authorizer:
    if ctx.authorizer is None:
        raise SnapshotError("No authorizer configured")
    return ctx.authorizer


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


async def _json_body(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    return json.loads(body)


class ScheduleRequest(BaseModel):
    hour: int
    minute: int = 0
    email: str | None = None
    enabled: bool = True


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.post("/backup")
async def backup(
    ctx: Annotated[EngineContext, Depends(get_context)],
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Full JSON backup.  Accepts an admin token or the scheduler token."""
    cron_token = None
    if ctx.schedule is not None:
        outcome = await capture(ctx.schedule.load(), "schedule settings")
        if isinstance(outcome, Err):
            logger.warning(f"Scheduler token unavailable: {outcome.error}")
        elif outcome.value is not None:
            cron_token = outcome.value.cron_token

    actor = await _authorizer(ctx).authorize_backup(authorization, cron_token)
    result = await run_backup(ctx, actor)
    return JSONResponse(result.to_response())


@router.post("/export-sql")
async def export_sql(
    ctx: Annotated[EngineContext, Depends(get_context)],
    authorization: AuthorizationHeader = None,
) -> Response:
    """Full SQL dump as a downloadable attachment."""
    await _authorizer(ctx).require_admin(authorization)
    export = await run_export(ctx)
    return Response(
        content=export.content,
        media_type="application/sql",
        headers={"Content-Disposition": f'attachment; filename="{export.file_name}"'},
    )


@router.post("/restore")
async def restore(
    request: Request,
    ctx: Annotated[EngineContext, Depends(get_context)],
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Restore a snapshot.  Authorization is checked before any change."""
    try:
        restore_request = RestoreRequest.model_validate(await _json_body(request))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Rejected restore request: {e}")
        return _bad_request("Invalid backup data format")

    report = await run_restore(ctx, restore_request, authorization)
    return JSONResponse(report.to_response())


@router.post("/schedule")
async def schedule(
    request: Request,
    ctx: Annotated[EngineContext, Depends(get_context)],
    authorization: AuthorizationHeader = None,
) -> JSONResponse:
    """Update the daily backup time (civil time).  Admin only."""
    await _authorizer(ctx).require_admin(authorization)
    if ctx.schedule is None or ctx.scheduler is None:
        return JSONResponse({"error": "Scheduler not configured"}, status_code=503)

    try:
        body = ScheduleRequest.model_validate(await _json_body(request))
        saved = await update_schedule(
            ctx.schedule,
            ctx.scheduler,
            hour=body.hour,
            minute=body.minute,
            email=body.email,
            enabled=body.enabled,
            offset_hours=ctx.settings.civil_utc_offset_hours,
        )
    except (json.JSONDecodeError, ValidationError, ValueError) as e:
        return _bad_request(str(e))

    return JSONResponse(
        {
            "success": True,
            "settings": saved.model_dump(mode="json", exclude={"cron_token"}),
        }
    )
