"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from db_snapshot import __version__
from db_snapshot.api.routes import router
from db_snapshot.backup.jobs import EngineContext
from db_snapshot.errors import AuthError, InvalidSnapshotError
from db_snapshot.factory import build_context

logger = logging.getLogger(__name__)

ContextFactory = Callable[[], Awaitable[EngineContext]]


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


async def invalid_snapshot_handler(request: Request, exc: InvalidSnapshotError) -> JSONResponse:
    return JSONResponse({"success": False, "error": str(exc)}, status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse({"success": False, "error": str(exc)}, status_code=500)


def create_app(context_factory: ContextFactory | None = None) -> FastAPI:
    """Create the service.

    Args:
        context_factory: Coroutine function building the ``EngineContext``
            at startup (default: the active profile from db.toml).
    """
    factory = context_factory or build_context

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        ctx = await factory()
        app.state.context = ctx
        logger.info(f"db-snapshot API ready ({len(ctx.registry)} tables)")

        yield

        await ctx.close()
        logger.info("db-snapshot API shutting down")

    app = FastAPI(
        title="db-snapshot",
        description="Full database backup, SQL export and restore",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(InvalidSnapshotError, invalid_snapshot_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    return app
