# packdesk/app/factory.py
from __future__ import annotations
import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from packdesk.app.settings import settings, settingsBool
from packdesk.core.errors import ManifestError, PackCommandError
from packdesk.packs.service import PackCommandService, PackServices

__all__ = ["createApp"]



def createApp(
    *,
    services: PackServices | None = None,
    extraRouters: Sequence[APIRouter] = (),
    configureLogs: bool = True,
    startWorker: bool | None = None,
) -> FastAPI:
    """
    Build the HTTP app around one PackCommandService.

    The background job worker runs for the lifetime of the app unless
    `jobs.runInline` is set (then jobs run right after they are queued)
    or `startWorker=False` is passed.
    """
    if configureLogs:
        from packdesk.core.logging import configureLogging
        configureLogging()

    logger = logging.getLogger(__name__)

    services = services if services is not None else PackServices.inMemory()
    packService = PackCommandService(services)
    runWorker = startWorker if startWorker is not None else not settingsBool("jobs.runInline", False)

    @asynccontextmanager
    async def life(app: FastAPI):
        worker = services.worker
        if runWorker and worker is not None:
            worker.start()
        try:
            yield
        finally:
            if runWorker and worker is not None:
                worker.stop()

    app = FastAPI(lifespan=life)
    app.state.packService = packService

    # ----- CORS -----
    corsOrigins = settings("http.cors.allowOrigins", [])
    if not isinstance(corsOrigins, list):
        corsOrigins = []
    if corsOrigins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=corsOrigins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # ----- Error mapping -----
    from packdesk.api.packs import errorResponse

    @app.exception_handler(PackCommandError)
    async def _packCommandError(request: Request, err: PackCommandError):
        return errorResponse(err)

    @app.exception_handler(ManifestError)
    async def _manifestError(request: Request, err: ManifestError):
        logger.warning("Manifest error for ref %s: %s", err.ref, err)
        return JSONResponse(
            {"ok": False, "error": {"code": "manifest_error", "message": str(err), "ref": err.ref}},
            status_code=502,
        )

    # ----- Routers -----
    from packdesk.api.packs import router as packsRouter
    app.include_router(packsRouter)
    for router in extraRouters:
        app.include_router(router)

    logger.info("packdesk app created (worker=%s)", "on" if runWorker else "off")
    return app
