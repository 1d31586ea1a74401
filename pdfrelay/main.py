from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from pdfrelay import __version__
from pdfrelay.config import Settings, get_settings
from pdfrelay.core import Broadcaster, JobRegistry, ProcessSupervisor, WorkerCommand

from .middleware_logging import register_request_logging
from .error_handlers import register_error_handlers
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router

logger = logging.getLogger("pdfrelay.app")

DOWNLOAD_PREFIX = "/download"


class DownloadFiles(StaticFiles):
    """Static files served as attachments."""

    async def get_response(self, path, scope):
        response = await super().get_response(path, scope)
        if response.status_code == 200:
            name = os.path.basename(path)
            response.headers["Content-Disposition"] = f'attachment; filename="{name}"'
        return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    settings.ensure_dirs()

    registry = JobRegistry()
    broadcaster = Broadcaster(heartbeat_interval=settings.heartbeat_interval)
    supervisor = ProcessSupervisor(
        broadcaster,
        WorkerCommand(settings.PYTHON_BIN, settings.PYTHON_SCRIPT),
        sibling_suffix=settings.SIBLING_SUFFIX,
        download_prefix=DOWNLOAD_PREFIX,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("pdfrelay %s listening on port %s", __version__, settings.PORT)
        yield
        await registry.shutdown()

    app = FastAPI(title="pdfrelay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.supervisor = supervisor

    register_request_logging(app)
    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(jobs_router)

    app.mount(DOWNLOAD_PREFIX, DownloadFiles(directory=str(settings.OUTPUTS_DIR)), name="download")
    # front-end goes last so it can't shadow the API
    public: Optional[Path] = settings.PUBLIC_DIR
    if public and public.is_dir():
        app.mount("/", StaticFiles(directory=str(public), html=True), name="public")

    return app


app = create_app()
