import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from naupanel.core.config import APP_VERSION, CORS_ORIGINS, SERVERS_CONFIG_FILE, TAIL_SERVER_LOGS
from naupanel.core.errors import ConfigInvalid, PanelError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup/shutdown."""
    from naupanel.services import log_tailer, server_registry, server_sessions

    try:
        servers = server_registry.load_registry(SERVERS_CONFIG_FILE)
        print(f"Loaded {len(servers)} server(s) from {SERVERS_CONFIG_FILE}")
    except ConfigInvalid as e:
        servers = []
        print(f"Server config invalid, no servers available: {e.message}")
        logger.error("Server registry not loaded: %s", e.message)

    for server in servers:
        server_sessions.get_session(server.id)

    if TAIL_SERVER_LOGS and servers:
        count = log_tailer.start_tailers(servers)
        print(f"Log tailers started for {count} server(s)")

    yield

    await log_tailer.stop_tailers()
    print("App shutting down")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PanelError)
    async def panel_error_handler(request: Request, exc: PanelError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request."})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error."})


def create_app():
    """FastAPI application factory."""
    app = FastAPI(
        title="NauPanel",
        version=APP_VERSION,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from naupanel.routers import console, files, servers

    app.include_router(servers.router, tags=["Servers"])
    app.include_router(files.router, tags=["Files"])
    app.include_router(console.router, tags=["Console"])

    return app
