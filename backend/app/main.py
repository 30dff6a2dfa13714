"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app.api import websocket_endpoint
from app.api.routes import router
from app.config import Settings, get_settings
from app.container import Services
from app.directory_config import DirectoryConfig
from app.errors import install_exception_handlers
from app.storage import RecordStore
from core.clock import Clock, utc_now
from core.execution import ExecutionBackend

# Startup timeout in seconds
STARTUP_TIMEOUT = 60

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: RecordStore | None = None,
    backend: ExecutionBackend | None = None,
    directory: DirectoryConfig | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Build the FastAPI application.

    Everything is optional: by default settings come from the environment,
    state lives in memory (or PostgreSQL when DATABASE_URL is set) and the
    MetaApi backend is used when METAAPI_TOKEN is set.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        app_settings = settings or get_settings()
        logger.info("Starting EdgeFlow signal relay...")

        services = Services.build(app_settings, store=store, backend=backend, clock=clock)
        try:
            await asyncio.wait_for(services.start(directory), timeout=STARTUP_TIMEOUT)
        except asyncio.TimeoutError:
            await services.stop()
            raise RuntimeError(f"Startup timed out after {STARTUP_TIMEOUT}s")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            await services.stop()
            raise  # Re-raise to prevent app from starting in broken state

        app.state.services = services
        logger.info(
            f"Ready: {services.mentors.count} mentors, {services.licenses.count} licenses, "
            f"{services.students.count} students, {services.signals.count} signals; "
            f"execution backend {'ENABLED' if services.backend else 'DISABLED'}"
        )

        yield

        # Shutdown
        logger.info("Shutting down...")
        await services.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="EdgeFlow Signal Relay",
        description="Mentor trading-signal broadcasting, licensing and copy trading",
        version=VERSION,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    app.include_router(router)

    # WebSocket endpoint
    app.websocket("/ws")(websocket_endpoint)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"name": "EdgeFlow Signal Relay", "version": VERSION, "docs": "/docs"}

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        services: Services = request.app.state.services
        return {
            "success": True,
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connectedClients": services.subscribers.connection_count,
            "mentorsCount": services.mentors.count,
            "licensesCount": services.licenses.count,
            "signalsCount": services.signals.count,
            "studentsCount": services.students.count,
            "executionEnabled": services.copier.enabled,
        }

    return app


app = create_app()


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
