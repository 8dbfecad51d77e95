"""FastAPI application serving the local gate API.

Binds to 127.0.0.1 only (never 0.0.0.0).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from depthgate import __version__
from depthgate.config import Settings, load_settings
from depthgate.engine.routes import router
from depthgate.engine.state import EngineState
from depthgate.gate.network import NetworkMonitor
from depthgate.gate.notifications import CallbackPermissionAdapter
from depthgate.gate.runtime import GateRuntime
from depthgate.logs import install_masking

logger = logging.getLogger(__name__)

DEFAULT_PORT = 47300

RuntimeFactory = Callable[[Settings], GateRuntime]


def default_runtime(settings: Settings) -> GateRuntime:
    """Runtime driven by the API: permission answers and network via HTTP probe."""
    monitor = None
    if settings.network_probe_url:
        monitor = NetworkMonitor(
            settings.network_probe_url,
            interval=settings.network_probe_interval_seconds,
        )
    return GateRuntime(
        settings,
        permissions=CallbackPermissionAdapter(),
        network_monitor=monitor,
    )


def create_gate_app(
    settings: Settings | None = None,
    runtime_factory: RuntimeFactory | None = None,
) -> FastAPI:
    """Create the gate FastAPI application.

    Args:
        settings: Gate settings (default: load_settings())
        runtime_factory: Builds the GateRuntime on startup (default: default_runtime)

    Returns:
        Configured FastAPI application
    """
    factory = runtime_factory or default_runtime

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        resolved = settings or load_settings()
        install_masking(resolved.secrets)

        runtime = factory(resolved)
        state = EngineState.get_instance()
        state.initialize(resolved, runtime)
        runtime.start()
        logger.info(f"Gate API started (db={resolved.db_path})")

        yield

        await runtime.close()
        state.reset()
        logger.info("Gate API stopped")

    app = FastAPI(
        title="DepthGate",
        description="Local API for the launch gate",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "DepthGate",
            "version": __version__,
            "api": "/v1/gate",
            "docs": "/docs",
        }

    return app


def run_gate_server(
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
    settings: Settings | None = None,
    log_level: str = "info",
) -> None:
    """Run the gate API server.

    Always binds to 127.0.0.1.

    Raises:
        ValueError: If host is not 127.0.0.1
    """
    import uvicorn

    if host != "127.0.0.1":
        logger.error(f"Refusing to bind to {host}")
        raise ValueError("Gate API must bind to 127.0.0.1 only")

    uvicorn.run(
        create_gate_app(settings=settings),
        host=host,
        port=port,
        log_level=log_level,
    )
