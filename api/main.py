import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from core.logging import get_api_logger_safe, configure_logging

from app.containers import AppContainer
from api.middleware.request_ids import RequestIdMiddleware
from api.middleware.error_handling import ErrorHandlingMiddleware, register_exception_handlers
from api.routers import signals, trades
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = get_api_logger_safe("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    container: AppContainer = app.state.container
    settings = container.settings()
    logger.info("Starting Trap Relay API server", environment=settings.environment.value)

    try:
        await container.db_manager().init()
        app.state.database_ready = True
    except Exception as e:
        # Trade writes go to the fallback store until the database is reachable
        app.state.database_ready = False
        logger.error("Database initialization failed, running degraded", error=str(e))

    yield

    # Shutdown
    logger.info("Shutting down Trap Relay API server")
    await container.scheduler().shutdown()
    await container.market_data().close()
    await container.broker_registry().close()
    await container.telegram_client().close()
    await container.redis_client().aclose()
    await container.db_manager().shutdown()
    logger.info("API services stopped")


def _build_uvicorn_log_config() -> dict:
    """Return a minimal log config that cooperates with our structlog handlers.

    Only levels and propagation are set; handlers stay as wired by the
    enhanced logging setup.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "loggers": {
            "uvicorn": {"level": "INFO", "propagate": False},
            "uvicorn.error": {"level": "INFO", "propagate": False},
            "uvicorn.access": {"level": "INFO", "propagate": False},
            "fastapi": {"level": "INFO", "propagate": False},
        },
    }


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Creates and configures the FastAPI application"""
    app = FastAPI(
        title="Trap Relay API",
        version="1.0.0",
        description="""
        # Trap Relay

        Receives BB TRAP alerts, selects option strikes by delta and fans the
        resulting legs out to every subscribed brokerage account.

        - `POST /signals` with the alert as `text/plain` or JSON `messageText`
        - `GET /trades/open/{symbol}` for the currently open trade
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    container = container or AppContainer()
    app.state.container = container
    settings = container.settings()

    # Configure logging for API context (idempotent)
    configure_logging(settings)

    # Collectors register on the shared registry when first built
    app.state.prom_registry = container.metrics().registry

    container.wire(modules=["api.dependencies"])

    # Order matters: first added is innermost
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    register_exception_handlers(app)

    cors_origins = settings.api.cors_origins
    if settings.environment == "production" and "*" in cors_origins:
        raise ValueError(
            "CORS wildcard (*) not allowed in production. "
            "Specify exact origins in API__CORS_ORIGINS environment variable."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(signals.router, tags=["Signals"])
    app.include_router(trades.router, tags=["Trades"])

    @app.get("/health", tags=["Health"])
    def health_check():
        return {
            "status": "healthy",
            "service": "trap-relay-api",
            "version": settings.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database_ready": getattr(app.state, "database_ready", None),
        }

    @app.get("/metrics", tags=["Monitoring"])
    def metrics():
        data = generate_latest(app.state.prom_registry)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


def run():
    """Main function to run the API server"""
    app = create_app()
    settings = app.state.container.settings()
    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level="info",
        access_log=True,
        log_config=_build_uvicorn_log_config(),
        reload=False
    )


if __name__ == "__main__":
    run()
