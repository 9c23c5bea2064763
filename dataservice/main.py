"""
dataservice - FastAPI application factory

Builds an ASGI app exposing every service registered on a broker, with
logging, request correlation and error rendering wired in.

    broker = LocalBroker()
    broker.create_service(PostsService(adapter=SQLAlchemyAdapter(Post)))
    app = create_app(broker)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from dataservice import __version__
from dataservice.api.middleware import LoggingMiddleware, RequestIDMiddleware
from dataservice.api.router import build_router
from dataservice.core.config import Settings, get_settings
from dataservice.core.errors import DataServiceError
from dataservice.core.logging_config import get_logger, setup_logging
from dataservice.services.broker import LocalBroker

logger = get_logger(__name__)


async def data_service_error_handler(request: Request, exc: DataServiceError) -> JSONResponse:
    """Render a DataServiceError as {name, message, code, type, data}."""
    status_code = exc.code if isinstance(exc.code, int) and 400 <= exc.code < 600 else 500
    if status_code >= 500:
        logger.error(
            f"Action failed: {exc.message}",
            extra={"error": exc.name, "path": request.url.path},
        )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(exc.to_dict()))


def create_app(broker: LocalBroker, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application for a broker's services.

    Startup:
        - Set up logging
        - Start the broker (connects every service)

    Shutdown:
        - Stop the broker (disconnects every service)

    Args:
        broker: Broker with its services already registered
        settings: Overrides the process-wide settings

    Returns:
        FastAPI app with one router per service under /{service.name}
    """
    config = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(level=config.log_level, json_format=config.log_json)
        await broker.start()
        logger.info("Broker started", extra={"services": list(broker.services)})

        yield

        await broker.stop()
        logger.info("Broker stopped")

    app = FastAPI(
        title="dataservice",
        version=__version__,
        description="CRUD, population and connection management for data services",
        lifespan=lifespan,
    )
    app.state.broker = broker

    # Middleware runs in reverse order of registration
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DataServiceError, data_service_error_handler)

    for service in broker.services.values():
        app.include_router(build_router(service, broker), prefix=f"/{service.name}")

    @app.get("/health")
    async def health():
        """Liveness probe listing the hosted services."""
        return {"status": "ok", "services": sorted(broker.services)}

    return app
