from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .api import health
from .config import Settings, settings
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .services.supervisor import ConnectionSupervisor
from .services.transaction_service import TransactionService


def create_app(
    app_settings: Optional[Settings] = None,
    service: Optional[TransactionService] = None,
) -> FastAPI:
    """Build the health API around one TransactionService created at startup."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        transaction_service = service or TransactionService(app_settings)
        await transaction_service.initialize()
        supervisor = ConnectionSupervisor(transaction_service)
        await supervisor.start()

        app.state.transaction_service = transaction_service
        app.state.supervisor = supervisor
        try:
            yield
        finally:
            await supervisor.stop()
            await transaction_service.shutdown()

    app = FastAPI(
        title="Marketplace Chain Service",
        description="Connection, retries and event subscriptions for the marketplace contract",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(health.router, tags=["Health"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Marketplace Chain Service",
            "version": __version__,
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    setup_logging()
    uvicorn.run(
        "marketplace_chain.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
