"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leaddialer.api.v1.routes import api_router
from leaddialer.core.config import Settings, get_settings
from leaddialer.domain.interfaces.telephony_gateway import TelephonyGateway
from leaddialer.infrastructure.events.publisher import CallEventPublisher
from leaddialer.infrastructure.storage.agent_directory import AgentDirectory
from leaddialer.infrastructure.storage.call_attempt_store import CallAttemptStore
from leaddialer.infrastructure.storage.database import Database
from leaddialer.infrastructure.storage.lead_store import LeadStore
from leaddialer.infrastructure.telephony.factory import TelephonyFactory
from leaddialer.workers.dialer_worker import Dispatcher

logger = logging.getLogger(__name__)


def build_dispatcher(
    settings: Settings,
    database: Database,
    gateway: Optional[TelephonyGateway] = None,
    publisher: Optional[CallEventPublisher] = None,
) -> Dispatcher:
    """Wire stores, gateway and publisher into a dispatcher."""
    if gateway is None:
        gateway = TelephonyFactory.create(settings.telephony_provider, settings)
    if publisher is None:
        publisher = CallEventPublisher(settings.redis_url, settings.events_channel)

    return Dispatcher(
        lead_store=LeadStore(database),
        attempt_store=CallAttemptStore(database),
        agent_directory=AgentDirectory(database),
        gateway=gateway,
        settings=settings,
        publisher=publisher,
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway: Optional[TelephonyGateway] = None,
    publisher: Optional[CallEventPublisher] = None,
    start_dispatcher: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan - startup and shutdown events.

        Startup:
        - Creates tables if missing
        - Runs stuck-lead recovery once and starts the dispatcher

        Shutdown:
        - Stops the dispatcher and closes the event channel
        """
        logger.info("Starting Lead Dialer...")

        db = database or Database(settings.database_url)
        db.create_tables()

        dispatcher = build_dispatcher(settings, db, gateway=gateway, publisher=publisher)
        app.state.database = db
        app.state.dispatcher = dispatcher

        if start_dispatcher:
            await dispatcher.start()
        else:
            await dispatcher.gateway.initialize()

        logger.info("Lead Dialer started successfully")

        yield  # Application is running

        logger.info("Shutting down Lead Dialer...")
        try:
            await dispatcher.stop()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        if database is None:
            db.dispose()
        logger.info("Lead Dialer shutdown complete")

    app = FastAPI(
        title="Lead Dialer",
        description="Outbound lead dialer with agent transfer",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"message": "Lead Dialer API", "status": "running"}

    @app.get("/health")
    async def health_check():
        """Health check with dispatcher state."""
        health = {"status": "healthy"}
        dispatcher = getattr(app.state, "dispatcher", None)
        if dispatcher is not None:
            health["dispatcher"] = dispatcher.get_status()
        return health

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
