import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from sticker_app import __version__, jobs_routes
from sticker_app.config import Settings
from sticker_app.services import Services, create_services

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the API. When `services` is given it is used as is and left open
    at shutdown; otherwise services are created from the environment at
    startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.services is None:
            owned = create_services(Settings.from_env())
            app.state.services = owned
        port = os.environ.get("PORT", "8000")
        logger.info(f"Sticker Pack API starting on port {port}")
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.services = None
            logger.info("Sticker Pack API stopped")

    app = FastAPI(
        title="Sticker Pack API",
        description="Batch sticker generation over a durable task queue",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/system/health", response_model=HealthResponse, tags=["system"])
    def health(request: Request):
        current = request.app.state.services
        settings = current.settings if current else Settings.from_env()
        return HealthResponse(
            status="ok" if current else "starting",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=__version__,
            environment=settings.environment,
            services={
                "supabase": "connected" if current else "not_connected",
                "generation": "configured" if settings.openai_api_key else "not_configured",
                "queue": settings.queue_name,
            },
        )

    app.include_router(jobs_routes.router)
    return app


app = create_app()
