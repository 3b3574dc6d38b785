"""
Sales Route Planner - Main API Entry Point
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from routeplanner.api.v1.endpoints import routes
from routeplanner.config.logging import get_logger, setup_logging
from routeplanner.config.settings import Settings, get_settings
from routeplanner.core.database import SessionLocal, init_db
from routeplanner.core.exceptions import custom_exception_handler
from routeplanner.core.middleware import LoggingMiddleware, RequestIDMiddleware
from routeplanner.repositories.route_api import RouteApiClient
from routeplanner.services.day_route_service import RoutePlannerRegistry
from routeplanner.utils.date_utils import BusinessCalendar

logger = get_logger(__name__)


def build_registry(settings: Settings) -> RoutePlannerRegistry:
    return RoutePlannerRegistry(
        api=RouteApiClient.from_settings(settings),
        calendar=BusinessCalendar.from_settings(settings),
        session_factory=SessionLocal,
        settings=settings,
    )


def create_app(settings: Optional[Settings] = None,
               registry: Optional[RoutePlannerRegistry] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        # Startup
        setup_logging(settings)
        logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}...")

        if getattr(app.state, "registry", None) is None:
            init_db()
            app.state.registry = build_registry(settings)

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.APP_NAME}...")
        await app.state.registry.aclose()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Daily visit scheduling, route ordering and visit tracking for field sales",
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(HTTPException, custom_exception_handler)

    app.include_router(
        routes.router,
        prefix="/api/v1/routes",
        tags=["Routes"]
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.VERSION
        }

    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        "routeplanner.main:app",
        host=_settings.API_HOST,
        port=_settings.API_PORT,
        reload=_settings.DEBUG,
    )
