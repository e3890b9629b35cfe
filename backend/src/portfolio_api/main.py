# main.py
# Entry point for the portfolio backend service.
# - Builds the FastAPI app and the service container
# - Registers API routes (projects, visitors, compliance, devpanel, realtime)
# - Provides root and health-check endpoints
# - Run with: uvicorn portfolio_api.main:create_app --factory --reload

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import __version__
from .api.compliance_routes import router as compliance_router
from .api.devpanel_routes import router as devpanel_router
from .api.middleware import security_headers_middleware, tracking_middleware
from .api.project_routes import router as project_router
from .api.realtime_routes import router as realtime_router
from .api.visitor_routes import router as visitor_router
from .config import Settings, get_settings
from .container import build_container
from .db import Database, get_db
from .logging_config import get_log_buffer, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = app.state.container
    if container.settings.start_background_services:
        container.manager.start_all()
    logger.info("Portfolio backend started")
    try:
        yield
    finally:
        container.shutdown()
        logger.info("Portfolio backend stopped")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    geo_resolver=None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    if not settings.jwt_configured:
        logger.warning("JWT_SECRET is not set; authenticated endpoints will answer 500 until it is")
    container = build_container(
        settings,
        database=database,
        log_buffer=get_log_buffer(),
        geo_resolver=geo_resolver,
    )

    app = FastAPI(
        title="Portfolio Backend API",
        description="Portfolio projects, visitor analytics and privacy compliance",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.database = container.database

    # Registered first so it runs innermost; CORS stays outermost.
    app.middleware("http")(tracking_middleware)
    app.middleware("http")(security_headers_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"code": "database_error", "message": str(exc)}},
        )

    @app.get("/")
    def root():
        return {"status": "healthy", "message": "Backend API is running"}

    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Health check database ping failed")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "degraded", "database": "unavailable"},
            )
        return {"status": "ok", "database": "ok", "version": __version__}

    # Register API routes
    app.include_router(project_router)
    app.include_router(visitor_router)
    app.include_router(compliance_router)
    app.include_router(devpanel_router)
    app.include_router(realtime_router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("portfolio_api.main:create_app", factory=True, host="0.0.0.0", port=8000)
