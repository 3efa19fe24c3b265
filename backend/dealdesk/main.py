"""
FastAPI application entry point.

WHAT: Deal store service setup and wiring
WHY: Both actors' negotiation clients talk to this one authoritative store
HOW: Create FastAPI app, register middleware, routers, handlers
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import init_db, close_db
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Tables must exist before the first request; connections close cleanly
    HOW: Async context manager for FastAPI lifespan
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db()
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    close_db()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Build the deal store app (tests build their own and override the store dependency)."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dealdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
