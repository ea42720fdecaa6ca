"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contractdeploy import __version__
from contractdeploy.config import get_settings
from contractdeploy.errors import DeploymentError
from contractdeploy.records.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await close_db()


async def deployment_error_handler(request: Request, exc: DeploymentError) -> JSONResponse:
    """Answer with the status code carried by the error."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Contract Deployment API",
        description="Smart contract deployment saga over a custody approval platform",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DeploymentError, deployment_error_handler)

    # Register routes
    from contractdeploy.api.routes import deployments, health

    app.include_router(health.router, tags=["Health"])
    app.include_router(
        deployments.router, prefix="/api/contracts/deployment", tags=["Deployments"]
    )

    return app


# Default app instance
app = create_app()
