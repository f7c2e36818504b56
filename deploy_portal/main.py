"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deploy_portal import __version__
from deploy_portal.api.middleware import RequestContextMiddleware
from deploy_portal.api.v1.router import router as v1_router
from deploy_portal.config import settings
from deploy_portal.core.container import ServiceContainer, build_container
from deploy_portal.core.exceptions import (
    ClientNotFoundError,
    ConflictError,
    PortalError,
    RemoteApiError,
    ValidationError,
)
from deploy_portal.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

ERROR_STATUS_CODES: dict[type[PortalError], int] = {
    ClientNotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RemoteApiError: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(exc: PortalError) -> int:
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    owns_container = app.state.container is None
    if owns_container:
        app.state.container = build_container(settings)
    container: ServiceContainer = app.state.container

    recovered = await container.ledger.recover_interrupted_deployments()
    logger.info(
        "application.starting",
        version=__version__,
        environment=settings.app_env,
        recovered_deployments=recovered,
    )

    yield

    # Shutdown
    if owns_container:
        await container.aclose()
    logger.info("application.shutdown")


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    A ready-made container skips building one from settings at startup.
    """
    app = FastAPI(
        title="Deploy Portal API",
        description="Provisions and redeploys per-client storefronts on Railway",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )
    app.state.container = container

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    # Register exception handlers
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
        """Handle application-specific errors."""
        code = status_code_for(exc)
        log = logger.error if code >= 500 else logger.info
        log(
            "request.portal_error",
            path=request.url.path,
            error_code=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(
            status_code=code,
            content={
                "error": {
                    "code": type(exc).__name__.upper(),
                    "message": exc.message,
                    "details": exc.details,
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

        if settings.is_development:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": str(exc),
                        "type": type(exc).__name__,
                    }
                },
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )

    # Include routers
    app.include_router(v1_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deploy_portal.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
