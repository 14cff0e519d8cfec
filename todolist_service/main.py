"""
TodoList service: a FastAPI application protected by Entra ID bearer tokens.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from todolist_service.api import get_current_user, todolist_router
from todolist_service.auth import (
    AuthorizationPolicy,
    MetadataCache,
    MetadataSource,
    RequestGate,
    TokenValidationMiddleware,
    TokenValidator,
    build_metadata_source,
)
from todolist_service.config import Settings, get_settings
from todolist_service.models import AuthenticatedUser
from todolist_service.services import TodoStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    metadata_source: Optional[MetadataSource] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        metadata_source: Signing-key source; built from settings when omitted

    Returns:
        FastAPI: The configured application
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    cache = MetadataCache.from_settings(
        metadata_source or build_metadata_source(settings), settings
    )
    gate = RequestGate(
        cache=cache,
        validator=TokenValidator.from_settings(settings),
        policy=AuthorizationPolicy.from_settings(settings),
        audiences=settings.valid_audiences,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager for startup and shutdown events.
        """
        logger.info("Starting up application...")
        logger.info(f"Tenant ID: {settings.tenant_id}")
        logger.info(f"Client ID: {settings.client_id}")
        logger.info(f"Authority: {settings.oidc_authority}")
        logger.info(f"Metadata source: {settings.metadata_source}")
        await cache.warmup()

        yield

        logger.info("Shutting down application...")
        await cache.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="To-do list Web API protected by Entra ID (Azure AD) bearer tokens",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.metadata_cache = cache
    app.state.todo_store = TodoStore()

    # Added first so CORS wraps the gate and preflight responses get CORS headers
    app.add_middleware(
        TokenValidationMiddleware,
        gate=gate,
        authority=settings.oidc_authority,
        resource_id=settings.expected_audience,
        public_paths=settings.public_paths_set,
        debug=settings.debug,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["Health"])
    async def root():
        """
        Root endpoint - public access.
        """
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "status": "operational",
        }

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint - public access.
        """
        snapshot = request.app.state.metadata_cache.snapshot
        return {
            "status": "healthy",
            "metadata": {
                "loaded": snapshot is not None,
                "generation": snapshot.generation if snapshot else None,
                "refreshing": request.app.state.metadata_cache.refreshing,
            },
        }

    @app.get("/api/user/profile", tags=["User"])
    async def get_user_profile(current_user: AuthenticatedUser = Depends(get_current_user)):
        """
        Get authenticated caller's profile information.

        Returns detailed information about the caller extracted from the
        verified token claims.
        """
        return {
            "profile": current_user.model_dump(exclude={"issued_at", "expires_at"}),
            "token_info": {
                "issued_at": current_user.issued_at.isoformat() if current_user.issued_at else None,
                "expires_at": current_user.expires_at.isoformat() if current_user.expires_at else None,
            },
        }

    app.include_router(todolist_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Global exception handler for unhandled exceptions.
        """
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "todolist_service.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )
