"""
Main application entry point for the LearnHub backend.

This module builds the FastAPI application: it resolves the data store
client once, wires the assessment services and registers the routers.

Usage:
    - Direct: python -m learnhub.main
    - ASGI server: uvicorn learnhub.main:app
"""

import os
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from learnhub import __version__
from learnhub.api import (
    learnhub_exception_handler,
    main_router,
    register_module,
    validation_exception_handler,
)
from learnhub.assessments.admin.router import router as admin_router
from learnhub.assessments.container import build_services
from learnhub.assessments.quick.router import router as quick_router
from learnhub.assessments.student.router import router as student_router
from learnhub.common.error_handling import LearnHubError
from learnhub.common.logger import app_logger, configure_logger
from learnhub.common.store import CredentialMode, MemoryTableClient, PostgrestClient, TableClient, resolve_credentials
from learnhub.config import Settings, settings as default_settings

# Setup module logger
logger = app_logger.getChild("main")

# Register routers
register_module("student/assessments", student_router, tag="student-assessments")
register_module("assessments", quick_router, tag="quick-assessment")
register_module("admin/assessments", admin_router, tag="admin-assessments")


def create_store_client(settings: Settings) -> TableClient:
    """
    Build the one data store client of the process.

    The credential mode is resolved here, once; a misconfiguration fails
    startup instead of individual requests.
    """
    if settings.STORE_CREDENTIAL_MODE == CredentialMode.MEMORY.value:
        logger.warning("Using the in-memory data store; data is lost on restart")
        return MemoryTableClient()

    credentials = resolve_credentials(
        settings.STORE_CREDENTIAL_MODE,
        service_key=settings.SERVICE_ROLE_KEY,
        anon_key=settings.ANON_KEY,
    )
    return PostgrestClient(
        settings.rest_url,
        credentials,
        timeout=settings.STORE_TIMEOUT_SECONDS,
        max_retries=settings.STORE_MAX_RETRIES,
    )


def create_app(settings: Optional[Settings] = None, client: Optional[TableClient] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings, defaults to the environment
        client: Data store client, built from ``settings`` when omitted

    Returns:
        Configured application
    """
    settings = settings or default_settings
    configure_logger(level=settings.LOG_LEVEL, use_json=settings.LOG_JSON, log_file=settings.LOG_FILE)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Assessment sessions and scoring for the LearnHub platform",
        version=__version__
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LearnHubError, learnhub_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    store_client = client or create_store_client(settings)
    app.state.settings = settings
    app.state.store_client = store_client
    app.state.services = build_services(store_client, settings)

    app.include_router(main_router)

    @app.on_event("startup")
    async def startup_event():
        """Log the wiring on application startup."""
        logger.info(f"Application startup complete with {len(app.routes)} routes")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Release the data store client on application shutdown."""
        try:
            await store_client.close()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.error(f"Error during application shutdown: {str(e)}")
            raise

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"Welcome to {settings.PROJECT_NAME}", "version": __version__}

    return app


app = create_app()

# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    # Get configuration from environment or use defaults
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    reload_enabled = os.environ.get("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")

    # Run the application
    uvicorn.run(
        "learnhub.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )
