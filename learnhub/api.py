"""
Central API router and utilities for the LearnHub backend.

This module provides:
- A central router that the assessment routers are registered with
- The standard success envelope
- Exception handlers for domain errors and request validation errors
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from learnhub.common.error_handling import LearnHubError, error_response, log_error

# Configure logging
logger = logging.getLogger(__name__)

# Create main API router
main_router = APIRouter()

# Version prefix for all API routes
API_VERSION = "v1"

# Routers registered so far, by path
registered_modules: Dict[str, APIRouter] = {}


def register_module(path: str, router: APIRouter, tag: Optional[str] = None) -> None:
    """
    Register a router with the main API router under ``/v1/<path>``.

    Args:
        path: Path below the version prefix, e.g. ``student/assessments``
        router: FastAPI router to mount
        tag: OpenAPI tag, defaults to the path
    """
    if path in registered_modules:
        logger.warning(f"Module '{path}' already registered, overwriting")

    main_router.include_router(router, prefix=f"/{API_VERSION}/{path}", tags=[tag or path])
    registered_modules[path] = router
    logger.info(f"Registered module: {path} with {len(router.routes)} routes")


async def learnhub_exception_handler(request: Request, exc: LearnHubError) -> JSONResponse:
    """
    Render a domain error with its HTTP status.

    Server-side failures hide their details from the client.
    """
    log_error(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=exc.http_status,
        content=error_response(exc, include_details=exc.http_status < 500)
    )


# Common validation error handler
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle validation errors and return a standardized response.

    Args:
        request: The incoming request
        exc: The validation exception

    Returns:
        A JSON response with error details
    """
    error_details = []
    for error in exc.errors():
        error_details.append({
            "location": list(error.get("loc", [])),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "status": "error",
            "code": "validation_error",
            "message": "Validation error",
            "details": error_details
        }
    )


# Standard API response model
class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """
        Create a success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Response dictionary
        """
        return {
            "status": "success",
            "message": message,
            "data": data
        }
