"""Exception handlers mapping the PHI core error taxonomy to HTTP responses.

Bodies carry only the exception's public message. Denial reasons, field
values, ciphertext and key material never reach the client.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from phi_core.core.exceptions import (
    AuthorizationDenied,
    InvalidFieldError,
    PHICodecError,
    PHICoreError,
    ResourceNotFound,
)
from phi_core.services.membership_service import MembershipError

logger = logging.getLogger(__name__)


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def resource_not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, ResourceNotFound.public_message)


async def authorization_denied_handler(request: Request, exc: Exception) -> JSONResponse:
    decision = getattr(exc, "decision", None)
    if decision is not None and decision.reason is not None:
        logger.info("Request denied on %s (%s)", request.url.path, decision.reason.value)
    return _error(status.HTTP_403_FORBIDDEN, AuthorizationDenied.public_message)


async def invalid_field_handler(request: Request, exc: Exception) -> JSONResponse:
    # Field names are static schema identifiers, safe to echo
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


async def membership_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, str(exc))


async def phi_codec_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "PHI codec failure on %s (field %s)",
        request.url.path,
        getattr(exc, "field_name", None),
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, PHICodecError.public_message)


async def phi_core_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled PHI core error on %s (%s)", request.url.path, type(exc).__name__)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, PHICoreError.public_message)


def install_exception_handlers(app: FastAPI) -> None:
    """Register handlers. Subclasses must precede PHICoreError."""
    app.add_exception_handler(ResourceNotFound, resource_not_found_handler)
    app.add_exception_handler(AuthorizationDenied, authorization_denied_handler)
    app.add_exception_handler(InvalidFieldError, invalid_field_handler)
    app.add_exception_handler(MembershipError, membership_error_handler)
    app.add_exception_handler(PHICodecError, phi_codec_error_handler)
    app.add_exception_handler(PHICoreError, phi_core_error_handler)
