"""
Error taxonomy for the payment endpoints.

Every error renders as ``{"error": message}`` with its own status code.
"""

import logging

from fastapi import Request, status
from fastapi.responses import ORJSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(AppError):
    """Server is missing required configuration. Nothing was attempted."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InvalidRequest(AppError):
    """Client-correctable input problem."""

    status_code = status.HTTP_400_BAD_REQUEST


class GatewayError(AppError):
    """The upstream payment gateway refused or failed the request."""

    status_code = status.HTTP_502_BAD_GATEWAY


class StoreError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: AppError) -> ORJSONResponse:
    return ORJSONResponse({"error": exc.message}, status_code=exc.status_code)


async def app_error_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(exc)


async def store_error_handler(
    request: Request, exc: Exception
) -> ORJSONResponse:
    logger.error("store error on %s %s: %r",
                 request.method, request.url.path, exc)
    return error_response(StoreError("Store operation failed."))
