"""FastAPI dependencies: pull the long-lived services off app state."""

from __future__ import annotations

from fastapi import HTTPException, Request

from tablesnipe.errors import (
    SnipeNotFoundError,
    SnipeStateError,
    SnipeValidationError,
    TablesnipeError,
)
from tablesnipe.rate_limiter import RateLimiter
from tablesnipe.service import SnipeService


def get_service(request: Request) -> SnipeService:
    return request.app.state.service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def http_error(e: TablesnipeError) -> HTTPException:
    """Map a domain error to the matching HTTP status."""
    if isinstance(e, SnipeNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SnipeStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, SnipeValidationError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
