"""Shared FastAPI dependencies and error translation."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, Request, status

from a2a.core.errors import (
    A2AError,
    DuplicateAgentError,
    InvalidStateError,
    InvocationError,
    NotFoundError,
    OrchestrationAbortedError,
    ServiceUnavailableError,
    ValidationError,
)
from a2a.service import A2AService

_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateAgentError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (OrchestrationAbortedError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvocationError, status.HTTP_502_BAD_GATEWAY),
)


def get_service(request: Request) -> A2AService:
    return request.app.state.service


def status_for(exc: A2AError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise orchestration errors as ``HTTPException``s with a matching status."""
    try:
        yield
    except A2AError as exc:
        detail = {"error": type(exc).__name__, "message": str(exc)}
        conversation_id = getattr(exc, "conversation_id", None)
        if conversation_id:
            detail["conversation_id"] = conversation_id
        raise HTTPException(status_code=status_for(exc), detail=detail) from exc
