from __future__ import annotations

from fastapi import HTTPException, Request

from ..context import FocusShieldContext
from ..errors import (
    EnforcementStartFailed,
    FocusShieldError,
    PersistenceFailure,
    ScheduleConflictError,
    ScheduleNotFoundError,
    ScheduleValidationError,
)


def get_context(request: Request) -> FocusShieldContext:
    return request.app.state.context


def http_error(exc: FocusShieldError) -> HTTPException:
    if isinstance(exc, ScheduleNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ScheduleValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, (ScheduleConflictError, EnforcementStartFailed)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceFailure):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
