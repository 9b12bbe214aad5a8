from __future__ import annotations

import platform

from fastapi import APIRouter, Depends

from ... import __version__
from ...config import APP_TITLE
from ...context import FocusShieldContext
from ...errors import PersistenceFailure
from ...schedule_store import SCHEDULES_KEY
from ..deps import get_context, http_error
from ..schemas import HealthOut, MetaOut

router = APIRouter(prefix="/api/v1", tags=["system"])


@router.get("/health", response_model=HealthOut)
def health(ctx: FocusShieldContext = Depends(get_context)) -> HealthOut:
    try:
        ctx.store.get(SCHEDULES_KEY)
    except PersistenceFailure as exc:
        raise http_error(exc) from exc
    active = ctx.schedules.active()
    return HealthOut(active_schedule_id=active.id if active else None, faults=len(ctx.controller.faults))


@router.get("/meta", response_model=MetaOut)
def meta(ctx: FocusShieldContext = Depends(get_context)) -> MetaOut:
    return MetaOut(
        app=APP_TITLE,
        version=__version__,
        db_path=str(ctx.store.db_path),
        data_dir=str(ctx.config.data_dir),
        debounce_ms=int(round(ctx.config.debounce_seconds * 1000)),
        refresh_interval_seconds=ctx.config.refresh_interval_seconds,
        platform=platform.platform(),
    )
