from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from ...aggregation import ChartPeriod, bucket_sessions, build_stats
from ...context import FocusShieldContext
from ...errors import FocusShieldError
from ...schedule import format_minutes
from ..deps import get_context, http_error
from ..schemas import BucketOut, ChartOut, RefreshOut, SessionOut, StatsOut

router = APIRouter(prefix="/api/v1", tags=["focus"])


@router.get("/focus/sessions", response_model=list[SessionOut])
def list_sessions(
    limit: int = Query(default=50, ge=1, le=2000),
    ctx: FocusShieldContext = Depends(get_context),
) -> list[SessionOut]:
    items = sorted(ctx.ledger.confirmed_sessions(), key=lambda item: item.ended_at, reverse=True)
    return [
        SessionOut(
            id=item.session_id,
            end_time=item.ended_at,
            duration_minutes=item.duration_minutes,
            provenance=item.provenance,
        )
        for item in items[:limit]
    ]


@router.get("/focus/stats", response_model=StatsOut)
def get_stats(ctx: FocusShieldContext = Depends(get_context)) -> StatsOut:
    stats = build_stats(ctx.ledger, now=ctx.clock.now())
    return StatsOut(
        today_minutes=stats.today_minutes,
        week_minutes=stats.week_minutes,
        total_minutes=stats.total_minutes,
        confirmed_minutes=stats.confirmed_minutes,
        session_count=stats.session_count,
        formatted_total=format_minutes(stats.total_minutes),
    )


@router.get("/focus/chart", response_model=ChartOut)
def get_chart(
    period: ChartPeriod = ChartPeriod.DAY,
    ctx: FocusShieldContext = Depends(get_context),
) -> ChartOut:
    buckets = bucket_sessions(ctx.ledger.confirmed_sessions(), period, now=ctx.clock.now())
    return ChartOut(
        period=period.value,
        buckets=[BucketOut(start=item.start, minutes=item.minutes) for item in buckets],
    )


@router.post("/focus/refresh", response_model=RefreshOut)
def refresh(ctx: FocusShieldContext = Depends(get_context)) -> RefreshOut:
    try:
        merged = ctx.signal_data_changed()
        total = ctx.ledger.total_minutes()
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    return RefreshOut(merged=merged, total_minutes=total)


@router.delete("/focus", status_code=204)
def clear_all(ctx: FocusShieldContext = Depends(get_context)) -> Response:
    try:
        ctx.clear_all_data()
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
