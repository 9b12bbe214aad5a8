from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from ...context import FocusShieldContext
from ...errors import FocusShieldError
from ...schedule import ScheduleConfig, TimeOfDay
from ..deps import get_context, http_error
from ..schemas import (
    FaultOut,
    MonitoringOut,
    ScheduleIn,
    ScheduleOut,
    SelectionIn,
    SelectionOut,
    ToggleIn,
    ToggleOut,
)

router = APIRouter(prefix="/api/v1", tags=["schedules"])


def to_schedule_out(ctx: FocusShieldContext, item: ScheduleConfig) -> ScheduleOut:
    return ScheduleOut(
        id=item.id,
        name=item.name,
        start=str(item.start),
        end=str(item.end),
        days=list(item.selected_days),
        is_active=item.is_active,
        created_at=item.created_at,
        duration_minutes=item.duration_minutes,
        crosses_midnight=item.crosses_midnight,
        formatted_time_range=item.formatted_time_range,
        formatted_days=item.formatted_days,
        monitoring_state=ctx.controller.state(item.id).value,
    )


def _build_config(payload: ScheduleIn, schedule_id: str | None = None) -> ScheduleConfig:
    config = ScheduleConfig.new(
        name=payload.name,
        start=TimeOfDay.parse(payload.start),
        end=TimeOfDay.parse(payload.end),
        days=payload.days,
    )
    if schedule_id is None:
        return config
    return ScheduleConfig(
        id=schedule_id,
        name=config.name,
        start_hour=config.start_hour,
        start_minute=config.start_minute,
        end_hour=config.end_hour,
        end_minute=config.end_minute,
        selected_days=config.selected_days,
    )


@router.get("/schedules", response_model=list[ScheduleOut])
def list_schedules(ctx: FocusShieldContext = Depends(get_context)) -> list[ScheduleOut]:
    return [to_schedule_out(ctx, item) for item in ctx.schedules.list()]


@router.post("/schedules", response_model=ScheduleOut, status_code=201)
def create_schedule(payload: ScheduleIn, ctx: FocusShieldContext = Depends(get_context)) -> ScheduleOut:
    try:
        created = ctx.schedules.create(_build_config(payload))
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    return to_schedule_out(ctx, created)


@router.get("/schedules/{schedule_id}", response_model=ScheduleOut)
def get_schedule(schedule_id: str, ctx: FocusShieldContext = Depends(get_context)) -> ScheduleOut:
    item = ctx.schedules.get(schedule_id)
    if item is None:
        raise HTTPException(status_code=404, detail="schedule not found")
    return to_schedule_out(ctx, item)


@router.put("/schedules/{schedule_id}", response_model=ScheduleOut)
def update_schedule(
    schedule_id: str,
    payload: ScheduleIn,
    ctx: FocusShieldContext = Depends(get_context),
) -> ScheduleOut:
    ctx.debouncer.cancel(schedule_id)
    try:
        item = ctx.controller.update_schedule(_build_config(payload, schedule_id))
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    if item is None:
        raise HTTPException(status_code=404, detail="schedule not found")
    return to_schedule_out(ctx, item)


@router.delete("/schedules/{schedule_id}", status_code=204)
def delete_schedule(schedule_id: str, ctx: FocusShieldContext = Depends(get_context)) -> Response:
    ctx.debouncer.cancel(schedule_id)
    try:
        deleted = ctx.controller.delete_schedule(schedule_id)
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="schedule not found")
    return Response(status_code=204)


@router.post("/schedules/{schedule_id}/toggle", response_model=ToggleOut, status_code=202)
def toggle_schedule(
    schedule_id: str,
    payload: ToggleIn,
    ctx: FocusShieldContext = Depends(get_context),
) -> ToggleOut:
    ctx.debouncer.request(schedule_id, payload.active)
    return ToggleOut(schedule_id=schedule_id, requested=payload.active)


@router.post("/schedules/{schedule_id}/activate", response_model=ScheduleOut)
def activate_schedule(schedule_id: str, ctx: FocusShieldContext = Depends(get_context)) -> ScheduleOut:
    ctx.debouncer.cancel(schedule_id)
    try:
        item = ctx.controller.activate(schedule_id)
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    return to_schedule_out(ctx, item)


@router.post("/schedules/{schedule_id}/deactivate", response_model=ScheduleOut)
def deactivate_schedule(schedule_id: str, ctx: FocusShieldContext = Depends(get_context)) -> ScheduleOut:
    ctx.debouncer.cancel(schedule_id)
    try:
        item = ctx.controller.deactivate(schedule_id)
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    if item is None:
        raise HTTPException(status_code=404, detail="schedule not found")
    ctx.signal_data_changed()
    return to_schedule_out(ctx, item)


@router.get("/monitoring", response_model=MonitoringOut)
def monitoring(ctx: FocusShieldContext = Depends(get_context)) -> MonitoringOut:
    active = ctx.schedules.active()
    return MonitoringOut(
        active_schedule_id=active.id if active else None,
        states={key: value.value for key, value in ctx.controller.states().items()},
        mirror=ctx.schedules.monitoring_states(),
        pending_toggles=ctx.debouncer.pending(),
        faults=[
            FaultOut(kind=item.kind, schedule_id=item.schedule_id, message=item.message, at=item.at)
            for item in ctx.controller.faults
        ],
    )


@router.get("/selection", response_model=SelectionOut)
def get_selection(ctx: FocusShieldContext = Depends(get_context)) -> SelectionOut:
    return SelectionOut(selection=ctx.schedules.get_activity_selection())


@router.put("/selection", response_model=SelectionOut)
def put_selection(payload: SelectionIn, ctx: FocusShieldContext = Depends(get_context)) -> SelectionOut:
    try:
        ctx.schedules.set_activity_selection(payload.selection)
    except FocusShieldError as exc:
        raise http_error(exc) from exc
    return SelectionOut(selection=ctx.schedules.get_activity_selection())
