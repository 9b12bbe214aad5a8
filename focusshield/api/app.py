from __future__ import annotations

from fastapi import FastAPI

from .. import __version__
from ..config import APP_TITLE, AppConfig, load_config
from ..context import FocusShieldContext, build_context
from ..logging_setup import setup_logging
from ..notifier import Notifier
from .events import EventHub
from .routes.events import router as events_router
from .routes.export import router as export_router
from .routes.focus import router as focus_router
from .routes.schedules import router as schedules_router
from .routes.system import router as system_router


def create_app(context: FocusShieldContext | None = None, config: AppConfig | None = None) -> FastAPI:
    ctx = context or build_context(config)

    app = FastAPI(title=f"{APP_TITLE} API", version=__version__)
    app.state.context = ctx

    hub = EventHub()
    ctx.ledger.add_listener(hub.publish)
    ctx.controller.add_listener(hub.publish)
    app.state.events = hub

    app.include_router(system_router)
    app.include_router(schedules_router)
    app.include_router(focus_router)
    app.include_router(export_router)
    app.include_router(events_router)

    return app


def create_default_app(config: AppConfig | None = None) -> FastAPI:
    resolved = config or load_config()
    setup_logging(resolved)
    ctx = build_context(resolved, notifier=Notifier())
    ctx.start()
    return create_app(context=ctx)
