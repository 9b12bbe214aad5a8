from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import Any

from .aggregation import ChartPeriod, bucket_sessions, build_stats
from .config import AppConfig, load_config
from .context import FocusShieldContext, build_context
from .errors import FocusShieldError, ScheduleValidationError
from .exporting import export_sessions_csv
from .logging_setup import setup_logging
from .notifier import Notifier
from .schedule import ScheduleConfig, TimeOfDay, format_minutes, format_short_duration


def parse_days(value: str) -> list[int]:
    text = value.strip().lower()
    if text in {"all", "every", "everyday"}:
        return [1, 2, 3, 4, 5, 6, 7]
    if text == "weekdays":
        return [2, 3, 4, 5, 6]
    if text == "weekends":
        return [1, 7]
    try:
        return [int(item) for item in text.split(",") if item.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"invalid --days: {value}, use 1-7 separated by commas (1 = Sunday) or weekdays/weekends/all"
        ) from exc


def parse_time(value: str) -> TimeOfDay:
    try:
        return TimeOfDay.parse(value)
    except ScheduleValidationError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_json(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid JSON: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="focusshield",
        description="FocusShield: scheduled app blocking with focus time tracking",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="data directory (default FOCUSSHIELD_DATA_DIR or focusshield/data)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    schedule_parser = subparsers.add_parser("schedule", help="manage schedules")
    schedule_sub = schedule_parser.add_subparsers(dest="schedule_command", required=True)

    schedule_sub.add_parser("list", help="list schedules")

    add_parser = schedule_sub.add_parser("add", help="create a schedule")
    add_parser.add_argument("--name", required=True, help="schedule name")
    add_parser.add_argument("--start", type=parse_time, required=True, help="start time HH:MM")
    add_parser.add_argument("--end", type=parse_time, required=True, help="end time HH:MM")
    add_parser.add_argument("--days", type=parse_days, default=[1, 2, 3, 4, 5, 6, 7], help="active weekdays")

    edit_parser = schedule_sub.add_parser("edit", help="edit a schedule, restarting its monitoring if active")
    edit_parser.add_argument("schedule_id")
    edit_parser.add_argument("--name", default=None, help="schedule name")
    edit_parser.add_argument("--start", type=parse_time, default=None, help="start time HH:MM")
    edit_parser.add_argument("--end", type=parse_time, default=None, help="end time HH:MM")
    edit_parser.add_argument("--days", type=parse_days, default=None, help="active weekdays")

    delete_parser = schedule_sub.add_parser("delete", help="delete a schedule, stopping it first")
    delete_parser.add_argument("schedule_id")

    for name, help_text in (
        ("activate", "start monitoring a schedule"),
        ("deactivate", "stop monitoring a schedule"),
        ("toggle", "flip a schedule between active and inactive"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("schedule_id")

    selection_parser = subparsers.add_parser("selection", help="apps and categories blocked while monitoring")
    selection_sub = selection_parser.add_subparsers(dest="selection_command", required=True)
    selection_sub.add_parser("show", help="print the stored selection")
    set_parser = selection_sub.add_parser("set", help="replace the stored selection")
    set_parser.add_argument("--json", dest="payload", type=parse_json, required=True, help="selection as JSON")

    subparsers.add_parser("restore", help="re-activate schedules left active by a previous run")

    monitor_parser = subparsers.add_parser("monitor", help="background interval callbacks")
    monitor_parser.add_argument("event", choices=["interval-start", "interval-end"])
    monitor_parser.add_argument("schedule_id")
    monitor_parser.add_argument("--no-notify", action="store_true", help="disable notifications")

    subparsers.add_parser("refresh", help="merge pending focus sessions")

    sessions_parser = subparsers.add_parser("sessions", help="list confirmed focus sessions")
    sessions_parser.add_argument("--limit", type=int, default=20, help="maximum rows shown")

    subparsers.add_parser("stats", help="show focus statistics")

    chart_parser = subparsers.add_parser("chart", help="show the focus chart")
    chart_parser.add_argument("--period", choices=[item.value for item in ChartPeriod], default="day")

    export_parser = subparsers.add_parser("export", help="export sessions as CSV")
    export_parser.add_argument("--out-dir", default=None, help="output directory, default <data-dir>/out")

    reset_parser = subparsers.add_parser("reset", help="stop monitoring and erase all data")
    reset_parser.add_argument("--yes", action="store_true", help="confirm the reset")

    serve_parser = subparsers.add_parser("serve", help="run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8765)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config()
    if args.data_dir:
        config = config.with_data_dir(Path(args.data_dir).expanduser())
    setup_logging(config)

    if args.command == "serve":
        return _handle_serve(args, config)

    notifier = None
    if args.command == "monitor":
        notifier = Notifier(enabled=not args.no_notify)

    try:
        ctx = build_context(config, notifier=notifier)
    except FocusShieldError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        return _dispatch(args, ctx, parser)
    except FocusShieldError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        ctx.close()


def _dispatch(args: argparse.Namespace, ctx: FocusShieldContext, parser: argparse.ArgumentParser) -> int:
    if args.command == "schedule":
        return _handle_schedule(args, ctx, parser)
    if args.command == "activate":
        return _handle_activate(args, ctx)
    if args.command == "deactivate":
        return _handle_deactivate(args, ctx)
    if args.command == "toggle":
        return _handle_toggle(args, ctx)
    if args.command == "selection":
        return _handle_selection(args, ctx)
    if args.command == "restore":
        return _handle_restore(ctx)
    if args.command == "monitor":
        return _handle_monitor(args, ctx)
    if args.command == "refresh":
        return _handle_refresh(ctx)
    if args.command == "sessions":
        return _handle_sessions(args, ctx)
    if args.command == "stats":
        return _handle_stats(ctx)
    if args.command == "chart":
        return _handle_chart(args, ctx)
    if args.command == "export":
        return _handle_export(args, ctx)
    if args.command == "reset":
        return _handle_reset(args, ctx, parser)

    parser.print_help()
    return 2


def _print_schedule(item: ScheduleConfig, state: str) -> None:
    status = "ACTIVE" if item.is_active else "inactive"
    print(
        f"{item.id} | {item.name} | {item.formatted_time_range} | {item.formatted_days} | "
        f"{format_short_duration(item.duration_minutes)} | {status} ({state})"
    )


def _handle_schedule(args: argparse.Namespace, ctx: FocusShieldContext, parser: argparse.ArgumentParser) -> int:
    if args.schedule_command == "list":
        items = ctx.schedules.list()
        if not items:
            print("No schedules yet.")
            return 0
        for item in items:
            _print_schedule(item, ctx.controller.state(item.id).value)
        return 0

    if args.schedule_command == "add":
        created = ctx.schedules.create(ScheduleConfig.new(args.name, args.start, args.end, args.days))
        print(f"Schedule created: {created.id}")
        return 0

    if args.schedule_command == "edit":
        current = ctx.schedules.get(args.schedule_id)
        if current is None:
            print(f"error: schedule not found: {args.schedule_id}", file=sys.stderr)
            return 1
        edited = ScheduleConfig.new(
            args.name if args.name is not None else current.name,
            args.start or current.start,
            args.end or current.end,
            args.days if args.days is not None else current.selected_days,
        )
        updated = ctx.controller.update_schedule(
            ScheduleConfig(
                id=current.id,
                name=edited.name,
                start_hour=edited.start_hour,
                start_minute=edited.start_minute,
                end_hour=edited.end_hour,
                end_minute=edited.end_minute,
                selected_days=edited.selected_days,
            )
        )
        if updated is None:
            print(f"error: schedule not found: {args.schedule_id}", file=sys.stderr)
            return 1
        for fault in ctx.controller.faults:
            print(f"warning: {fault.kind} {fault.schedule_id or '-'}: {fault.message}", file=sys.stderr)
        print(f"Schedule updated: {current.id}")
        return 0

    if args.schedule_command == "delete":
        if not ctx.controller.delete_schedule(args.schedule_id):
            print(f"error: schedule not found: {args.schedule_id}", file=sys.stderr)
            return 1
        print(f"Schedule deleted: {args.schedule_id}")
        return 0

    parser.print_help()
    return 2


def _handle_activate(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    item = ctx.controller.activate(args.schedule_id)
    print(f"Monitoring started: {item.name} ({item.formatted_time_range})")
    return 0


def _handle_deactivate(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    ctx.controller.deactivate(args.schedule_id)
    ctx.signal_data_changed()
    print(f"Monitoring stopped: {args.schedule_id}")
    return 0


def _handle_toggle(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    if ctx.schedules.get(args.schedule_id) is None:
        print(f"error: schedule not found: {args.schedule_id}", file=sys.stderr)
        return 1
    ctx.controller.toggle(args.schedule_id)
    ctx.signal_data_changed()
    item = ctx.schedules.get(args.schedule_id)
    state = "active" if item is not None and item.is_active else "inactive"
    print(f"Schedule {args.schedule_id} is now {state}")
    return 0


def _handle_selection(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    if args.selection_command == "set":
        ctx.schedules.set_activity_selection(args.payload)
        print("Selection saved.")
        return 0
    print(json.dumps(ctx.schedules.get_activity_selection(), ensure_ascii=False))
    return 0


def _handle_restore(ctx: FocusShieldContext) -> int:
    ctx.signal_data_changed()
    restored = ctx.controller.restore_active_schedules()
    for fault in ctx.controller.faults:
        print(f"warning: {fault.kind} {fault.schedule_id or '-'}: {fault.message}", file=sys.stderr)
    print(f"Restored {len(restored)} schedule(s).")
    return 0


def _handle_monitor(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    if args.event == "interval-start":
        started = ctx.monitor.on_interval_start(args.schedule_id)
        print("Interval started." if started else "Interval already running.")
        error = ctx.monitor.restriction_error()
        if error:
            print(f"warning: {error.get('message')}", file=sys.stderr)
        return 0

    session = ctx.monitor.on_interval_end(args.schedule_id)
    if session is None:
        print("No focus time recorded.")
    else:
        print(f"Recorded {format_minutes(session.duration_minutes)} of focus time.")
    return 0


def _handle_refresh(ctx: FocusShieldContext) -> int:
    merged = ctx.signal_data_changed()
    print(f"Merged {merged} pending session(s); total {format_minutes(ctx.ledger.total_minutes())}.")
    return 0


def _handle_sessions(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    ctx.signal_data_changed()
    items = sorted(ctx.ledger.confirmed_sessions(), key=lambda item: item.ended_at, reverse=True)
    if not items:
        print("No focus sessions recorded.")
        return 0
    for item in items[: max(0, args.limit)]:
        end_text = item.ended_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        print(f"{end_text} | {format_short_duration(item.duration_minutes)} | {item.provenance}")
    return 0


def _handle_stats(ctx: FocusShieldContext) -> int:
    ctx.signal_data_changed()
    stats = build_stats(ctx.ledger, now=ctx.clock.now())
    print(f"Today: {format_minutes(stats.today_minutes)}")
    print(f"Last 7 days: {format_minutes(stats.week_minutes)}")
    print(f"Total focus time: {format_minutes(stats.total_minutes)}")
    print(f"Confirmed sessions: {stats.session_count} ({format_minutes(stats.confirmed_minutes)})")
    return 0


def _handle_chart(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    ctx.signal_data_changed()
    period = ChartPeriod(args.period)
    buckets = bucket_sessions(ctx.ledger.confirmed_sessions(), period, now=ctx.clock.now())
    label_format = "%H:00" if period is ChartPeriod.DAY else "%a %m-%d"
    for bucket in buckets:
        bar = "#" * min(60, bucket.minutes // 5)
        print(f"{bucket.start.strftime(label_format):>9} | {bucket.minutes:>4} min {bar}")
    return 0


def _handle_export(args: argparse.Namespace, ctx: FocusShieldContext) -> int:
    ctx.signal_data_changed()
    out_dir = Path(args.out_dir) if args.out_dir else ctx.config.data_dir / "out"
    csv_path = export_sessions_csv(ctx.ledger, out_dir)
    print(f"CSV exported: {csv_path}")
    return 0


def _handle_reset(args: argparse.Namespace, ctx: FocusShieldContext, parser: argparse.ArgumentParser) -> int:
    if not args.yes:
        parser.error("reset erases every schedule and session, pass --yes to confirm")
    ctx.clear_all_data()
    print("All data cleared.")
    return 0


def _handle_serve(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        import uvicorn
    except ImportError as exc:
        print(f"cannot start server, uvicorn is missing: {exc}", file=sys.stderr)
        return 2

    from .api.app import create_default_app

    app = create_default_app(config)
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    finally:
        app.state.context.close()
    return 0
