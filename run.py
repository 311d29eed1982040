"""Launcher for the AutoSave service.

Watches the project folder for document changes, ticks the autosave
service in a background thread and serves the operator API on the main
thread.

Usage:
    python run.py --project-root ~/projects/game
    python run.py --config config/autosave.json --port 5000
    python run.py --no-api --save-command "editorctl save-all"
"""

import argparse
import logging
import os
import signal
import threading
from pathlib import Path

from autosave.core.settings import DEFAULT_TICK_SECONDS

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG = str(PROJECT_ROOT / "config" / "autosave.json")

logger = logging.getLogger("autosave")


def run_scheduler(service, host, stop_event, tick_seconds=DEFAULT_TICK_SECONDS):
    """Tick ``service`` every ``tick_seconds`` until ``stop_event`` is set."""
    while not stop_event.is_set():
        service.tick(host.has_unsaved_changes())
        stop_event.wait(timeout=tick_seconds)


def main():
    parser = argparse.ArgumentParser(
        description="AutoSave - periodic save, backup and backup retention",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG,
        help="Path to the preferences JSON file (default: config/autosave.json)",
    )
    parser.add_argument(
        "--project-root",
        default=os.getcwd(),
        help="Folder holding the documents; backups must stay inside it",
    )
    parser.add_argument(
        "-e", "--extension",
        action="append",
        dest="extensions",
        help="Document extension to track (repeatable, default: .scene)",
    )
    parser.add_argument(
        "--save-command",
        default=None,
        help="Command asking the editor to save its open documents",
    )
    parser.add_argument(
        "--host-process",
        default=None,
        help="Editor process name used by the run-in-background policy",
    )
    parser.add_argument(
        "--tick-seconds",
        default=DEFAULT_TICK_SECONDS,
        type=float,
        help="Seconds between scheduler ticks (default: 1.0)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="API host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        default=5000,
        type=int,
        help="API port (default: 5000)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run only the scheduler (no operator API)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.tick_seconds <= 0:
        parser.error("--tick-seconds must be positive")
    if not os.path.isdir(args.project_root):
        parser.error(f"Project root does not exist: {args.project_root}")

    from autosave.dashboard.websocket_handler import WebSocketHandler
    from autosave.service.bootstrap import build_service

    ws_handler = WebSocketHandler()
    service, host = build_service(
        config_path=args.config,
        project_root=args.project_root,
        extensions=args.extensions,
        save_command=args.save_command,
        host_process=args.host_process,
        ws_handler=None if args.no_api else ws_handler,
    )

    def on_event(event_type, data):
        if event_type == "config_updated":
            host.exclude(service.backup_directory)
        if not args.no_api:
            ws_handler.broadcast(event_type, data)

    service.events = on_event

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        stop_event.set()
        if not args.no_api:
            # Unwinds app.run() on the main thread
            raise SystemExit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    host.start()

    # Scheduler only
    if args.no_api:
        logger.info("Starting AutoSave scheduler (no API)...")
        try:
            run_scheduler(service, host, stop_event, args.tick_seconds)
        finally:
            host.stop()
        return

    # Both: scheduler in background thread, API on main thread
    logger.info("Starting AutoSave...")
    logger.info("  Project: %s", args.project_root)
    logger.info("  API: http://%s:%d", args.host, args.port)

    scheduler_thread = threading.Thread(
        target=run_scheduler,
        args=(service, host, stop_event, args.tick_seconds),
        daemon=True,
        name="autosave-scheduler",
    )
    scheduler_thread.start()

    from autosave.dashboard.app import create_app
    app = create_app(service=service, ws_handler=ws_handler)

    try:
        app.run(host=args.host, port=args.port, debug=False)
    finally:
        stop_event.set()
        scheduler_thread.join(timeout=5)
        host.stop()
        logger.info("AutoSave stopped.")


if __name__ == "__main__":
    main()
