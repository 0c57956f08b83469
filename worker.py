from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from dotenv import load_dotenv

load_dotenv()

from app.config import settings
from app.db.repository import build_repositories
from app.notifications import SmsNotifier
from app.polling import PeriodicTask
from app.reminders import ReminderChecker

logger = logging.getLogger("worker")


def _setup_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def health_status(task: PeriodicTask) -> tuple[int, dict]:
    """Liveness of the reminder loop: 503 once it has stopped."""
    body = {
        "status": "stopped" if task.cancelled else "ok",
        "runs": task.runs,
        "last_error": task.last_error,
    }
    return (503 if task.cancelled else 200), body


def _start_health_server(task: PeriodicTask) -> None:
    port = os.getenv("PORT")
    if not port:
        return

    class ReminderHealthHandler(BaseHTTPRequestHandler):
        def do_GET(self):  # noqa: N802
            code, body = health_status(task)
            payload = json.dumps(body).encode()
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format, *args):  # noqa: A002
            logger.debug("health check: " + format, *args)

    server = HTTPServer(("0.0.0.0", int(port)), ReminderHealthHandler)
    threading.Thread(target=server.serve_forever, name="health", daemon=True).start()
    logger.info("Health server listening on port %s", port)


def build_checker() -> ReminderChecker:
    _, appointment_repo = build_repositories(settings)
    return ReminderChecker(
        appointment_repo,
        SmsNotifier.from_settings(settings),
        window_start_minutes=settings.reminder_window_start_minutes,
        window_end_minutes=settings.reminder_window_end_minutes,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send SMS reminders for upcoming appointments.")
    parser.add_argument("--once", action="store_true", help="run a single reminder check and exit")
    args = parser.parse_args(argv)

    _setup_logging()
    checker = build_checker()
    if args.once:
        sent = checker.check()
        logger.info("Reminder check done, %d sent", sent)
        return 0

    task = PeriodicTask(checker.check_async, settings.reminder_interval_seconds, name="reminders")
    _start_health_server(task)
    logger.info("Reminder checker every %ss", settings.reminder_interval_seconds)
    try:
        asyncio.run(task.run())
    except KeyboardInterrupt:
        logger.info("Reminder worker stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
