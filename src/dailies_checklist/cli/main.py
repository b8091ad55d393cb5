# src/dailies_checklist/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds the session, then runs on one asyncio loop:
- host ticks (reset checks),
- JSON-lines events from stdin (optional).

Stops on SIGINT/SIGTERM or stdin EOF, then shuts the session down in order.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from ..cli.bootstrap import App, create_app
from ..config import get_settings
from ..connectors.host_clock import run_host_ticks
from ..connectors.jsonl_feed import run_stream_feed
from ..logging_setup import level_from_name, setup_logging
from ..tasks.reset_scheduler import format_duration

logger = logging.getLogger(__name__)


def _log_status(app: App) -> None:
    session = app.session
    state = session.state

    enabled = [t for t in state.sorted_tasks() if t.enabled]
    done = sum(1 for t in enabled if t.completed)
    logger.info("Checklist: %d/%d enabled tasks done", done, len(enabled))
    for t in enabled:
        logger.debug("  [%s] %s %s (%d/%d)", "x" if t.completed else " ", t.category.value, t.id, t.current_count, t.max_count)

    for rule in session.scheduler.rules:
        logger.info("Next %s reset in %s", rule.rule_id, format_duration(session.time_until(rule.rule_id)))

    for lim in session.limitations():
        logger.info("Detection limitation [%s] %s: %s", lim.kind.value, lim.task_id or "*", lim.description)


async def _run(app: App) -> None:
    settings = app.settings
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Some platforms may not support loop signal handlers.
            pass

    tasks = [
        asyncio.create_task(
            run_host_ticks(app.bus, interval_seconds=settings.tick_interval_seconds),
            name="host-ticks",
        )
    ]

    if settings.stdin_feed:
        feed_task = asyncio.create_task(run_stream_feed(app.feed), name="event-feed")
        feed_task.add_done_callback(lambda _t: stop.set())
        tasks.append(feed_task)
    else:
        logger.info("Stdin feed disabled. Running host ticks only. Press Ctrl+C to stop.")

    try:
        await stop.wait()
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=settings.data_dir,
        console_level=level_from_name(settings.log_level),
        log_name=settings.app_name,
    )
    logger.info("Starting %s (log: %s)", settings.app_name, log_file)

    app = create_app(settings=settings)
    _log_status(app)

    try:
        asyncio.run(_run(app))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        app.session.shutdown()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
