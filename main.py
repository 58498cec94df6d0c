"""
Attention Rescue — headless engine host.
Entry point: opens the database, builds the engine, optionally replays a
recorded activity log, and runs the tracking timers on a Qt event loop.
"""

import argparse
import faulthandler
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

faulthandler.enable()

# Ensure the package is importable when run from another directory
sys.path.insert(0, str(Path(__file__).resolve().parent))

from PySide6.QtCore import QCoreApplication

from attention_rescue.data.database import DEFAULT_DB_PATH, Database
from attention_rescue.data.models import ActivityEvent, BrowsingContext
from attention_rescue.data.repository import Repository
from attention_rescue.errors import ValidationError
from attention_rescue.services.engine import AttentionEngine
from attention_rescue.services.tracking_service import TrackingService

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("attention_rescue.log", encoding="utf-8"),
        ],
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Attention Rescue engine host")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH,
                        help="SQLite database path")
    parser.add_argument("--replay", type=Path,
                        help="JSON-lines activity log to feed through the engine")
    parser.add_argument("--once", action="store_true",
                        help="exit after the replay instead of running the timers")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def load_event(line: str) -> ActivityEvent:
    """One replay line: an ActivityEvent as JSON, with an optional 'outcome'."""
    d = json.loads(line)
    return ActivityEvent(
        url=d["url"],
        timestamp=datetime.fromisoformat(d["timestamp"]),
        event_type=d.get("event_type", "navigation"),
        context=BrowsingContext.from_dict(d.get("context") or {"url": d["url"]}),
        duration=d.get("duration"),
    )


def replay(engine: AttentionEngine, path: Path) -> int:
    """Feed a recorded log through the engine. Returns events accepted."""
    accepted = 0
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                event = load_event(line)
                assessment = engine.submit_activity(event)
            except (ValueError, KeyError, ValidationError) as e:
                logger.warning("Skipping line %d: %s", lineno, e)
                continue
            accepted += 1
            if assessment is not None and assessment.is_distraction:
                challenge = assessment.suggested_challenge
                logger.info("Intervention on %s: %s [%s]", event.url, assessment.reason,
                            challenge.type if challenge else "none")
                engine.record_intervention(event.url)
                outcome = json.loads(line).get("outcome")
                if outcome == "completed":
                    engine.record_completion(event.url, event.context)
                elif outcome == "dismissed":
                    engine.record_dismissal(event.url, event.context)
    logger.info("Replayed %d events from %s", accepted, path)
    return accepted


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info("Starting Attention Rescue...")

    db = Database(args.db)
    db.connect()
    engine = AttentionEngine(Repository(db.conn))

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName("AttentionRescue")
    app.setOrganizationName("AttentionRescue")

    tracking = TrackingService(engine)

    try:
        if args.replay:
            replay(engine, args.replay)
        if args.once:
            return 0
        tracking.start()
        app.aboutToQuit.connect(tracking.stop_all)
        logger.info("Engine running. Ctrl+C to stop.")
        return app.exec()
    finally:
        engine.shutdown()
        db.close()
        progress = engine.rewards.get_progress()
        logger.info("Level %d, %d points, streak %d",
                    progress.level, progress.total_points, engine.streak.get_streak().current)


if __name__ == "__main__":
    sys.exit(main())


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The entry point. Sets up logging, opens SQLite, builds the engine and
#   either replays a recorded activity log (--replay) or keeps running so
#   the QTimers can do their periodic housekeeping.
#
# Key points:
#   - QCoreApplication, not QApplication: the engine has no windows, but
#     QTimer still needs an event loop.
#   - --once makes the host usable in scripts and CI: replay, report, exit.
#   - Logging to both console and file: console for development, file for
#     debugging user-reported issues.
