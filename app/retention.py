"""
CLI entrypoint for the webhook ledger retention job. Run from cron, e.g.:

  python -m app.retention

Or daily: 0 3 * * * cd /path/to/passage && .venv/bin/python -m app.retention
"""

import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.services.retention import run_retention

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Run retention: prune processed webhook event ids past the retention window."""
    settings = get_settings()
    db = SessionLocal()
    try:
        deleted = run_retention(db, settings)
        logger.info("Retention completed: webhook_events_deleted=%s", deleted)
        return 0
    except SQLAlchemyError as e:
        logger.exception("Retention job failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
