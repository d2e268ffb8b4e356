#!/usr/bin/env python3
"""
Delete usage counters and login sessions whose window has ended.

Neither table needs this for correctness (expired rows are ignored on read and
counters restart in place), it only keeps them small. Safe to run from cron.

Run from project root with DATABASE_URL set:
  python scripts/purge_expired.py
  python scripts/purge_expired.py --grace-hours 48
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv(project_root / ".env")

from app.db.session import SessionLocal
from app.services.counter_store import purge_expired
from app.services.session_store import purge_expired_sessions
from app.utils.dates import utcnow

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("purge_expired")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--grace-hours",
        type=int,
        default=24,
        help="Keep counters whose window ended less than this many hours ago (default 24)",
    )
    args = parser.parse_args()

    db = SessionLocal()
    try:
        counters = purge_expired(db, utcnow() - timedelta(hours=args.grace_hours))
        sessions = purge_expired_sessions(db)
        logger.info("Removed %s usage counters and %s sessions", counters, sessions)
    except Exception:
        db.rollback()
        logger.exception("Purge failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
