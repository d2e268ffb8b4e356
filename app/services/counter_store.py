"""
Persistent keyed counters with reset timestamps (the storage behind usage quotas).

Increments are a single INSERT ... ON CONFLICT DO UPDATE so concurrent requests on
different workers never lose updates; an expired window is restarted inside the
same statement.
"""
import logging
from datetime import datetime
from sqlalchemy import case, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session
from app.models.usage_counter import UsageCounter

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _upsert_insert(dialect: str):
    try:
        return _UPSERT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Usage counters need an upsert-capable database, got '{dialect}'") from None


def peek(db: Session, key: str, now: datetime) -> int:
    """Current count for key; 0 when the row is missing or its window has ended."""
    row = db.execute(
        select(UsageCounter.count, UsageCounter.reset_at).where(UsageCounter.key == key)
    ).first()
    if row is None:
        return 0
    count, reset_at = row
    if reset_at <= now:
        return 0
    return count


def build_increment_statement(dialect: str, key: str, reset_at: datetime, now: datetime):
    """INSERT ... ON CONFLICT DO UPDATE ... RETURNING count for the given dialect name."""
    insert = _upsert_insert(dialect)
    stmt = insert(UsageCounter).values(
        key=key,
        count=1,
        reset_at=reset_at,
        created_at=now,
        updated_at=now,
    )
    window_expired = UsageCounter.reset_at <= now
    stmt = stmt.on_conflict_do_update(
        index_elements=["key"],
        set_={
            "count": case((window_expired, 1), else_=UsageCounter.count + 1),
            "reset_at": case((window_expired, stmt.excluded.reset_at), else_=UsageCounter.reset_at),
            "updated_at": now,
        },
    ).returning(UsageCounter.count)
    return stmt


def increment(db: Session, key: str, reset_at: datetime, now: datetime) -> int:
    """
    Atomically add one to key and return the new count.
    A missing row or an expired window is (re)started at count=1 with the given reset_at.
    """
    stmt = build_increment_statement(db.get_bind().dialect.name, key, reset_at, now)
    new_count = db.execute(stmt).scalar_one()
    db.commit()
    return new_count


def purge_expired(db: Session, before: datetime) -> int:
    """Drop counters whose window ended before `before`. Not required for correctness."""
    result = db.execute(delete(UsageCounter).where(UsageCounter.reset_at < before))
    db.commit()
    if result.rowcount:
        logger.info("[usage] purged %s expired usage counters", result.rowcount)
    return result.rowcount
