"""
Quota policies for identities without unlimited access.

Guests: 3 uses per UTC calendar day, counted against both a salted hash of the
client IP and a long-lived anonymous cookie id; the larger of the two counts wins
so rotating only one of them doesn't reset the quota.
Signed-in free users: 10 uses per ISO-8601 week, reset Monday 00:00 UTC.

consume_* checks the current count with a plain read, then increments atomically.
Two requests racing past the check can both be admitted, so the stored count may
overshoot the limit by (concurrent requests - 1). That margin is accepted.
"""
import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional
from sqlalchemy.orm import Session
from app.core.config import get_usage_salt
from app.core.plan_limits import GUEST_DAILY_LIMIT, FREE_WEEKLY_LIMIT
from app.services import counter_store
from app.utils.dates import utcnow


@dataclass(frozen=True)
class QuotaResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int


@dataclass(frozen=True)
class GuestUsageKeys:
    ip_hash: str
    ip_key: Optional[str]
    anon_key: str
    reset_at: datetime


@dataclass(frozen=True)
class AnonUsageId:
    anon_id: str
    should_set_cookie: bool


def hash_with_salt(value: str) -> str:
    return hashlib.sha256(f"{get_usage_salt()}:{value}".encode()).hexdigest()


def get_forwarded_ip(headers: Mapping[str, str]) -> str:
    """First hop of X-Forwarded-For, else X-Real-IP, else empty."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return (headers.get("x-real-ip") or "").strip()


def get_or_create_anon_usage_id(existing: Optional[str]) -> AnonUsageId:
    if existing:
        return AnonUsageId(anon_id=existing, should_set_cookie=False)
    return AnonUsageId(anon_id=str(uuid.uuid4()), should_set_cookie=True)


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def next_utc_day(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day) + timedelta(days=1)


def iso_week_window(now: datetime) -> tuple[str, datetime]:
    """
    ('<ISO year>-W<week>', start of next ISO week).
    Week 1 is the week containing the year's first Thursday, so early-January
    dates can belong to the previous ISO year and late-December ones to the next.
    """
    iso_year, iso_week, iso_weekday = now.date().isocalendar()
    today = datetime(now.year, now.month, now.day)
    next_monday = today + timedelta(days=8 - iso_weekday)
    return f"{iso_year}-W{iso_week:02d}", next_monday


def build_guest_usage_keys(headers: Mapping[str, str], anon_id: str, now: datetime) -> GuestUsageKeys:
    raw_ip = get_forwarded_ip(headers)
    ip_hash = hash_with_salt(raw_ip) if raw_ip else ""
    day = day_key(now)
    return GuestUsageKeys(
        ip_hash=ip_hash,
        ip_key=f"quota:guest:ip:{ip_hash}:{day}" if ip_hash else None,
        anon_key=f"quota:guest:anon:{anon_id}:{day}",
        reset_at=next_utc_day(now),
    )


def build_free_user_usage_key(user_id, now: datetime) -> tuple[str, datetime]:
    week, reset_at = iso_week_window(now)
    return f"quota:user:{user_id}:{week}", reset_at


def _result(used: int, limit: int, reset_at: datetime, allowed: Optional[bool] = None) -> QuotaResult:
    return QuotaResult(
        allowed=used < limit if allowed is None else allowed,
        remaining=max(0, limit - used),
        reset_at=reset_at,
        limit=limit,
    )


def preview_guest_quota(
    db: Session,
    headers: Mapping[str, str],
    anon_id: str,
    now: Optional[datetime] = None,
) -> QuotaResult:
    now = now or utcnow()
    keys = build_guest_usage_keys(headers, anon_id, now)
    ip_count = counter_store.peek(db, keys.ip_key, now) if keys.ip_key else 0
    anon_count = counter_store.peek(db, keys.anon_key, now)
    return _result(max(ip_count, anon_count), GUEST_DAILY_LIMIT, keys.reset_at)


def consume_guest_quota(
    db: Session,
    headers: Mapping[str, str],
    anon_id: str,
    now: Optional[datetime] = None,
) -> QuotaResult:
    now = now or utcnow()
    preview = preview_guest_quota(db, headers, anon_id, now)
    if not preview.allowed:
        return preview

    keys = build_guest_usage_keys(headers, anon_id, now)
    ip_count = counter_store.increment(db, keys.ip_key, keys.reset_at, now) if keys.ip_key else 0
    anon_count = counter_store.increment(db, keys.anon_key, keys.reset_at, now)
    return _result(max(ip_count, anon_count), GUEST_DAILY_LIMIT, keys.reset_at, allowed=True)


def preview_free_user_quota(db: Session, user_id, now: Optional[datetime] = None) -> QuotaResult:
    now = now or utcnow()
    key, reset_at = build_free_user_usage_key(user_id, now)
    used = counter_store.peek(db, key, now)
    return _result(used, FREE_WEEKLY_LIMIT, reset_at)


def consume_free_user_quota(db: Session, user_id, now: Optional[datetime] = None) -> QuotaResult:
    now = now or utcnow()
    preview = preview_free_user_quota(db, user_id, now)
    if not preview.allowed:
        return preview

    key, reset_at = build_free_user_usage_key(user_id, now)
    used = counter_store.increment(db, key, reset_at, now)
    return _result(used, FREE_WEEKLY_LIMIT, reset_at, allowed=True)
