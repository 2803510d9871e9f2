"""
Session bookkeeping and daily rollups.

The "sessions" and "unique users" counters only move when an event creates
a new session row, so replayed or duplicated events inside an existing
session never inflate visitor counts. Both writes rely on the store's own
conflict handling (unique ``(pixel_id, session_id)`` and ``(pixel_id, date)``)
instead of application locks.
"""

from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from pixel_analytics.conversions import is_pageview
from pixel_analytics.models import AnalyticsSession, DailyStat, new_id


@dataclass(frozen=True)
class SessionSnapshot:
    """Per-event data copied onto a new session row."""

    fingerprint: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class AggregateResult:
    new_session: bool
    pageview: bool


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    msg = f"Atomic upsert not supported for dialect {dialect!r}"
    raise RuntimeError(msg)


def utc_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def record_session(
    db: Session,
    pixel_pk: str,
    session_id: str,
    snapshot: SessionSnapshot,
    pageview: bool,
    now: datetime,
) -> bool:
    """Create or touch the session row. Returns True when this call created it."""
    insert = _insert_for(db)
    stmt = (
        insert(AnalyticsSession)
        .values(
            id=new_id(),
            pixel_id=pixel_pk,
            session_id=session_id,
            fingerprint=snapshot.fingerprint or "unknown",
            ip_address=snapshot.ip_address,
            user_agent=snapshot.user_agent,
            browser=snapshot.browser,
            os=snapshot.os,
            device_type=snapshot.device_type,
            country=snapshot.country,
            pageviews=1 if pageview else 0,
            start_time=now,
            last_seen=now,
        )
        .on_conflict_do_nothing(index_elements=["pixel_id", "session_id"])
    )
    created = db.connection().execute(stmt).rowcount == 1
    if created:
        logger.debug(f"Created session {session_id} for pixel {pixel_pk}")
        return True

    values = {"last_seen": now}
    if pageview:
        values["pageviews"] = AnalyticsSession.pageviews + 1
    db.connection().execute(
        update(AnalyticsSession)
        .where(AnalyticsSession.pixel_id == pixel_pk, AnalyticsSession.session_id == session_id)
        .values(**values)
    )
    return False


def bump_daily_stats(
    db: Session,
    pixel_pk: str,
    day: datetime,
    pageview: bool,
    new_session: bool,
    now: datetime,
) -> None:
    """Single-statement create-or-increment of the (pixel, day) rollup."""
    pageview_inc = 1 if pageview else 0
    session_inc = 1 if new_session else 0

    insert = _insert_for(db)
    stmt = insert(DailyStat).values(
        id=new_id(),
        pixel_id=pixel_pk,
        date=day,
        pageviews=pageview_inc,
        unique_users=session_inc,
        sessions=session_inc,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["pixel_id", "date"],
        set_={
            "pageviews": DailyStat.pageviews + pageview_inc,
            "unique_users": DailyStat.unique_users + session_inc,
            "sessions": DailyStat.sessions + session_inc,
            "updated_at": now,
        },
    )
    db.connection().execute(stmt)


def update_aggregates(
    db: Session,
    pixel_pk: str,
    event_name: str,
    session_id: str | None,
    snapshot: SessionSnapshot,
    record_sessions: bool = True,
    now: datetime | None = None,
) -> AggregateResult:
    """Update the session row (when enabled) and the daily rollup, then commit.

    On error the transaction is rolled back and the exception propagates; the
    caller decides whether that is fatal.
    """
    now = now or datetime.utcnow()
    pageview = is_pageview(event_name)
    try:
        new_session = False
        if session_id and record_sessions:
            new_session = record_session(db, pixel_pk, session_id, snapshot, pageview, now)
        bump_daily_stats(db, pixel_pk, utc_day(now), pageview, new_session, now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return AggregateResult(new_session=new_session, pageview=pageview)
