from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from pixel_analytics.aggregator import SessionSnapshot, bump_daily_stats, update_aggregates, utc_day
from pixel_analytics.models import AnalyticsSession, DailyStat

NOW = datetime(2025, 3, 14, 15, 9, 26)


@pytest.fixture
def pixel(create_pixel):
    return create_pixel("px_rollup")


def _stats(db, pixel_pk):
    db.expire_all()
    return db.query(DailyStat).filter(DailyStat.pixel_id == pixel_pk).all()


class TestSessionRollups:
    def test_first_pageview_creates_session_and_stat(self, db, pixel):
        result = update_aggregates(db, pixel.id, "pageview", "s1", SessionSnapshot(fingerprint="fp1"), now=NOW)

        assert result.new_session is True
        assert result.pageview is True
        session = db.query(AnalyticsSession).one()
        assert session.session_id == "s1"
        assert session.fingerprint == "fp1"
        assert session.pageviews == 1

        [stat] = _stats(db, pixel.id)
        assert stat.date == utc_day(NOW)
        assert (stat.pageviews, stat.sessions, stat.unique_users) == (1, 1, 1)

    def test_repeated_session_does_not_inflate_visitors(self, db, pixel):
        for _ in range(5):
            update_aggregates(db, pixel.id, "page_view", "s1", SessionSnapshot(), now=NOW)

        [stat] = _stats(db, pixel.id)
        assert stat.pageviews == 5
        assert stat.sessions == 1
        assert stat.unique_users == 1
        assert db.query(AnalyticsSession).one().pageviews == 5

    def test_non_pageview_events_only_touch_session(self, db, pixel):
        update_aggregates(db, pixel.id, "pageview", "s1", SessionSnapshot(), now=NOW)
        later = NOW + timedelta(minutes=3)
        result = update_aggregates(db, pixel.id, "addToCart", "s1", SessionSnapshot(), now=later)

        assert result.new_session is False
        assert result.pageview is False
        db.expire_all()
        session = db.query(AnalyticsSession).one()
        assert session.pageviews == 1
        assert session.last_seen == later
        [stat] = _stats(db, pixel.id)
        assert stat.pageviews == 1

    def test_event_without_session_only_counts_pageview(self, db, pixel):
        update_aggregates(db, pixel.id, "PageView", None, SessionSnapshot(), now=NOW)

        assert db.query(AnalyticsSession).count() == 0
        [stat] = _stats(db, pixel.id)
        assert (stat.pageviews, stat.sessions, stat.unique_users) == (1, 0, 0)

    def test_session_recording_disabled(self, db, pixel):
        update_aggregates(db, pixel.id, "pageview", "s1", SessionSnapshot(), record_sessions=False, now=NOW)

        assert db.query(AnalyticsSession).count() == 0
        [stat] = _stats(db, pixel.id)
        assert stat.sessions == 0

    def test_one_row_per_utc_day(self, db, pixel):
        update_aggregates(db, pixel.id, "pageview", "s1", SessionSnapshot(), now=NOW)
        update_aggregates(db, pixel.id, "pageview", "s2", SessionSnapshot(), now=NOW + timedelta(days=1))

        stats = sorted(_stats(db, pixel.id), key=lambda s: s.date)
        assert [s.date for s in stats] == [utc_day(NOW), utc_day(NOW + timedelta(days=1))]
        assert all(s.sessions == 1 for s in stats)

    def test_unsupported_dialect_rolls_back(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(RuntimeError, match="mysql"):
            update_aggregates(db, "pk", "pageview", None, SessionSnapshot(), now=NOW)

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_unsupported_dialect_error_type(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "oracle"

        with pytest.raises(RuntimeError) as exc:
            bump_daily_stats(db, "pk", utc_day(NOW), True, False, NOW)

        assert not isinstance(exc.value, NotImplementedError)


class TestConcurrentRollups:
    def test_fifty_concurrent_sessions(self, session_factory, pixel):
        """Distinct sessions racing on the same daily row are all counted."""
        pixel_pk = pixel.id

        def track(i):
            session = session_factory()
            try:
                return update_aggregates(
                    session, pixel_pk, "pageview", f"session-{i}", SessionSnapshot(fingerprint=f"fp-{i}"), now=NOW
                )
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(track, range(50)))

        assert all(r.new_session for r in results)

        check = session_factory()
        try:
            [stat] = check.query(DailyStat).filter(DailyStat.pixel_id == pixel_pk).all()
            assert stat.pageviews == 50
            assert stat.sessions == 50
            assert stat.unique_users == 50
            assert check.query(AnalyticsSession).count() == 50
        finally:
            check.close()

    def test_concurrent_duplicates_of_one_session(self, session_factory, pixel):
        pixel_pk = pixel.id

        def track(_):
            session = session_factory()
            try:
                return update_aggregates(session, pixel_pk, "pageview", "same-session", SessionSnapshot(), now=NOW)
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(track, range(20)))

        assert sum(r.new_session for r in results) == 1

        check = session_factory()
        try:
            [stat] = check.query(DailyStat).filter(DailyStat.pixel_id == pixel_pk).all()
            assert stat.sessions == 1
            assert stat.pageviews == 20
        finally:
            check.close()
