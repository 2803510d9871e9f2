from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from pixel_analytics.conversions import ClientContext
from pixel_analytics.exceptions import PersistenceError, PixelNotFoundError, StoreUnavailableError
from pixel_analytics.models import DailyStat, Event

CLIENT = ClientContext(ip="127.0.0.1", user_agent="")


class TestIngestionService:
    def test_ingest_returns_stored_event(self, db, service, create_pixel, geo_http):
        create_pixel("px_svc")

        result = service.ingest(db, {"pixelId": "px_svc", "eventName": "pageview"}, CLIENT)

        stored = db.get(Event, result.event_id)
        assert stored is not None
        assert stored.device_type == "desktop"
        assert stored.browser == "Unknown"
        assert result.pixel.public_id == "px_svc"
        # loopback addresses are never sent to the geo service
        geo_http.get.assert_not_called()

    def test_unknown_pixel(self, db, service):
        with pytest.raises(PixelNotFoundError):
            service.ingest(db, {"pixelId": "px_none", "eventName": "pageview"}, CLIENT)

    def test_forward_uses_conversions_client(self, db, service, create_pixel, capi_enabled, capi_http):
        create_pixel("px_svc", **capi_enabled)
        result = service.ingest(db, {"pixelId": "px_svc", "eventName": "lead"}, CLIENT)

        outcome = service.forward(result)

        assert outcome.sent is True
        assert outcome.event_name == "Lead"
        assert capi_http.post.call_count == 1


class TestPersistErrors:
    def test_integrity_error_is_persistence_error(self, service):
        db = MagicMock()
        db.flush.side_effect = IntegrityError("INSERT", {}, Exception("constraint failed"))

        with pytest.raises(PersistenceError) as exc:
            service._persist(db, Event(pixel_id="p", event_name="pageview"))

        assert exc.value.status_code == 500
        db.rollback.assert_called_once()

    def test_connection_error_is_store_unavailable(self, service):
        db = MagicMock()
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with pytest.raises(StoreUnavailableError) as exc:
            service._persist(db, Event(pixel_id="p", event_name="pageview"))

        assert exc.value.status_code == 503
        db.rollback.assert_called_once()

    def test_unbindable_integer_is_persistence_error(self, service):
        db = MagicMock()
        db.flush.side_effect = OverflowError("Python int too large to convert to SQLite INTEGER")

        with pytest.raises(PersistenceError) as exc:
            service._persist(db, Event(pixel_id="p", event_name="addToCart"))

        assert exc.value.status_code == 500
        db.rollback.assert_called_once()
        db.commit.assert_not_called()


def test_fifty_concurrent_ingestions(session_factory, service, create_pixel):
    """Fifty first-events racing for the same pixel/day each count one session."""
    pixel_pk = create_pixel("px_busy").id

    def ingest(i):
        session = session_factory()
        try:
            body = {"pixelId": "px_busy", "eventName": "pageview", "sessionId": f"s-{i}", "fingerprint": f"fp-{i}"}
            return service.ingest(session, body, CLIENT).event_id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        event_ids = list(pool.map(ingest, range(50)))

    assert len(set(event_ids)) == 50
    check = session_factory()
    try:
        [stat] = check.query(DailyStat).filter(DailyStat.pixel_id == pixel_pk).all()
        assert (stat.pageviews, stat.sessions, stat.unique_users) == (50, 50, 50)
        assert check.query(Event).count() == 50
    finally:
        check.close()
