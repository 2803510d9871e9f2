from datetime import datetime
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from pixel_analytics.cache import TTLCache
from pixel_analytics.config import Settings
from pixel_analytics.conversions import ConversionsClient
from pixel_analytics.database import create_db_engine, get_db, init_db
from pixel_analytics.geo import GeoResolver
from pixel_analytics.ingestion import IngestionService
from pixel_analytics.main import app, get_ingestion_service
from pixel_analytics.models import CustomEvent, Pixel, PixelSettings
from pixel_analytics.pixels import PixelConfigRepository


def make_response(status_code=200, payload=None):
    """A stand-in for ``requests.Response`` as returned by a mocked session."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = json.dumps(payload) if payload is not None else ""
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        LOG_DIR="",
        GEO_LOOKUP_ENABLED=True,
        META_GRAPH_BASE_URL="https://graph.example.test",
        META_GRAPH_API_VERSION="v20.0",
        PUBLIC_BASE_URL="https://track.example.test",
    )


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'pixels.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def create_pixel(db):
    """Factory seeding a pixel, its settings and optional custom events."""

    def _create(public_id="px_test", custom_events=(), **overrides):
        pixel = Pixel(public_id=public_id, name=f"Pixel {public_id}", shop="demo.myshopify.com")
        db.add(pixel)
        db.flush()

        values = {
            "record_ip": True,
            "record_location": True,
            "record_session": True,
            "meta_pixel_enabled": False,
            "meta_verified": False,
        }
        values.update(overrides)
        db.add(PixelSettings(pixel_id=pixel.id, **values))

        for ce in custom_events:
            event_data = ce.get("event_data")
            db.add(
                CustomEvent(
                    pixel_id=pixel.id,
                    name=ce["name"],
                    display_name=ce.get("display_name", ce["name"]),
                    meta_event_name=ce.get("meta_event_name"),
                    is_active=ce.get("is_active", True),
                    event_type=ce.get("event_type", "click"),
                    selector=ce.get("selector"),
                    event_data=json.dumps(event_data) if isinstance(event_data, dict) else event_data,
                    created_at=datetime.utcnow(),
                )
            )
        db.commit()
        return pixel

    return _create


@pytest.fixture
def capi_enabled():
    """Settings overrides for a pixel with a verified Conversions API connection."""
    return {
        "meta_pixel_enabled": True,
        "meta_verified": True,
        "meta_pixel_id": "1234567890",
        "meta_access_token": "EAAB-test-token",
    }


@pytest.fixture
def geo_http():
    session = MagicMock()
    session.get.return_value = make_response(
        200,
        {
            "status": "success",
            "city": "Berlin",
            "regionName": "Berlin",
            "country": "Germany",
            "countryCode": "DE",
            "timezone": "Europe/Berlin",
        },
    )
    return session


@pytest.fixture
def capi_http():
    session = MagicMock()
    session.post.return_value = make_response(200, {"events_received": 1, "fbtrace_id": "trace"})
    return session


@pytest.fixture
def service(settings, geo_http, capi_http):
    # TTL of 0 disables caching so tests can change pixel settings freely
    return IngestionService(
        pixels=PixelConfigRepository(TTLCache(default_ttl=0)),
        geo=GeoResolver(settings, session=geo_http),
        conversions=ConversionsClient(settings, session=capi_http),
    )


@pytest.fixture
def client(session_factory, service, settings, monkeypatch):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr("pixel_analytics.main.get_settings", lambda: settings)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ingestion_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def response_factory():
    return make_response
