"""
Read-only pixel configuration snapshots.

Pixel settings and custom events are managed elsewhere; the ingestion path
only reads them, through a short-lived cache.
"""

from dataclasses import dataclass, field
from datetime import datetime
import json
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from pixel_analytics.cache import TTLCache
from pixel_analytics.models import CustomEvent, Pixel


@dataclass(frozen=True)
class CustomEventDefinition:
    name: str
    display_name: str
    meta_event_name: str | None = None
    event_type: str = "click"
    selector: str | None = None
    default_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PixelConfig:
    id: str
    public_id: str
    name: str

    record_ip: bool = True
    record_location: bool = True
    record_session: bool = True

    auto_track_pageviews: bool = True
    auto_track_clicks: bool = True
    auto_track_scroll: bool = True
    auto_track_view_content: bool = True
    auto_track_add_to_cart: bool = True
    auto_track_initiate_checkout: bool = True
    auto_track_purchase: bool = True

    meta_pixel_id: str | None = None
    meta_access_token: str | None = None
    meta_pixel_enabled: bool = False
    meta_verified: bool = False
    meta_test_event_code: str | None = None
    meta_token_expires_at: datetime | None = None

    custom_events: tuple[CustomEventDefinition, ...] = ()

    @property
    def conversions_enabled(self) -> bool:
        return bool(
            self.meta_pixel_enabled
            and self.meta_verified
            and self.meta_pixel_id
            and self.meta_access_token
        )

    def find_custom_event(self, event_name: str) -> CustomEventDefinition | None:
        for definition in self.custom_events:
            if definition.name == event_name:
                return definition
        return None


def _parse_default_data(row: CustomEvent) -> dict[str, Any]:
    if not row.event_data:
        return {}
    try:
        data = json.loads(row.event_data)
    except json.JSONDecodeError as e:
        logger.error(f"Ignoring invalid event_data on custom event {row.name!r}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Ignoring non-object event_data on custom event {row.name!r}")
        return {}
    return data


def build_pixel_config(pixel: Pixel, custom_events: list[CustomEvent]) -> PixelConfig:
    definitions = tuple(
        CustomEventDefinition(
            name=row.name,
            display_name=row.display_name,
            meta_event_name=row.meta_event_name or None,
            event_type=row.event_type,
            selector=row.selector,
            default_data=_parse_default_data(row),
        )
        for row in custom_events
    )

    s = pixel.settings
    if s is None:
        return PixelConfig(id=pixel.id, public_id=pixel.public_id, name=pixel.name, custom_events=definitions)

    return PixelConfig(
        id=pixel.id,
        public_id=pixel.public_id,
        name=pixel.name,
        record_ip=s.record_ip,
        record_location=s.record_location,
        record_session=s.record_session,
        auto_track_pageviews=s.auto_track_pageviews,
        auto_track_clicks=s.auto_track_clicks,
        auto_track_scroll=s.auto_track_scroll,
        auto_track_view_content=s.auto_track_view_content,
        auto_track_add_to_cart=s.auto_track_add_to_cart,
        auto_track_initiate_checkout=s.auto_track_initiate_checkout,
        auto_track_purchase=s.auto_track_purchase,
        meta_pixel_id=s.meta_pixel_id,
        meta_access_token=s.meta_access_token,
        meta_pixel_enabled=s.meta_pixel_enabled,
        meta_verified=s.meta_verified,
        meta_test_event_code=s.meta_test_event_code or None,
        meta_token_expires_at=s.meta_token_expires_at,
        custom_events=definitions,
    )


class PixelConfigRepository:
    KEY_PREFIX = "pixel:"

    def __init__(self, cache: TTLCache, ttl: float | None = None):
        self.cache = cache
        self.ttl = ttl

    def get(self, db: Session, public_id: str) -> PixelConfig | None:
        key = f"{self.KEY_PREFIX}{public_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        pixel = db.query(Pixel).filter(Pixel.public_id == public_id).first()
        if pixel is None:
            return None

        custom_events = (
            db.query(CustomEvent)
            .filter(CustomEvent.pixel_id == pixel.id, CustomEvent.is_active.is_(True))
            .all()
        )
        config = build_pixel_config(pixel, custom_events)
        self.cache.set(key, config, self.ttl)
        return config

    def invalidate(self, public_id: str) -> bool:
        return self.cache.delete(f"{self.KEY_PREFIX}{public_id}")
