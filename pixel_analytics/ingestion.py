"""
The tracking pipeline for a single inbound event.

    normalize -> resolve pixel -> enrich -> persist -> aggregate -> forward

Only normalization, pixel resolution and persistence can fail the request.
Aggregation and forwarding run after the event row is committed and are
contained: a broken rollup or an ad-platform outage must not break a
storefront page.
"""

from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from pixel_analytics.aggregator import SessionSnapshot, update_aggregates
from pixel_analytics.conversions import ClientContext, ConversionsClient, ForwardResult, forward_event
from pixel_analytics.device import get_device_type, parse_user_agent
from pixel_analytics.exceptions import PersistenceError, PixelNotFoundError, StoreUnavailableError
from pixel_analytics.geo import GeoData, GeoResolver
from pixel_analytics.models import Event
from pixel_analytics.normalizer import normalize
from pixel_analytics.pixels import PixelConfig, PixelConfigRepository
from pixel_analytics.schemas import TrackEvent

# Connection-level failures mean the store is unreachable rather than the write being bad
_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


@dataclass(frozen=True)
class IngestResult:
    event_id: str
    event: TrackEvent
    pixel: PixelConfig
    client: ClientContext


class IngestionService:
    def __init__(
        self,
        pixels: PixelConfigRepository,
        geo: GeoResolver,
        conversions: ConversionsClient,
    ):
        self.pixels = pixels
        self.geo = geo
        self.conversions = conversions

    def ingest(self, db: Session, body: dict[str, Any], client: ClientContext) -> IngestResult:
        """Validate, enrich and store one event, then update rollups.

        Raises:
            InvalidPayloadError, MissingFieldsError: bad request body (400).
            PixelNotFoundError: unknown pixel id (404).
            StoreUnavailableError: the database cannot be reached (503).
            PersistenceError: the event row could not be written (500).
        """
        event = normalize(body)
        logger.info(f"Processing event {event.event_name} for pixel {event.pixel_id}")

        pixel = self._resolve_pixel(db, event.pixel_id)

        device = parse_user_agent(client.user_agent)
        device_type = get_device_type(client.user_agent, event.screen_width)
        geo = self.geo.lookup(client.ip) if pixel.record_location else GeoData.empty()
        ip_address = client.ip if pixel.record_ip else None

        row = Event(
            pixel_id=pixel.id,
            event_name=event.event_name,
            url=event.url,
            referrer=event.referrer,
            page_title=event.page_title,
            session_id=event.session_id,
            visitor_id=event.visitor_id,
            fingerprint=event.fingerprint,
            user_agent=client.user_agent or None,
            ip_address=ip_address,
            browser=device.browser,
            browser_version=device.browser_version,
            os=device.os,
            os_version=device.os_version,
            device_type=device_type,
            screen_width=event.screen_width,
            screen_height=event.screen_height,
            language=event.language,
            utm_source=event.utm_source,
            utm_medium=event.utm_medium,
            utm_campaign=event.utm_campaign,
            utm_term=event.utm_term,
            utm_content=event.utm_content,
            value=event.value,
            currency=event.currency,
            product_id=event.product_id,
            product_name=event.product_name,
            quantity=event.quantity,
            city=geo.city,
            region=geo.region,
            country=geo.country,
            country_code=geo.country_code,
            timezone=geo.timezone,
            custom_data=event.custom_data,
        )
        event_id = self._persist(db, row)
        logger.info(f"Event {event_id} ({event.event_name}) stored for pixel {pixel.public_id}")

        snapshot = SessionSnapshot(
            fingerprint=event.visitor_key,
            ip_address=ip_address,
            user_agent=client.user_agent or None,
            browser=device.browser,
            os=device.os,
            device_type=device_type,
            country=geo.country,
        )
        try:
            update_aggregates(
                db,
                pixel.id,
                event.event_name,
                event.session_id,
                snapshot,
                record_sessions=pixel.record_session,
            )
        except Exception:
            logger.exception(f"Session/rollup update failed for event {event_id}, event kept")

        return IngestResult(event_id=event_id, event=event, pixel=pixel, client=client)

    def forward(self, result: IngestResult) -> ForwardResult:
        """Best-effort Conversions API call for an ingested event."""
        return forward_event(self.conversions, result.pixel, result.event, result.event_id, result.client)

    def _resolve_pixel(self, db: Session, public_id: str) -> PixelConfig:
        try:
            pixel = self.pixels.get(db, public_id)
        except _UNAVAILABLE_ERRORS as e:
            logger.error(f"Database unavailable while resolving pixel {public_id}: {e}")
            raise StoreUnavailableError(e) from e
        if pixel is None:
            logger.warning(f"Pixel not found: {public_id}")
            raise PixelNotFoundError(public_id)
        return pixel

    def _persist(self, db: Session, row: Event) -> str:
        try:
            db.add(row)
            db.flush()
            event_id = row.id
            db.commit()
        except _UNAVAILABLE_ERRORS as e:
            db.rollback()
            logger.error(f"Database unavailable while storing {row.event_name}: {e}")
            raise StoreUnavailableError(e) from e
        except (SQLAlchemyError, OverflowError) as e:
            # sqlite3 raises a bare OverflowError for integers it cannot bind
            db.rollback()
            logger.exception(f"Failed to store event {row.event_name}")
            raise PersistenceError(e) from e
        return event_id
