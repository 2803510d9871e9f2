"""
Forwarding of tracked events to the Meta Conversions API.

Every event accepted by the ingestion endpoint is mirrored server-side so it
still reaches the ad platform when the browser pixel is blocked. Forwarding
is best-effort: ``forward_event`` logs failures and never raises.

Outbound request (one event per call)::

    POST {META_GRAPH_BASE_URL}/{version}/{meta_pixel_id}/events
    {
        "data": [{
            "event_name": "AddToCart",
            "event_time": 1735689600,
            "event_id": "<stored event id>",
            "event_source_url": "https://shop.example/products/x",
            "action_source": "website",
            "user_data": {"client_ip_address": ..., "client_user_agent": ..., "external_id": ...},
            "custom_data": {...}
        }],
        "access_token": "...",
        "test_event_code": "TEST123"
    }
"""

from dataclasses import dataclass
from datetime import datetime
import re
import time
from typing import Any

from loguru import logger
import requests

from pixel_analytics.config import Settings, get_settings
from pixel_analytics.normalizer import sanitize_for_conversions
from pixel_analytics.pixels import CustomEventDefinition, PixelConfig
from pixel_analytics.schemas import TrackEvent

ACTION_SOURCE = "website"

# Graph API error code for an expired or invalidated access token
TOKEN_EXPIRED_CODE = 190

# Keyed by normalize_event_key(); one table for every spelling we accept.
STANDARD_EVENT_NAMES = {
    "pageview": "PageView",
    "viewcontent": "ViewContent",
    "addtocart": "AddToCart",
    "addtowishlist": "AddToWishlist",
    "initiatecheckout": "InitiateCheckout",
    "addpaymentinfo": "AddPaymentInfo",
    "purchase": "Purchase",
    "lead": "Lead",
    "completeregistration": "CompleteRegistration",
    "contact": "Contact",
    "search": "Search",
    "subscribe": "Subscribe",
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_event_key(event_name: str) -> str:
    return _SEPARATORS.sub("", event_name or "").lower()


def standard_event_name(event_name: str) -> str | None:
    """Map pageview/page_view/PageView and friends to the provider's standard name."""
    return STANDARD_EVENT_NAMES.get(normalize_event_key(event_name))


def is_pageview(event_name: str) -> bool:
    return standard_event_name(event_name) == "PageView"


def resolve_event_name(event_name: str, definition: CustomEventDefinition | None = None) -> str:
    if definition is not None and definition.meta_event_name:
        return definition.meta_event_name
    return standard_event_name(event_name) or event_name


def build_custom_data(event: TrackEvent, definition: CustomEventDefinition | None = None) -> dict[str, Any]:
    """Merge custom-event defaults, properties, commerce fields and custom data, then sanitize.

    Later sources win: defaults < properties < commerce fields < custom data.
    """
    data: dict[str, Any] = dict(definition.default_data) if definition else {}
    data.update(event.properties or {})

    commerce = {
        "value": event.value,
        "currency": event.currency,
        "product_id": event.product_id,
        "product_name": event.product_name,
        "quantity": event.quantity,
    }
    data.update({k: v for k, v in commerce.items() if v is not None})
    data.update(event.custom_data or {})

    return sanitize_for_conversions(data)


@dataclass(frozen=True)
class ClientContext:
    ip: str
    user_agent: str


def build_user_data(client: ClientContext, event: TrackEvent) -> dict[str, str]:
    user_data = {
        "client_ip_address": client.ip,
        "client_user_agent": client.user_agent,
        "external_id": event.visitor_key,
    }
    return {k: v for k, v in user_data.items() if v}


def build_server_event(
    event: TrackEvent,
    event_id: str,
    client: ClientContext,
    definition: CustomEventDefinition | None = None,
    event_time: int | None = None,
) -> dict[str, Any]:
    server_event: dict[str, Any] = {
        "event_name": resolve_event_name(event.event_name, definition),
        "event_time": event_time if event_time is not None else int(time.time()),
        "event_id": event_id,
        "action_source": ACTION_SOURCE,
        "user_data": build_user_data(client, event),
    }
    if event.url:
        server_event["event_source_url"] = event.url

    custom_data = build_custom_data(event, definition)
    if custom_data:
        server_event["custom_data"] = custom_data
    return server_event


class ConversionsAPIError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: int | None = None,
        subcode: int | None = None,
        fbtrace_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.subcode = subcode
        self.fbtrace_id = fbtrace_id

    @property
    def token_expired(self) -> bool:
        return self.code == TOKEN_EXPIRED_CODE

    def __str__(self) -> str:
        return f"{self.message} (status={self.status_code}, code={self.code}, subcode={self.subcode})"


class ConversionsClient:
    def __init__(self, settings: Settings | None = None, session: requests.Session | None = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    def events_url(self, meta_pixel_id: str) -> str:
        base = self.settings.META_GRAPH_BASE_URL.rstrip("/")
        return f"{base}/{self.settings.META_GRAPH_API_VERSION}/{meta_pixel_id}/events"

    def send(
        self,
        meta_pixel_id: str,
        access_token: str,
        events: list[dict[str, Any]],
        test_event_code: str | None = None,
    ) -> dict[str, Any]:
        """POST events; raise ``ConversionsAPIError`` on any non-success answer."""
        payload: dict[str, Any] = {"data": events, "access_token": access_token}
        if test_event_code:
            payload["test_event_code"] = test_event_code

        response = self.session.post(
            self.events_url(meta_pixel_id),
            json=payload,
            timeout=self.settings.CAPI_TIMEOUT_SECONDS,
        )

        try:
            body = response.json()
        except ValueError:
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if not response.ok or error:
            error = error if isinstance(error, dict) else {}
            raise ConversionsAPIError(
                error.get("message") or f"HTTP {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
                code=error.get("code"),
                subcode=error.get("error_subcode"),
                fbtrace_id=error.get("fbtrace_id"),
            )
        if not isinstance(body, dict):
            raise ConversionsAPIError("Malformed response from Conversions API", status_code=response.status_code)
        return body


@dataclass(frozen=True)
class ForwardResult:
    sent: bool
    event_name: str | None = None
    skipped_reason: str | None = None
    error: str | None = None
    token_expired: bool = False
    events_received: int | None = None


def forward_event(
    client: ConversionsClient,
    pixel: PixelConfig,
    event: TrackEvent,
    event_id: str,
    context: ClientContext,
) -> ForwardResult:
    """Send one event to the Conversions API. Never raises."""
    if not pixel.conversions_enabled:
        logger.debug(f"Conversions API not enabled for pixel {pixel.public_id}, skipping {event.event_name}")
        return ForwardResult(sent=False, skipped_reason="disabled")

    if pixel.meta_token_expires_at and pixel.meta_token_expires_at <= datetime.utcnow():
        logger.warning(
            f"Access token for pixel {pixel.public_id} expired at {pixel.meta_token_expires_at}, "
            f"not forwarding {event.event_name}"
        )
        return ForwardResult(sent=False, skipped_reason="token_expired", token_expired=True)

    if (event.custom_data or {}).get("test_event") is True and not pixel.meta_test_event_code:
        logger.info(f"Test event {event.event_name} not forwarded: pixel {pixel.public_id} has no test event code")
        return ForwardResult(sent=False, skipped_reason="test_event")

    definition = pixel.find_custom_event(event.event_name)
    try:
        server_event = build_server_event(event, event_id, context, definition)
        body = client.send(
            pixel.meta_pixel_id,
            pixel.meta_access_token,
            [server_event],
            pixel.meta_test_event_code,
        )
    except ConversionsAPIError as e:
        if e.token_expired:
            logger.warning(f"Conversions API rejected token for pixel {pixel.public_id}: {e}")
        else:
            logger.error(f"Conversions API error for event {event.event_name} on pixel {pixel.public_id}: {e}")
        return ForwardResult(sent=False, error=str(e), token_expired=e.token_expired)
    except requests.RequestException as e:
        logger.error(f"Conversions API request failed for event {event.event_name} on pixel {pixel.public_id}: {e}")
        return ForwardResult(sent=False, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error forwarding event {event.event_name} on pixel {pixel.public_id}")
        return ForwardResult(sent=False, error=str(e))

    logger.info(f"Forwarded {event.event_name} as {server_event['event_name']} to Conversions API (pixel {pixel.public_id})")
    return ForwardResult(
        sent=True,
        event_name=server_event["event_name"],
        events_received=body.get("events_received"),
    )
