from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field
from typing import Annotated, Any, Dict, Optional
import math

# Signed 32-bit, the narrowest INTEGER column among supported stores
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1


def _to_str(v: Any) -> Optional[str]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        return v.strip() or None
    return None


def _to_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    try:
        number = v if isinstance(v, int) else int(float(v))
    except (TypeError, ValueError, OverflowError):
        return None
    if not INT_MIN <= number <= INT_MAX:
        return None
    return number


def _to_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        number = float(v)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _to_dict(v: Any) -> Optional[Dict[str, Any]]:
    return v if isinstance(v, dict) else None


LooseStr = Annotated[Optional[str], BeforeValidator(_to_str)]
LooseInt = Annotated[Optional[int], BeforeValidator(_to_int)]
LooseFloat = Annotated[Optional[float], BeforeValidator(_to_float)]
LooseDict = Annotated[Optional[Dict[str, Any]], BeforeValidator(_to_dict)]


class TrackPayload(BaseModel):
    """
    Raw tracking envelope as sent by the storefront script.

    Every field is optional and leniently coerced; required-field checks
    happen when the envelope is turned into a ``TrackEvent``.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    pixel_id: LooseStr = Field(None, validation_alias=AliasChoices("pixelId", "appId", "pixel_id"))
    event_name: LooseStr = Field(None, validation_alias=AliasChoices("eventName", "event_name", "event"))
    url: LooseStr = None
    referrer: LooseStr = None
    page_title: LooseStr = Field(None, validation_alias=AliasChoices("pageTitle", "page_title"))

    # Visitor identification
    session_id: LooseStr = Field(None, validation_alias=AliasChoices("sessionId", "session_id"))
    visitor_id: LooseStr = Field(None, validation_alias=AliasChoices("visitorId", "visitor_id"))
    fingerprint: LooseStr = None

    # Device info reported by the browser
    screen_width: LooseInt = Field(None, validation_alias=AliasChoices("screenWidth", "screen_width"))
    screen_height: LooseInt = Field(None, validation_alias=AliasChoices("screenHeight", "screen_height"))
    language: LooseStr = None

    # Attribution
    utm_source: LooseStr = Field(None, validation_alias=AliasChoices("utmSource", "utm_source"))
    utm_medium: LooseStr = Field(None, validation_alias=AliasChoices("utmMedium", "utm_medium"))
    utm_campaign: LooseStr = Field(None, validation_alias=AliasChoices("utmCampaign", "utm_campaign"))
    utm_term: LooseStr = Field(None, validation_alias=AliasChoices("utmTerm", "utm_term"))
    utm_content: LooseStr = Field(None, validation_alias=AliasChoices("utmContent", "utm_content"))

    # Commerce
    value: LooseFloat = None
    currency: LooseStr = None
    product_id: LooseStr = Field(None, validation_alias=AliasChoices("productId", "product_id"))
    product_name: LooseStr = Field(None, validation_alias=AliasChoices("productName", "product_name"))
    quantity: LooseInt = None

    # Custom Data
    custom_data: LooseDict = Field(None, validation_alias=AliasChoices("customData", "custom_data"))
    properties: LooseDict = None


class TrackEvent(BaseModel):
    """Canonical event produced by the normalizer; the only shape the pipeline sees."""

    model_config = ConfigDict(frozen=True)

    pixel_id: str
    event_name: str
    url: Optional[str] = None
    referrer: Optional[str] = None
    page_title: Optional[str] = None
    session_id: Optional[str] = None
    visitor_id: Optional[str] = None
    fingerprint: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    language: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    value: Optional[float] = None
    currency: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Optional[int] = None
    custom_data: Optional[Dict[str, Any]] = None
    # Forwarded underneath custom_data; stored only when custom_data is absent
    properties: Optional[Dict[str, Any]] = None

    @property
    def visitor_key(self) -> Optional[str]:
        return self.fingerprint or self.visitor_id


class TrackResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    event_id: Optional[str] = Field(None, serialization_alias="eventId")
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
