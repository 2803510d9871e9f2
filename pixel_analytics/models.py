from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from pixel_analytics.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Pixel(Base):
    """A merchant's tracking configuration. ``public_id`` is what the storefront script sends."""

    __tablename__ = "pixels"

    id = Column(String(36), primary_key=True, default=new_id)
    public_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    shop = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    settings = relationship("PixelSettings", uselist=False, back_populates="pixel")
    custom_events = relationship("CustomEvent", back_populates="pixel")


class PixelSettings(Base):
    __tablename__ = "pixel_settings"

    id = Column(String(36), primary_key=True, default=new_id)
    pixel_id = Column(String(36), ForeignKey("pixels.id"), unique=True, nullable=False)

    # Auto-tracking
    auto_track_pageviews = Column(Boolean, default=True, nullable=False)
    auto_track_clicks = Column(Boolean, default=True, nullable=False)
    auto_track_scroll = Column(Boolean, default=True, nullable=False)
    auto_track_view_content = Column(Boolean, default=True, nullable=False)
    auto_track_add_to_cart = Column(Boolean, default=True, nullable=False)
    auto_track_initiate_checkout = Column(Boolean, default=True, nullable=False)
    auto_track_purchase = Column(Boolean, default=True, nullable=False)

    # Privacy
    record_ip = Column(Boolean, default=True, nullable=False)
    record_location = Column(Boolean, default=True, nullable=False)
    record_session = Column(Boolean, default=True, nullable=False)

    # Conversions API
    meta_pixel_id = Column(String, nullable=True)
    meta_access_token = Column(String, nullable=True)
    meta_pixel_enabled = Column(Boolean, default=False, nullable=False)
    meta_verified = Column(Boolean, default=False, nullable=False)
    meta_test_event_code = Column(String, nullable=True)
    meta_token_expires_at = Column(DateTime, nullable=True)

    pixel = relationship("Pixel", back_populates="settings")


class CustomEvent(Base):
    __tablename__ = "custom_events"

    id = Column(String(36), primary_key=True, default=new_id)
    pixel_id = Column(String(36), ForeignKey("pixels.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    meta_event_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    event_type = Column(String, default="click", nullable=False)
    selector = Column(String, nullable=True)
    # JSON object of default custom_data sent with the event
    event_data = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    pixel = relationship("Pixel", back_populates="custom_events")


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    pixel_id = Column(String(36), ForeignKey("pixels.id"), index=True, nullable=False)
    event_name = Column(String, index=True, nullable=False)
    url = Column(String, nullable=True)
    referrer = Column(String, nullable=True)
    page_title = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Visitor identification
    session_id = Column(String, index=True, nullable=True)
    visitor_id = Column(String, nullable=True)
    fingerprint = Column(String, index=True, nullable=True)

    # Device/Browser Info
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    browser = Column(String, nullable=True)
    browser_version = Column(String, nullable=True)
    os = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    screen_width = Column(Integer, nullable=True)
    screen_height = Column(Integer, nullable=True)
    language = Column(String, nullable=True)

    # Attribution
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)
    utm_content = Column(String, nullable=True)

    # Commerce
    value = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    product_name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=True)

    # Geo
    city = Column(String, nullable=True)
    region = Column(String, nullable=True)
    country = Column(String, nullable=True)
    country_code = Column(String, nullable=True)
    timezone = Column(String, nullable=True)

    # Raw custom data, stored as sent
    custom_data = Column(JSON, nullable=True)


class AnalyticsSession(Base):
    __tablename__ = "analytics_sessions"
    __table_args__ = (UniqueConstraint("pixel_id", "session_id", name="uq_session_pixel"),)

    id = Column(String(36), primary_key=True, default=new_id)
    pixel_id = Column(String(36), ForeignKey("pixels.id"), nullable=False)
    session_id = Column(String, nullable=False)
    fingerprint = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    browser = Column(String, nullable=True)
    os = Column(String, nullable=True)
    device_type = Column(String, nullable=True)
    country = Column(String, nullable=True)
    pageviews = Column(Integer, default=0, nullable=False)
    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen = Column(DateTime, default=datetime.utcnow, nullable=False)


class DailyStat(Base):
    __tablename__ = "daily_stats"
    __table_args__ = (UniqueConstraint("pixel_id", "date", name="uq_daily_stat_pixel_date"),)

    id = Column(String(36), primary_key=True, default=new_id)
    pixel_id = Column(String(36), ForeignKey("pixels.id"), nullable=False)
    # UTC midnight
    date = Column(DateTime, nullable=False)
    pageviews = Column(Integer, default=0, nullable=False)
    unique_users = Column(Integer, default=0, nullable=False)
    sessions = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
