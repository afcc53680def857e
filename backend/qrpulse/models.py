from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from .db import Base
from .utils import utcnow


class QRCode(Base):
    __tablename__ = "qrcodes"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, default="")
    description = Column(Text, nullable=True)
    type = Column(String(32), nullable=False, default="url")
    # Payload matching `type`, e.g. {"url": ...} or {"wifi": {...}}
    data = Column(JSON, default=dict)
    status = Column(String(16), nullable=False, default="active", index=True)
    is_dynamic = Column(Boolean, default=False)
    expires_at = Column(DateTime, nullable=True)
    scan_count = Column(Integer, nullable=False, default=0)
    last_scanned_at = Column(DateTime, nullable=True)
    # Use a callable default to avoid sharing a mutable dict across instances
    options = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    short_link = relationship("ShortLink", back_populates="qrcode", uselist=False, cascade="all, delete-orphan")

    @property
    def short_code(self):
        return self.short_link.short_code if self.short_link else None


class ShortLink(Base):
    __tablename__ = "short_links"
    id = Column(Integer, primary_key=True, index=True)
    short_code = Column(String(32), unique=True, index=True, nullable=False)
    qrcode_id = Column(Integer, ForeignKey("qrcodes.id", ondelete="CASCADE"), nullable=False, index=True)
    click_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    qrcode = relationship("QRCode", back_populates="short_link")


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_qrcode_session", "qrcode_id", "session_id"),
    )
    id = Column(Integer, primary_key=True, index=True)
    qrcode_id = Column(Integer, ForeignKey("qrcodes.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(16), nullable=False, default="scan")
    session_id = Column(String(64), nullable=False)
    timestamp = Column(DateTime, default=utcnow, index=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    referrer = Column(String, nullable=True)
    referrer_domain = Column(String, nullable=True)
    device = Column(JSON, default=dict)
    location = Column(JSON, default=dict)
    is_unique_visitor = Column(Boolean, default=False)

    qrcode = relationship("QRCode")
