import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from . import models
from .schemas import DeviceInfo, LocationInfo, AnalyticsSummary, CountItem
from .utils import utcnow

logger = logging.getLogger(__name__)


def generate_session_id(ip_address: str, user_agent: str, timestamp_ms: int) -> str:
    """Visitor fingerprint: first 32 hex chars of sha256("{ip}-{ua}-{timestamp}").

    The request timestamp is part of the hash, so two requests from the same
    visitor only share a session id when their timestamps coincide.
    """
    raw = f"{ip_address}-{user_agent}-{timestamp_ms}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


def referrer_domain(referrer: Optional[str]) -> Optional[str]:
    if not referrer:
        return None
    try:
        return urlparse(referrer).hostname
    except ValueError:
        return None


@dataclass
class ScanContext:
    qrcode_id: int
    short_code: str
    session_id: str
    ip_address: str
    user_agent: str
    referrer: str
    device: DeviceInfo
    scanned_at: datetime
    event_type: str = "scan"


class ScanRecorder:
    """Best-effort scan bookkeeping. Nothing here ever raises to the caller."""

    def __init__(self, qr_store, analytics_store, geolocator):
        self.qr_store = qr_store
        self.analytics_store = analytics_store
        self.geolocator = geolocator

    def is_unique_visitor(self, qrcode_id: int, session_id: str) -> bool:
        # Check-then-insert without a transaction: simultaneous scans with the
        # same fingerprint may both count as unique.
        try:
            return self.analytics_store.find_event(qrcode_id, session_id) is None
        except Exception:
            logger.error("Error checking unique visitor", exc_info=True)
            return False

    def record_scan(self, ctx: ScanContext, location: Optional[LocationInfo] = None):
        try:
            if location is None:
                location = self.geolocator.locate(ctx.ip_address)
            unique = self.is_unique_visitor(ctx.qrcode_id, ctx.session_id)
            event = models.AnalyticsEvent(
                qrcode_id=ctx.qrcode_id,
                event_type=ctx.event_type,
                session_id=ctx.session_id,
                timestamp=ctx.scanned_at,
                user_agent=ctx.user_agent,
                ip_address=ctx.ip_address,
                referrer=ctx.referrer or None,
                referrer_domain=referrer_domain(ctx.referrer),
                device=ctx.device.model_dump(),
                location=location.model_dump(exclude_none=True),
                is_unique_visitor=unique,
            )
            self.analytics_store.insert_event(event)
        except Exception:
            logger.error(f"Failed to record analytics event for QR code {ctx.qrcode_id}", exc_info=True)

    def track(self, ctx: ScanContext):
        """Everything a successful scan updates; each step fails independently."""
        self.record_scan(ctx)

        try:
            self.qr_store.update_last_accessed(ctx.short_code, ctx.scanned_at)
        except Exception:
            logger.error(f"Failed to update redirect tracking for {ctx.short_code}", exc_info=True)

        try:
            self.qr_store.increment_scan_count(ctx.qrcode_id, ctx.scanned_at)
        except Exception:
            logger.error(f"Failed to increment scan count for QR code {ctx.qrcode_id}", exc_info=True)


def _top(counter: Counter, n: int = 5):
    return [CountItem(label=label, count=count) for label, count in counter.most_common(n)]


def summarize(db: Session, qrcode_id: int, days: int = 30, now: Optional[datetime] = None) -> AnalyticsSummary:
    """Aggregate scan events of one QR code over the past ``days`` days."""
    now = now or utcnow()
    cutoff = now - timedelta(days=days)
    events = db.query(models.AnalyticsEvent)\
        .filter(models.AnalyticsEvent.qrcode_id == qrcode_id,
                models.AnalyticsEvent.event_type == "scan",
                models.AnalyticsEvent.timestamp >= cutoff)\
        .all()

    per_day = Counter()
    devices, browsers, countries = Counter(), Counter(), Counter()
    unique = 0
    for e in events:
        per_day[e.timestamp.date()] += 1
        device = e.device or {}
        devices[device.get("type", "unknown")] += 1
        browsers[device.get("browser", "Unknown")] += 1
        country = (e.location or {}).get("country")
        if country:
            countries[country] += 1
        if e.is_unique_visitor:
            unique += 1

    # build timeseries for all days (fill zeros)
    days_list = [(now - timedelta(days=i)).date() for i in range(days - 1, -1, -1)]
    return AnalyticsSummary(
        total_scans=len(events),
        unique_scans=unique,
        labels=[d.isoformat() for d in days_list],
        series=[per_day.get(d, 0) for d in days_list],
        top_devices=_top(devices),
        top_browsers=_top(browsers),
        top_countries=_top(countries),
    )
