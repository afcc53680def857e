import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi.templating import Jinja2Templates

from .analytics import ScanRecorder, ScanContext, generate_session_id
from .classify import classify, GeoLocator
from .dispatch import Dispatcher
from .errors import QRCodeExpired, QRCodeInactive, RateLimited
from .ratelimit import RateLimiter, build_rate_limit_store
from .shortcodes import ShortCodeResolver
from .stores import QRCodeStore, AnalyticsStore
from .utils import now_ms, utcnow

logger = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")


@dataclass
class ScanRequest:
    short_code: str
    ip_address: str
    user_agent: str = ""
    referrer: str = ""


class RedirectPipeline:
    """Rate limit -> resolve -> classify -> (track in background) -> dispatch."""

    def __init__(self, rate_limiter: RateLimiter, resolver: ShortCodeResolver,
                 recorder: ScanRecorder, dispatcher: Dispatcher,
                 clock: Callable[[], int] = now_ms):
        self.rate_limiter = rate_limiter
        self.resolver = resolver
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.clock = clock

    def handle(self, scan: ScanRequest, schedule: Callable):
        """Run the redirect path for one request.

        ``schedule(func, *args)`` queues work to run after the response is sent;
        the scan bookkeeping goes through it so it never delays the redirect.
        Raises RateLimited, ShortCodeNotFound, QRCodeExpired or QRCodeInactive.
        """
        limit = self.rate_limiter.check_redirect_limit(scan.short_code, scan.ip_address)
        if limit.limited:
            raise RateLimited(limit)

        resolution = self.resolver.resolve(scan.short_code)
        qr = resolution.qr_code
        if resolution.is_expired:
            raise QRCodeExpired(f"QR code {qr.id} has expired")
        if not resolution.is_active:
            raise QRCodeInactive(f"QR code {qr.id} is inactive")

        ctx = ScanContext(
            qrcode_id=qr.id,
            short_code=scan.short_code,
            session_id=generate_session_id(scan.ip_address, scan.user_agent, self.clock()),
            ip_address=scan.ip_address,
            user_agent=scan.user_agent,
            referrer=scan.referrer,
            device=classify(scan.user_agent),
            scanned_at=utcnow(),
        )
        schedule(self.recorder.track, ctx)

        return self.dispatcher.dispatch(qr, scan.short_code)


def build_pipeline(settings, session_factory, geolocator: Optional[GeoLocator] = None,
                   rate_limit_store=None, templates: Optional[Jinja2Templates] = None) -> RedirectPipeline:
    """Wire the redirect pipeline from settings. Any collaborator can be swapped in."""
    qr_store = QRCodeStore(session_factory)
    analytics_store = AnalyticsStore(session_factory)
    if geolocator is None:
        geolocator = GeoLocator(
            url_template=settings.geoip_url,
            timeout=settings.geoip_timeout_seconds,
            enabled=settings.geoip_enabled,
        )
    if rate_limit_store is None:
        rate_limit_store = build_rate_limit_store(settings)
    rate_limiter = RateLimiter(
        rate_limit_store,
        shortcode_limit=settings.redirect_shortcode_limit,
        ip_limit=settings.redirect_ip_limit,
        window_ms=settings.redirect_window_seconds * 1000,
    )
    return RedirectPipeline(
        rate_limiter=rate_limiter,
        resolver=ShortCodeResolver(qr_store),
        recorder=ScanRecorder(qr_store, analytics_store, geolocator),
        dispatcher=Dispatcher(templates or Jinja2Templates(directory=TEMPLATES_DIR)),
    )
