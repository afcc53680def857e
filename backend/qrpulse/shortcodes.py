import logging
from dataclasses import dataclass
from typing import Callable
from datetime import datetime

from . import models
from .errors import ShortCodeNotFound, ShortCodeExhausted
from .utils import generate_short_code, utcnow, as_naive_utc, SHORT_CODE_LENGTH

logger = logging.getLogger(__name__)

MAX_COLLISION_ATTEMPTS = 10


@dataclass
class Resolution:
    qr_code: models.QRCode
    is_expired: bool
    is_active: bool


class ShortCodeResolver:
    """Maps public short codes to QR codes and hands out new codes."""

    def __init__(self, store, clock: Callable[[], datetime] = utcnow,
                 length: int = SHORT_CODE_LENGTH, max_attempts: int = MAX_COLLISION_ATTEMPTS):
        self.store = store
        self.clock = clock
        self.length = length
        self.max_attempts = max_attempts

    def resolve(self, short_code: str) -> Resolution:
        qr = self.store.find_by_short_code(short_code)
        if qr is None:
            raise ShortCodeNotFound(short_code)
        now = self.clock()
        is_expired = qr.expires_at is not None and now > as_naive_utc(qr.expires_at)
        return Resolution(qr_code=qr, is_expired=is_expired, is_active=qr.status == "active")

    def generate_short_code(self) -> str:
        for attempt in range(self.max_attempts):
            code = generate_short_code(self.length)
            if not self.store.short_code_exists(code):
                return code
            logger.info(f"Short code collision on attempt {attempt + 1}")
        raise ShortCodeExhausted(f"Failed to generate unique short code after {self.max_attempts} attempts")

    def create_short_link(self, qrcode_id: int) -> str:
        code = self.generate_short_code()
        self.store.create_short_link(qrcode_id, code)
        return code
