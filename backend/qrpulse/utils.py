import secrets
import string
import time
from datetime import datetime, timezone

SHORT_CODE_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
SHORT_CODE_LENGTH = 8


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return ''.join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back for DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def now_ms() -> int:
    return int(time.time() * 1000)


def get_client_ip(request) -> str:
    """Best-effort client IP from proxy headers; the first forwarded entry wins."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    return "127.0.0.1"
