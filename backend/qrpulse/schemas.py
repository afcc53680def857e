from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Optional, Any, Dict, List, Literal, get_args
from datetime import datetime
from urllib.parse import urlparse

# Blocked URL schemes that could be used for phishing or attacks
BLOCKED_SCHEMES = {'javascript', 'data', 'vbscript', 'file'}

# Blocked domains commonly used for phishing (can be extended)
BLOCKED_DOMAINS = set()

RedirectType = Literal["url", "phone", "email", "sms", "location", "pdf", "image", "video"]
ContentType = Literal["vcard", "wifi", "text", "menu", "event", "multi_url", "payment", "app_download"]
QRType = Literal[RedirectType, ContentType]
QRStatus = Literal["active", "inactive", "archived"]

REDIRECT_TYPES = get_args(RedirectType)
CONTENT_TYPES = get_args(ContentType)
QR_TYPES = REDIRECT_TYPES + CONTENT_TYPES

# Payload key holding the destination URL for the link-like types
URL_FIELDS = {
    "url": ("url", None),
    "pdf": ("pdf", "fileUrl"),
    "image": ("image", "imageUrl"),
    "video": ("video", "videoUrl"),
}


def validate_url_safety(url: str) -> str:
    """Validate that URL is safe (no javascript:, data:, etc.)"""
    if not url:
        return url

    url_lower = url.lower().strip()

    # Check for blocked schemes
    for scheme in BLOCKED_SCHEMES:
        if url_lower.startswith(f"{scheme}:"):
            raise ValueError(f"URL scheme '{scheme}:' is not allowed")

    parsed = urlparse(url)
    allowed_schemes = {'http', 'https'}
    if parsed.scheme.lower() not in allowed_schemes:
        raise ValueError(f"URL scheme '{parsed.scheme}' is not allowed. Use http or https.")

    if parsed.netloc.lower() in BLOCKED_DOMAINS:
        raise ValueError("This domain is not allowed")

    return url


def _check_payload(qr_type: str, data: Dict[str, Any]):
    if qr_type not in URL_FIELDS:
        return
    key, nested = URL_FIELDS[qr_type]
    value = data.get(key)
    if nested and isinstance(value, dict):
        value = value.get(nested)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{qr_type}' QR codes need a destination URL")
    validate_url_safety(value)


class DeviceInfo(BaseModel):
    type: Literal["mobile", "tablet", "desktop"] = "desktop"
    os: str = "Unknown"
    browser: str = "Unknown"
    version: str = "Unknown"


class LocationInfo(BaseModel):
    country: Optional[str] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: Optional[str] = None
    postal_code: Optional[str] = None
    isp: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class QRCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: QRType = "url"
    data: Dict[str, Any]
    is_dynamic: Optional[bool] = True
    status: QRStatus = "active"
    expires_at: Optional[datetime] = None
    options: Optional[Dict[str, Any]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_payload(self):
        _check_payload(self.type, self.data)
        return self


class QRUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    status: Optional[QRStatus] = None
    expires_at: Optional[datetime] = None
    clear_expiry: bool = False
    options: Optional[Dict[str, Any]] = None


class QROut(BaseModel):
    id: int
    name: Optional[str] = None
    type: str
    data: Dict[str, Any]
    status: str
    is_dynamic: bool
    short_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    scan_count: int = 0
    last_scanned_at: Optional[datetime] = None
    options: Dict[str, Any]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("options", "data", mode="before")
    @classmethod
    def default_dict(cls, v):
        return v or {}


class CountItem(BaseModel):
    label: str
    count: int


class AnalyticsSummary(BaseModel):
    total_scans: int
    unique_scans: int
    labels: List[str]
    series: List[int]
    top_devices: List[CountItem]
    top_browsers: List[CountItem]
    top_countries: List[CountItem]
