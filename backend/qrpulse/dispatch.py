"""Turns a resolved QR code into the response a scanner should get.

Link-like types become a 302 to their destination; the rest render a landing
page. Unknown types, and link types whose payload has no usable destination,
render the generic page, so every type value has exactly one outcome.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode, urlparse

from fastapi.templating import Jinja2Templates

from .schemas import validate_url_safety, URL_FIELDS

logger = logging.getLogger(__name__)

SAFE_LINK_SCHEMES = {"http", "https", "mailto", "tel", "sms"}


@dataclass(frozen=True)
class RedirectResult:
    url: str
    status_code: int = 302


@dataclass(frozen=True)
class ContentResult:
    html: str
    status_code: int = 200


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _safe_http_url(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return validate_url_safety(value.strip())
    except ValueError:
        return None


def _safe_link(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    if urlparse(value.strip()).scheme.lower() not in SAFE_LINK_SCHEMES:
        return None
    return value.strip()


# ---------------------------------------------------------------------------
# Redirect destinations
# ---------------------------------------------------------------------------

def _link_url(qr_type: str, data: Dict[str, Any]) -> Optional[str]:
    key, nested = URL_FIELDS[qr_type]
    value = data.get(key)
    if nested:
        value = value.get(nested) if isinstance(value, dict) else None
    return _safe_http_url(value)


def _phone_url(data):
    phone = data.get("phone")
    if isinstance(phone, dict):
        phone = phone.get("number")
    if not isinstance(phone, str) or not phone.strip():
        return None
    return "tel:" + phone.strip().replace(" ", "")


def _email_url(data):
    email = _section(data, "email")
    to = email.get("to")
    if not isinstance(to, str) or not to.strip():
        return None
    params = {k: email[k] for k in ("subject", "body") if email.get(k)}
    url = f"mailto:{to.strip()}"
    if params:
        url += "?" + urlencode(params, quote_via=quote)
    return url


def _sms_url(data):
    sms = _section(data, "sms")
    phone = sms.get("phone")
    if not isinstance(phone, str) or not phone.strip():
        return None
    url = "sms:" + phone.strip().replace(" ", "")
    if sms.get("message"):
        url += "?" + urlencode({"body": sms["message"]}, quote_via=quote)
    return url


def _location_url(data):
    location = _section(data, "location")
    try:
        lat = float(location["latitude"])
        lon = float(location["longitude"])
    except (KeyError, TypeError, ValueError, OverflowError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return f"https://www.google.com/maps/search/?api=1&query={lat},{lon}"


REDIRECT_BUILDERS = {
    "url": lambda data: _link_url("url", data),
    "pdf": lambda data: _link_url("pdf", data),
    "image": lambda data: _link_url("image", data),
    "video": lambda data: _link_url("video", data),
    "phone": _phone_url,
    "email": _email_url,
    "sms": _sms_url,
    "location": _location_url,
}


# ---------------------------------------------------------------------------
# Landing page contexts
# ---------------------------------------------------------------------------

def build_vcard(card: Dict[str, Any]) -> str:
    first = card.get("firstName", "") or ""
    last = card.get("lastName", "") or ""
    lines = ["BEGIN:VCARD", "VERSION:3.0", f"FN:{first} {last}".strip(), f"N:{last};{first};;;"]
    for field, prefix in (("organization", "ORG"), ("title", "TITLE"), ("email", "EMAIL"),
                          ("phone", "TEL"), ("website", "URL")):
        if card.get(field):
            lines.append(f"{prefix}:{card[field]}")
    if card.get("address"):
        lines.append(f"ADR:;;{card['address']};;;;")
    lines.append("END:VCARD")
    return "\r\n".join(lines)


def _vcard_context(data):
    card = _section(data, "vcard")
    return {
        "card": card,
        "website": _safe_http_url(card.get("website")),
        "vcard_text": build_vcard(card),
        "filename": f"{card.get('firstName', 'contact')}_{card.get('lastName', '')}".strip("_") + ".vcf",
    }


def _wifi_context(data):
    return {"wifi": _section(data, "wifi")}


def _text_context(data):
    text = data.get("text")
    return {"text": text if isinstance(text, str) else ""}


def _menu_context(data):
    menu = _section(data, "menu")
    categories = menu.get("categories") if isinstance(menu.get("categories"), list) else []
    return {"menu": menu, "categories": [c for c in categories if isinstance(c, dict)]}


def _calendar_stamp(value) -> str:
    return str(value or "").replace("-", "").replace(":", "").split(".")[0]


def _event_context(data):
    event = _section(data, "event")
    start = event.get("startDate")
    calendar_url = None
    if event.get("title") and start:
        end = event.get("endDate") or start
        calendar_url = "https://calendar.google.com/calendar/render?" + urlencode({
            "action": "TEMPLATE",
            "text": event["title"],
            "dates": f"{_calendar_stamp(start)}/{_calendar_stamp(end)}",
            "details": event.get("description") or "",
            "location": event.get("location") or "",
        })
    return {"event": event, "calendar_url": calendar_url}


def _multi_url_context(data):
    multi = _section(data, "multiUrl") or _section(data, "multi_url")
    links = []
    for link in multi.get("links") or []:
        if not isinstance(link, dict) or link.get("isActive") is False:
            continue
        url = _safe_link(link.get("url"))
        if url:
            links.append({"title": link.get("title") or url, "url": url, "icon": link.get("icon")})
    return {"multi": multi, "links": links}


def _payment_context(data):
    payment = _section(data, "payment")
    return {"payment": payment, "payment_type": str(payment.get("type") or "").upper()}


def _app_download_context(data):
    app = _section(data, "appDownload") or _section(data, "app_download")
    return {
        "app": app,
        "ios_url": _safe_http_url(app.get("iosUrl")),
        "android_url": _safe_http_url(app.get("androidUrl")),
        "fallback_url": _safe_http_url(app.get("fallbackUrl")),
    }


CONTENT_BUILDERS = {
    "vcard": _vcard_context,
    "wifi": _wifi_context,
    "text": _text_context,
    "menu": _menu_context,
    "event": _event_context,
    "multi_url": _multi_url_context,
    "payment": _payment_context,
    "app_download": _app_download_context,
}


class Dispatcher:
    def __init__(self, templates: Jinja2Templates):
        self.templates = templates

    def render(self, template: str, **context) -> str:
        return self.templates.get_template(f"landing/{template}.html").render(**context)

    def generic(self, qr_type) -> ContentResult:
        return ContentResult(self.render("generic", type=str(qr_type)))

    def dispatch(self, qr_code, short_code: Optional[str] = None):
        qr_type = qr_code.type
        data = qr_code.data if isinstance(qr_code.data, dict) else {}
        title = qr_code.name or None

        if qr_type in REDIRECT_BUILDERS:
            try:
                url = REDIRECT_BUILDERS[qr_type](data)
            except Exception:
                logger.error(f"Failed to build {qr_type} destination for QR code {qr_code.id}", exc_info=True)
                url = None
            if url:
                return RedirectResult(url)
            logger.warning(f"QR code {qr_code.id} ({qr_type}) has no usable destination")
            return self.generic(qr_type)

        if qr_type in CONTENT_BUILDERS:
            try:
                context = CONTENT_BUILDERS[qr_type](data)
                return ContentResult(self.render(qr_type, title=title, short_code=short_code, **context))
            except Exception:
                logger.error(f"Failed to render {qr_type} landing page for QR code {qr_code.id}", exc_info=True)
                return self.generic(qr_type)

        return self.generic(qr_type)
