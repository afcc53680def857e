import sys

import pytest

from backend.qrpulse import models, schemas
from backend.qrpulse.config import Settings


def test_qrcode_defaults(session_factory):
    db = session_factory()
    try:
        q = models.QRCode(type="url", data={"url": "https://example.com"})
        db.add(q)
        db.commit()
        db.refresh(q)
        assert isinstance(q.options, dict)
        assert q.options == {}
        assert q.status == "active"
        assert q.scan_count == 0
        assert q.short_code is None
    finally:
        db.close()


def test_pydantic_qrcreate_defaults():
    qr = schemas.QRCreate(data={"url": "https://example.com"})
    assert qr.type == "url"
    assert qr.is_dynamic is True
    assert qr.status == "active"
    assert qr.options == {}


@pytest.mark.parametrize("url", [
    "javascript:alert(1)",
    "data:text/html,<b>x</b>",
    "ftp://files.example.com/a",
    "",
])
def test_qrcreate_rejects_unsafe_destinations(url):
    with pytest.raises(ValueError):
        schemas.QRCreate(type="url", data={"url": url})


def test_qrcreate_checks_nested_destination():
    schemas.QRCreate(type="pdf", data={"pdf": {"fileUrl": "https://files.example.com/a.pdf"}})
    with pytest.raises(ValueError):
        schemas.QRCreate(type="pdf", data={"pdf": {"fileUrl": "vbscript:run"}})


def test_content_types_need_no_url():
    qr = schemas.QRCreate(type="wifi", data={"wifi": {"ssid": "CafeNet"}})
    assert qr.data["wifi"]["ssid"] == "CafeNet"


def test_unknown_type_is_rejected():
    with pytest.raises(ValueError):
        schemas.QRCreate(type="hologram", data={})


def test_settings_defaults():
    s = Settings()
    assert s.redirect_shortcode_limit == 1000
    assert s.redirect_ip_limit == 500
    assert s.redirect_window_seconds == 3600
    assert s.redis_url is None


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("REDIRECT_IP_LIMIT", "50")
    monkeypatch.setenv("GEOIP_ENABLED", "false")
    monkeypatch.setenv("BASE_URL", "https://qr.example.com/")
    monkeypatch.setenv("SECRET_KEY", "s3cret")
    monkeypatch.setenv("ADMIN_PASSWORD", "adminpw")
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = Settings.from_env()
    assert s.database_url == "sqlite:///./other.db"
    assert s.redis_url == "redis://cache:6379/1"
    assert s.redirect_ip_limit == 50
    assert s.geoip_enabled is False
    assert s.base_url == "https://qr.example.com"
    assert s.log_level == "DEBUG"
    assert s.secret_key == "s3cret"
    assert s.admin_password == "adminpw"
    assert s.access_token_expire_minutes == 30


def test_settings_require_database_on_vercel(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("VERCEL", "1")
    with pytest.raises(ValueError):
        Settings.from_env()


def test_serverless_entry_builds_app(tmp_path, monkeypatch):
    import importlib
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'entry.db'}")
    monkeypatch.delenv("VERCEL", raising=False)
    monkeypatch.delitem(sys.modules, "api.index", raising=False)
    entry = importlib.import_module("api.index")
    assert entry.app.state.settings.database_url.endswith("entry.db")


def test_type_lists_match_accepted_types():
    from typing import get_args
    from backend.qrpulse.dispatch import REDIRECT_BUILDERS, CONTENT_BUILDERS

    assert set(get_args(schemas.QRType)) == set(schemas.QR_TYPES)
    assert len(schemas.QR_TYPES) == 16
    assert set(REDIRECT_BUILDERS) == set(schemas.REDIRECT_TYPES)
    assert set(CONTENT_BUILDERS) == set(schemas.CONTENT_TYPES)
    payload = {"url": "https://example.com", "pdf": {"fileUrl": "https://example.com/a.pdf"},
               "image": {"imageUrl": "https://example.com/a.png"}, "video": {"videoUrl": "https://example.com/v"}}
    for qr_type in schemas.QR_TYPES:
        assert schemas.QRCreate(type=qr_type, data=payload).type == qr_type
