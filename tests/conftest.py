import sys
import os
import pytest

# make sure the repository root is on sys.path for test collection
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi.testclient import TestClient

from backend.qrpulse import models
from backend.qrpulse.config import Settings
from backend.qrpulse.db import make_engine, make_session_factory, ensure_tables
from backend.qrpulse.main import create_app


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    # Use a dedicated sqlite file per test; no Redis, no outbound geolocation
    return Settings(database_url=f"sqlite:///{tmp_path / 'test.db'}", geoip_enabled=False,
                    admin_password="secretpw", secret_key="test-secret")


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url)
    ensure_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def app(settings, engine):
    return create_app(settings=settings, engine=engine)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_qr(session_factory):
    """Insert a QR code (and its short link) straight into the database; returns its id."""

    def _make(type="url", data=None, short_code=None, status="active", expires_at=None,
              name="", is_dynamic=True):
        with session_factory() as db:
            q = models.QRCode(
                name=name,
                type=type,
                data=data if data is not None else {"url": "https://example.com"},
                status=status,
                expires_at=expires_at,
                is_dynamic=is_dynamic,
            )
            if short_code:
                q.short_link = models.ShortLink(short_code=short_code)
            db.add(q)
            db.commit()
            return q.id

    return _make


@pytest.fixture
def get_qr(session_factory):
    def _get(qrcode_id):
        with session_factory() as db:
            return db.get(models.QRCode, qrcode_id)

    return _get


@pytest.fixture
def admin_headers(client):
    r = client.post('/admin/login', data={'password': 'secretpw'}, follow_redirects=False)
    assert r.status_code == 302
    return {"Authorization": f"Bearer {r.cookies['admin_token']}"}
