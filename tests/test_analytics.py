from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from backend.qrpulse import models
from backend.qrpulse.analytics import (
    ScanContext, ScanRecorder, generate_session_id, referrer_domain, summarize,
)
from backend.qrpulse.schemas import DeviceInfo, LocationInfo
from backend.qrpulse.stores import QRCodeStore, AnalyticsStore


class StaticLocator:
    def __init__(self, location=None):
        self.location = location or LocationInfo()
        self.calls = []

    def locate(self, ip):
        self.calls.append(ip)
        return self.location


class FailingAnalyticsStore:
    def find_event(self, qrcode_id, session_id):
        raise RuntimeError("db down")

    def insert_event(self, event):
        raise RuntimeError("db down")


def make_ctx(qrcode_id, short_code="trk00001", session_id="s1", **kw):
    fields = dict(
        qrcode_id=qrcode_id,
        short_code=short_code,
        session_id=session_id,
        ip_address="8.8.8.8",
        user_agent="Mozilla/5.0",
        referrer="https://news.example.org/article?id=1",
        device=DeviceInfo(type="mobile", os="iOS", browser="Mobile Safari", version="17.1"),
        scanned_at=datetime(2024, 6, 1, 12, 0, 0),
    )
    fields.update(kw)
    return ScanContext(**fields)


@pytest.fixture
def recorder(session_factory):
    return ScanRecorder(QRCodeStore(session_factory), AnalyticsStore(session_factory),
                        StaticLocator(LocationInfo(country="Germany", city="Berlin")))


def events_for(session_factory, qrcode_id):
    with session_factory() as db:
        return db.query(models.AnalyticsEvent)\
            .filter(models.AnalyticsEvent.qrcode_id == qrcode_id)\
            .order_by(models.AnalyticsEvent.id).all()


def test_session_id_shape_and_determinism():
    a = generate_session_id("1.2.3.4", "UA", 1700000000000)
    assert a == generate_session_id("1.2.3.4", "UA", 1700000000000)
    assert len(a) == 32
    int(a, 16)


def test_session_id_changes_with_any_input():
    base = generate_session_id("1.2.3.4", "UA", 1700000000000)
    assert generate_session_id("1.2.3.5", "UA", 1700000000000) != base
    assert generate_session_id("1.2.3.4", "UB", 1700000000000) != base
    assert generate_session_id("1.2.3.4", "UA", 1700000000001) != base


def test_referrer_domain():
    assert referrer_domain("https://news.example.org/a?b=c") == "news.example.org"
    assert referrer_domain("") is None
    assert referrer_domain(None) is None


def test_record_scan_stores_event(recorder, make_qr, session_factory):
    qid = make_qr(short_code="trk00001")
    recorder.record_scan(make_ctx(qid))

    [event] = events_for(session_factory, qid)
    assert event.event_type == "scan"
    assert event.session_id == "s1"
    assert event.ip_address == "8.8.8.8"
    assert event.referrer_domain == "news.example.org"
    assert event.device["type"] == "mobile"
    assert event.location == {"country": "Germany", "city": "Berlin"}
    assert event.is_unique_visitor is True


def test_repeat_session_is_not_unique(recorder, make_qr, session_factory):
    qid = make_qr(short_code="trk00001")
    recorder.record_scan(make_ctx(qid, session_id="same"))
    recorder.record_scan(make_ctx(qid, session_id="same"))
    recorder.record_scan(make_ctx(qid, session_id="other"))

    flags = [e.is_unique_visitor for e in events_for(session_factory, qid)]
    assert flags == [True, False, True]


def test_uniqueness_is_per_qr_code(recorder, make_qr):
    first = make_qr(short_code="uniq0001")
    second = make_qr(short_code="uniq0002")
    recorder.record_scan(make_ctx(first, session_id="shared"))
    assert recorder.is_unique_visitor(second, "shared") is True
    assert recorder.is_unique_visitor(first, "shared") is False


def test_unique_check_failure_means_not_unique(session_factory):
    recorder = ScanRecorder(QRCodeStore(session_factory), FailingAnalyticsStore(), StaticLocator())
    assert recorder.is_unique_visitor(1, "s1") is False


def test_record_scan_swallows_store_errors(session_factory, caplog):
    recorder = ScanRecorder(QRCodeStore(session_factory), FailingAnalyticsStore(), StaticLocator())
    recorder.record_scan(make_ctx(1))
    assert "Failed to record analytics event" in caplog.text


def test_track_updates_counters_even_if_event_fails(make_qr, get_qr, session_factory):
    qid = make_qr(short_code="trk00001")
    recorder = ScanRecorder(QRCodeStore(session_factory), FailingAnalyticsStore(), StaticLocator())
    ctx = make_ctx(qid)
    recorder.track(ctx)

    qr = get_qr(qid)
    assert qr.scan_count == 1
    assert qr.last_scanned_at == ctx.scanned_at
    with session_factory() as db:
        link = db.query(models.ShortLink).filter_by(short_code="trk00001").one()
        assert link.click_count == 1
        assert link.last_accessed_at == ctx.scanned_at


def test_concurrent_increments_are_not_lost(make_qr, get_qr, session_factory):
    qid = make_qr(short_code="busy0001")
    store = QRCodeStore(session_factory)
    at = datetime(2024, 6, 1, 12, 0, 0)

    with ThreadPoolExecutor(max_workers=10) as pool:
        list(pool.map(lambda _: store.increment_scan_count(qid, at), range(100)))

    assert get_qr(qid).scan_count == 100


def test_summarize_counts_and_fills_days(recorder, make_qr, session_factory):
    qid = make_qr(short_code="sum00001")
    now = datetime(2024, 6, 10, 12, 0, 0)
    recorder.record_scan(make_ctx(qid, session_id="a", scanned_at=now - timedelta(days=1)))
    recorder.record_scan(make_ctx(qid, session_id="a", scanned_at=now - timedelta(days=1)))
    recorder.record_scan(make_ctx(qid, session_id="b", scanned_at=now,
                                  device=DeviceInfo(type="desktop", browser="Chrome")))
    # outside the window
    recorder.record_scan(make_ctx(qid, session_id="c", scanned_at=now - timedelta(days=40)))

    with session_factory() as db:
        summary = summarize(db, qid, days=7, now=now)

    assert summary.total_scans == 3
    assert summary.unique_scans == 2
    assert len(summary.labels) == 7
    assert summary.labels[-1] == "2024-06-10"
    assert summary.series[-2:] == [2, 1]
    assert sum(summary.series) == 3
    assert summary.top_devices[0].label == "mobile"
    assert summary.top_devices[0].count == 2
    assert summary.top_countries[0].label == "Germany"
