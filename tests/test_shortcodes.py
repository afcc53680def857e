from datetime import datetime, timedelta

import pytest

from backend.qrpulse.errors import ShortCodeNotFound, ShortCodeExhausted
from backend.qrpulse.shortcodes import ShortCodeResolver
from backend.qrpulse.stores import QRCodeStore
from backend.qrpulse.utils import SHORT_CODE_ALPHABET, generate_short_code


NOW = datetime(2024, 6, 1, 12, 0, 0)


class CollidingStore:
    """Reports the first `taken` candidates as already used."""

    def __init__(self, taken):
        self.taken = taken
        self.checked = []
        self.created = []

    def short_code_exists(self, code):
        self.checked.append(code)
        return len(self.checked) <= self.taken

    def create_short_link(self, qrcode_id, code):
        self.created.append((qrcode_id, code))


@pytest.fixture
def resolver(session_factory):
    return ShortCodeResolver(QRCodeStore(session_factory), clock=lambda: NOW)


def test_resolve_active_code(resolver, make_qr):
    qid = make_qr(short_code="abc12345")
    res = resolver.resolve("abc12345")
    assert res.qr_code.id == qid
    assert res.is_active is True
    assert res.is_expired is False


def test_resolve_unknown_code(resolver):
    with pytest.raises(ShortCodeNotFound):
        resolver.resolve("nope0000")


def test_resolve_is_case_sensitive(resolver, make_qr):
    make_qr(short_code="AbCdEfGh")
    with pytest.raises(ShortCodeNotFound):
        resolver.resolve("abcdefgh")


def test_expired_flag(resolver, make_qr):
    make_qr(short_code="past0001", expires_at=NOW - timedelta(seconds=1))
    make_qr(short_code="futr0001", expires_at=NOW + timedelta(days=1))
    assert resolver.resolve("past0001").is_expired is True
    assert resolver.resolve("futr0001").is_expired is False


def test_inactive_flag(resolver, make_qr):
    make_qr(short_code="paus0001", status="inactive")
    res = resolver.resolve("paus0001")
    assert res.is_active is False
    assert res.is_expired is False


def test_resolve_is_repeatable(resolver, make_qr):
    make_qr(short_code="same0001")
    first = resolver.resolve("same0001")
    second = resolver.resolve("same0001")
    assert (first.qr_code.id, first.is_expired, first.is_active) == \
        (second.qr_code.id, second.is_expired, second.is_active)


def test_generated_codes_use_alphabet():
    for _ in range(50):
        code = generate_short_code()
        assert len(code) == 8
        assert set(code) <= set(SHORT_CODE_ALPHABET)


def test_generate_retries_on_collision():
    store = CollidingStore(taken=3)
    code = ShortCodeResolver(store).generate_short_code()
    assert len(store.checked) == 4
    assert code == store.checked[-1]


def test_generate_gives_up_after_max_attempts():
    store = CollidingStore(taken=100)
    with pytest.raises(ShortCodeExhausted):
        ShortCodeResolver(store, max_attempts=10).generate_short_code()
    assert len(store.checked) == 10


def test_create_short_link_persists(resolver, make_qr):
    qid = make_qr(short_code=None)
    code = resolver.create_short_link(qid)
    assert resolver.resolve(code).qr_code.id == qid
