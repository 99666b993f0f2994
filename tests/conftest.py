# fulfillment_ledger/tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - pytest-qt owns QApplication (use qapp/qtbot fixtures), offscreen platform
# - No network: controllers talk to the in-memory FakeGateway (factories.py)
# - Reference cache runs on a throwaway SQLite DB per test
# - Coroutines are driven with asyncio.run inside each test
# - Silence benign Qt signal warnings
# ---------------------------------------------------------------------

from __future__ import annotations

import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import re

import pytest
from PySide6 import QtCore

from fulfillment_ledger.database import get_connection
from fulfillment_ledger.database.repositories.reference_cache_repo import ReferenceCacheRepo

from factories import FakeGateway


# ---------- Qt: let pytest-qt own the app ----------
@pytest.fixture(scope="session")
def app(qapp):  # alias to match code that expects an `app` fixture
    return qapp


# ---------- Silence benign Qt warnings ----------
_BENIGN_QT_PATTERNS = [
    r"^QObject::connect: .* already connected",
    r"^QObject::disconnect: Unexpected null parameter",
]


@pytest.fixture(autouse=True, scope="session")
def _silence_benign_qt():
    """Filter common harmless Qt messages during tests."""
    rx = [re.compile(p) for p in _BENIGN_QT_PATTERNS]

    def handler(msg_type, context, message):
        text = str(message)
        for r in rx:
            if r.search(text):
                return  # swallow benign messages
        print(text)

    original = QtCore.qInstallMessageHandler(handler)
    try:
        yield
    finally:
        QtCore.qInstallMessageHandler(original)


# ---------- Reference cache on a temp DB ----------
@pytest.fixture()
def cache_conn(tmp_path):
    con = get_connection(tmp_path / "reference_cache.db")
    try:
        yield con
    finally:
        con.close()


@pytest.fixture()
def clock():
    """Controllable time source for TTL checks."""
    class _Clock:
        now = 1_000_000.0

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture()
def ref_cache(cache_conn, clock) -> ReferenceCacheRepo:
    return ReferenceCacheRepo(cache_conn, ttl_seconds=600, clock=clock)


# ---------- Fake back-office API ----------
@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


# ---------- Signal spies ----------
@pytest.fixture()
def spy():
    """
    spy(signal) -> list that collects every emission
    (single-arg signals store the value, multi-arg ones a tuple).
    """
    def _attach(signal):
        seen = []
        signal.connect(lambda *args: seen.append(args[0] if len(args) == 1 else args))
        return seen

    return _attach
