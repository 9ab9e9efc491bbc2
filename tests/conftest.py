from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from server import create_app
from tailburn_backend.identity import IdentityError
from tailburn_backend.session import TransferSession
from tailburn_backend.shutdown import ShutdownSignal

TARGET = "alice@example.com"
SENDER = "sender@example.com"
CONTENT = b"%PDF-1.4 abc"  # 12 bytes
COOP = {"X-Tail-Burn-Client": "true"}


class FakeResolver:
    def __init__(self, login: str = TARGET, sender: str = SENDER, fail: bool = False, self_fail: bool = False):
        self.login = login
        self.sender = sender
        self.fail = fail
        self.self_fail = self_fail
        self.lookups: list[str] = []

    def resolve(self, peer_address: str) -> str:
        self.lookups.append(peer_address)
        if self.fail:
            raise IdentityError("whois failed")
        return self.login

    def self_identity(self) -> str:
        if self.self_fail:
            raise IdentityError("status failed")
        return self.sender


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "report.pdf"
    path.write_bytes(CONTENT)
    return path


@pytest.fixture
def session(source_file):
    return TransferSession.create(source_file, TARGET)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def signal():
    return ShutdownSignal()


@pytest.fixture
def app(session, resolver, signal):
    return create_app(session, resolver, signal, browser_shutdown_delay=0.05)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
