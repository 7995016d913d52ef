"""Shared test fixtures for the push engine.

- Temporary SQLite database per test (aiosqlite)
- Browser-side subscription key material
- A fake push relay built on httpx.MockTransport
- A reference "aesgcm" decryptor, written independently of the package
"""

import os
import struct
import tempfile
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# Keep the process-wide engine away from /data (must be set before import)
os.environ.setdefault("DATA_PATH", tempfile.mkdtemp(prefix="pushengine-"))

from pushengine.database import build_engine, build_session_factory, init_db  # noqa: E402
from pushengine.models import PushSubscription  # noqa: E402
from pushengine.services.push_sender import PushSenderService  # noqa: E402
from pushengine.services.subscription_registry import SubscriptionRegistry  # noqa: E402
from pushengine.services.vapid import VapidKeyPair, generate_vapid_keys  # noqa: E402
from pushengine.utils.encoding import b64url_decode, b64url_encode  # noqa: E402


SUBJECT = "mailto:ops@example.com"


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator:
    """Async engine on a throwaway SQLite file with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'push.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def registry(session_factory):
    return SubscriptionRegistry(session_factory)


async def add_subscription(session_factory, owner_id, endpoint, p256dh_key, auth_key) -> str:
    """Insert a row directly, bypassing registration checks."""
    async with session_factory() as session:
        sub = PushSubscription(
            owner_id=owner_id,
            endpoint=endpoint,
            p256dh_key=p256dh_key,
            auth_key=auth_key,
        )
        session.add(sub)
        await session.commit()
        return sub.id


# ─────────────────────────────────────────────────────────────────────────────
# Key Material
# ─────────────────────────────────────────────────────────────────────────────


class BrowserSubscription:
    """Key material a browser generates for one push subscription."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_key = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )
        self.auth_secret = os.urandom(16)

    @property
    def p256dh(self) -> str:
        return b64url_encode(self.public_key)

    @property
    def auth(self) -> str:
        return b64url_encode(self.auth_secret)


@pytest.fixture
def browser():
    return BrowserSubscription()


@pytest.fixture(scope="session")
def vapid_key_pair() -> VapidKeyPair:
    keys = generate_vapid_keys()
    return VapidKeyPair.from_base64(keys["public_key"], keys["private_key"])


# ─────────────────────────────────────────────────────────────────────────────
# Fake Relay
# ─────────────────────────────────────────────────────────────────────────────


class FakeRelay:
    """Records POSTs and answers with a per-endpoint status (default 201)."""

    def __init__(self, default_status: int = 201):
        self.default_status = default_status
        self.statuses: dict[str, int] = {}
        self.errors: dict[str, Exception] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.errors:
            raise self.errors[url]
        return httpx.Response(self.statuses.get(url, self.default_status), text="")

    def client_factory(self):
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def requests_to(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == endpoint]


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def sender(registry, vapid_key_pair, relay) -> PushSenderService:
    return PushSenderService(
        registry=registry,
        key_pair=vapid_key_pair,
        subject=SUBJECT,
        http_client_factory=relay.client_factory(),
        default_icon="/icon.png",
        default_badge="/badge.png",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Reference Decryptor
# ─────────────────────────────────────────────────────────────────────────────


def _hkdf(ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def decrypt_aesgcm(
    ciphertext: bytes,
    salt: bytes,
    server_public_key: bytes,
    browser: BrowserSubscription,
) -> bytes:
    """Decrypt an "aesgcm" Web Push message the way a user agent does."""
    server_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), server_public_key)
    shared = browser.private_key.exchange(ec.ECDH(), server_key)
    prk = _hkdf(shared, browser.auth_secret, b"Content-Encoding: auth\x00", 32)

    context = (
        b"P-256\x00"
        + struct.pack(">H", len(browser.public_key)) + browser.public_key
        + struct.pack(">H", len(server_public_key)) + server_public_key
    )
    cek = _hkdf(prk, salt, b"Content-Encoding: aesgcm\x00" + context, 16)
    nonce = _hkdf(prk, salt, b"Content-Encoding: nonce\x00" + context, 12)

    record = AESGCM(cek).decrypt(nonce, ciphertext, None)
    padding = struct.unpack(">H", record[:2])[0]
    return record[2 + padding:]


def parse_header_params(value: str) -> dict:
    """'dh=abc; p256ecdsa=def' -> {'dh': 'abc', 'p256ecdsa': 'def'}"""
    params = {}
    for part in value.split(";"):
        if "=" in part:
            key, _, val = part.strip().partition("=")
            params[key] = val
    return params


def decrypt_request(request: httpx.Request, browser: BrowserSubscription) -> bytes:
    """Decrypt the body of a captured relay request."""
    dh = parse_header_params(request.headers["Crypto-Key"])["dh"]
    salt = parse_header_params(request.headers["Encryption"])["salt"]
    return decrypt_aesgcm(request.content, b64url_decode(salt), b64url_decode(dh), browser)
