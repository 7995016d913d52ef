"""VAPID - signed ES256 tokens identifying this server to push relays."""
import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit

from cryptography.hazmat.primitives.asymmetric import ec

from ..exceptions import ConfigurationError
from ..utils.encoding import b64url_decode, b64url_encode
from .crypto_provider import CryptoProvider, P256_POINT_LENGTH, P256_SCALAR_LENGTH

logger = logging.getLogger(__name__)

# Relays reject tokens valid for more than 24h
TOKEN_LIFETIME_SECONDS = 12 * 60 * 60

JWT_HEADER = {"typ": "JWT", "alg": "ES256"}


def _b64_json(obj: dict) -> str:
    return b64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


@dataclass(frozen=True)
class VapidKeyPair:
    """Long-lived application server key pair, loaded once per process."""
    public_key: bytes
    private_key: bytes
    _signing_key: ec.EllipticCurvePrivateKey = field(repr=False, compare=False, default=None)

    @property
    def public_key_b64(self) -> str:
        return b64url_encode(self.public_key)

    @property
    def signing_key(self) -> ec.EllipticCurvePrivateKey:
        if self._signing_key is None:
            return CryptoProvider().load_private_scalar(self.private_key)
        return self._signing_key

    @classmethod
    def from_bytes(
        cls,
        public_key: bytes,
        private_key: bytes,
        crypto: Optional[CryptoProvider] = None,
    ) -> "VapidKeyPair":
        """Validate raw key material and bind the signing key.

        Raises:
            ConfigurationError: If lengths are wrong or the keys do not match
        """
        crypto = crypto or CryptoProvider()
        if len(public_key) != P256_POINT_LENGTH or public_key[0] != 0x04:
            raise ConfigurationError(
                f"VAPID public key must be a {P256_POINT_LENGTH}-byte uncompressed P-256 point"
            )
        if len(private_key) != P256_SCALAR_LENGTH:
            raise ConfigurationError(f"VAPID private key must be {P256_SCALAR_LENGTH} bytes")
        try:
            signing_key = crypto.load_private_scalar(private_key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid VAPID private key: {e}") from e
        if crypto.public_point(signing_key) != public_key:
            raise ConfigurationError("VAPID public key does not match the private key")
        return cls(public_key=public_key, private_key=private_key, _signing_key=signing_key)

    @classmethod
    def from_base64(
        cls,
        public_key: Optional[str],
        private_key: Optional[str],
        crypto: Optional[CryptoProvider] = None,
    ) -> "VapidKeyPair":
        """Load the key pair from its base64url configuration values."""
        if not public_key or not private_key:
            raise ConfigurationError("VAPID keys not configured")
        try:
            public_bytes = b64url_decode(public_key)
            private_bytes = b64url_decode(private_key)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"VAPID keys are not valid base64url: {e}") from e
        return cls.from_bytes(public_bytes, private_bytes, crypto)


def generate_vapid_keys(crypto: Optional[CryptoProvider] = None) -> dict:
    """Generate a new VAPID key pair.

    Returns:
        {"public_key": str, "private_key": str}, both URL-safe base64 without padding

    Note:
        Store the private key securely in environment variables or a vault.
        The public key is shared with clients for subscription.
    """
    crypto = crypto or CryptoProvider()
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(P256_SCALAR_LENGTH, "big")
    return {
        "public_key": b64url_encode(crypto.public_point(private_key)),
        "private_key": b64url_encode(private_bytes),
    }


def audience_for(endpoint: str) -> str:
    """Origin of a relay endpoint, used as the token audience."""
    parts = urlsplit(endpoint)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Endpoint is not an absolute URL: {endpoint[:50]}")
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}"


class VapidSigner:
    """Builds per-origin VAPID tokens. Tokens are never cached across relays."""

    def __init__(self, key_pair: VapidKeyPair, crypto: Optional[CryptoProvider] = None):
        self.key_pair = key_pair
        self.crypto = crypto or CryptoProvider()

    def sign(
        self,
        audience: str,
        subject: str,
        expires_in: int = TOKEN_LIFETIME_SECONDS,
        now: Optional[float] = None,
    ) -> str:
        """Return a compact JWS (header.claims.signature) for one relay origin."""
        issued = int(now if now is not None else time.time())
        claims = {
            "aud": audience,
            "exp": issued + expires_in,
            "sub": subject,
        }
        signing_input = f"{_b64_json(JWT_HEADER)}.{_b64_json(claims)}"
        signature = self.crypto.ecdsa_sign_p256_sha256(
            self.key_pair.signing_key,
            signing_input.encode("ascii"),
        )
        return f"{signing_input}.{b64url_encode(signature)}"

    def authorization_header(self, token: str) -> str:
        return f"vapid t={token}, k={self.key_pair.public_key_b64}"
