"""Payload encryptor - Web Push message encryption ("aesgcm" content encoding).

The older draft encoding is used on purpose: it carries the salt and the
ephemeral key in separate Encryption/Crypto-Key headers, which some relays
(notably Safari/iOS home-screen apps) still expect.

Per message:
    salt            16 random bytes
    ephemeral key   fresh P-256 key pair, public half sent as Crypto-Key dh=
    shared secret   ECDH(ephemeral private, client public)
    PRK             HKDF(ikm=shared, salt=auth, info="Content-Encoding: auth\\0", 32)
    CEK             HKDF(ikm=PRK, salt=salt, info=context("aesgcm"), 16)
    nonce           HKDF(ikm=PRK, salt=salt, info=context("nonce"), 12)
    record          u16be(0) || plaintext
    ciphertext      AES-128-GCM(CEK, nonce, record), tag appended
"""
import binascii
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from ..exceptions import EncryptionError
from ..utils.encoding import b64url_decode
from .crypto_provider import CryptoProvider, P256_POINT_LENGTH

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
AUTH_SECRET_LENGTH = 16
CEK_LENGTH = 16
NONCE_LENGTH = 12
PRK_LENGTH = 32

AUTH_INFO = b"Content-Encoding: auth\x00"
CONTENT_ENCODING = "aesgcm"


@dataclass(frozen=True)
class EncryptedMessage:
    """Output of one encryption; sent once and discarded."""
    ciphertext: bytes
    server_public_key: bytes
    salt: bytes


def hkdf(crypto: CryptoProvider, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
    """HKDF-SHA256 with a single expand block.

    Every output used by the protocol is at most 32 bytes, so T(1) is enough.
    """
    if length > 32:
        raise ValueError("Single-block HKDF cannot produce more than 32 bytes")
    prk = crypto.hmac_sha256(salt or bytes(32), ikm)
    okm = crypto.hmac_sha256(prk, info + b"\x01")
    return okm[:length]


def build_info(label: str, client_public_key: bytes, server_public_key: bytes) -> bytes:
    """Key-derivation context binding both public keys to the derived secret."""
    return b"".join([
        b"Content-Encoding: ",
        label.encode("ascii"),
        b"\x00",
        b"P-256",
        b"\x00",
        struct.pack(">H", len(client_public_key)),
        client_public_key,
        struct.pack(">H", len(server_public_key)),
        server_public_key,
    ])


def _as_bytes(value, name: str, expected_length: int) -> bytes:
    if isinstance(value, str):
        try:
            value = b64url_decode(value)
        except (binascii.Error, ValueError) as e:
            raise EncryptionError(f"{name} is not valid base64url: {e}") from e
    if len(value) != expected_length:
        raise EncryptionError(f"{name} must be {expected_length} bytes, got {len(value)}")
    return value


class PayloadEncryptor:
    """Encrypts payloads for a single subscription's key material."""

    def __init__(self, crypto: Optional[CryptoProvider] = None):
        self.crypto = crypto or CryptoProvider()

    def encrypt(self, payload: bytes, client_public_key, auth_secret) -> EncryptedMessage:
        """Encrypt payload bytes for one subscription.

        Args:
            payload: Plaintext bytes (usually the JSON notification)
            client_public_key: Subscription p256dh key, raw or base64url
            auth_secret: Subscription auth secret, raw or base64url

        Returns:
            EncryptedMessage with fresh salt and ephemeral public key

        Raises:
            EncryptionError: If the subscription key material is malformed
        """
        client_public_key = _as_bytes(client_public_key, "p256dh key", P256_POINT_LENGTH)
        auth_secret = _as_bytes(auth_secret, "auth secret", AUTH_SECRET_LENGTH)

        salt = self.crypto.random_bytes(SALT_LENGTH)
        ephemeral_private, server_public_key = self.crypto.generate_ecdh_key_pair()
        shared_secret = self.crypto.ecdh_derive_bits(ephemeral_private, client_public_key)

        prk = hkdf(self.crypto, shared_secret, auth_secret, AUTH_INFO, PRK_LENGTH)

        cek_info = build_info(CONTENT_ENCODING, client_public_key, server_public_key)
        nonce_info = build_info("nonce", client_public_key, server_public_key)
        cek = hkdf(self.crypto, prk, salt, cek_info, CEK_LENGTH)
        nonce = hkdf(self.crypto, prk, salt, nonce_info, NONCE_LENGTH)

        # No padding: a zero length prefix followed by the plaintext
        record = struct.pack(">H", 0) + payload
        ciphertext = self.crypto.aes_gcm_encrypt(cek, nonce, record)

        return EncryptedMessage(
            ciphertext=ciphertext,
            server_public_key=server_public_key,
            salt=salt,
        )
