"""Crypto provider - the primitives Web Push needs, backed by `cryptography`.

Everything above this module (payload encryption, VAPID signing) is written
against these five operations only, so tests can substitute a provider with
fixed randomness and the protocol code never touches curve arithmetic.
"""
import os
from typing import Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import EncryptionError

CURVE = ec.SECP256R1()

# Uncompressed P-256 point: 0x04 || X(32) || Y(32)
P256_POINT_LENGTH = 65
P256_SCALAR_LENGTH = 32


class CryptoProvider:
    """P-256 / SHA-256 / AES-GCM operations used by the push protocol."""

    def random_bytes(self, length: int) -> bytes:
        return os.urandom(length)

    def generate_ecdh_key_pair(self) -> Tuple[ec.EllipticCurvePrivateKey, bytes]:
        """Fresh ephemeral key pair and its uncompressed public point."""
        private_key = ec.generate_private_key(CURVE)
        return private_key, self.public_point(private_key)

    def public_point(self, private_key: ec.EllipticCurvePrivateKey) -> bytes:
        return private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )

    def load_public_point(self, point: bytes) -> ec.EllipticCurvePublicKey:
        """Import an uncompressed P-256 point, rejecting anything off-curve."""
        if len(point) != P256_POINT_LENGTH or point[0] != 0x04:
            raise EncryptionError(
                f"Expected {P256_POINT_LENGTH}-byte uncompressed P-256 point, got {len(point)} bytes"
            )
        try:
            return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, point)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise EncryptionError(f"Invalid P-256 public key: {e}") from e

    def load_private_scalar(self, scalar: bytes) -> ec.EllipticCurvePrivateKey:
        """Build a signing key from a raw 32-byte big-endian scalar."""
        if len(scalar) != P256_SCALAR_LENGTH:
            raise ValueError(f"Expected {P256_SCALAR_LENGTH}-byte private key, got {len(scalar)} bytes")
        return ec.derive_private_key(int.from_bytes(scalar, "big"), CURVE)

    def ecdh_derive_bits(self, private_key: ec.EllipticCurvePrivateKey, peer_point: bytes) -> bytes:
        """32-byte ECDH shared secret (the X coordinate of the shared point)."""
        peer = self.load_public_point(peer_point)
        return private_key.exchange(ec.ECDH(), peer)

    def hmac_sha256(self, key: bytes, data: bytes) -> bytes:
        mac = hmac.HMAC(key, hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    def aes_gcm_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        """AES-GCM with a 128-bit tag appended to the ciphertext."""
        return AESGCM(key).encrypt(nonce, plaintext, None)

    def ecdsa_sign_p256_sha256(self, private_key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
        """ECDSA signature in raw r||s form (64 bytes), as JWS ES256 requires."""
        der = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return r.to_bytes(P256_SCALAR_LENGTH, "big") + s.to_bytes(P256_SCALAR_LENGTH, "big")
