"""Services for encrypting, signing, dispatching and de-duplicating pushes."""
from .crypto_provider import CryptoProvider
from .payload_encryptor import PayloadEncryptor, EncryptedMessage
from .vapid import VapidKeyPair, VapidSigner, generate_vapid_keys
from .subscription_registry import SubscriptionRegistry
from .push_sender import PushSenderService, AttemptOutcome
from .reservation import ReservationService, build_reservation_key

__all__ = [
    "CryptoProvider",
    "PayloadEncryptor",
    "EncryptedMessage",
    "VapidKeyPair",
    "VapidSigner",
    "generate_vapid_keys",
    "SubscriptionRegistry",
    "PushSenderService",
    "AttemptOutcome",
    "ReservationService",
    "build_reservation_key",
]
