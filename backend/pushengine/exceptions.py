"""Exceptions raised by the push delivery engine."""


class PushEngineError(Exception):
    """Base class for push engine errors."""


class ConfigurationError(PushEngineError):
    """VAPID key pair or contact subject missing or invalid."""


class InvalidSubscriptionError(PushEngineError):
    """Registration input that can never be delivered to."""


class EncryptionError(PushEngineError):
    """Subscription key material could not be used to encrypt a payload."""


class SubscriptionGone(PushEngineError):
    """Relay reported the endpoint as expired or unknown (404/410)."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code} - {detail}" if detail else str(status_code))


class TransientDeliveryError(PushEngineError):
    """Any other relay rejection, network failure or timeout."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
