"""Pydantic schemas for API request/response models."""
from .push import (
    NotificationPayload,
    DeliveryResult,
    SubscriptionKeys,
    SubscriptionRegister,
    SubscriptionRegisterResponse,
    SubscriptionUnregisterResponse,
    NotificationRequest,
    VapidPublicKeyResponse,
)

__all__ = [
    "NotificationPayload",
    "DeliveryResult",
    "SubscriptionKeys",
    "SubscriptionRegister",
    "SubscriptionRegisterResponse",
    "SubscriptionUnregisterResponse",
    "NotificationRequest",
    "VapidPublicKeyResponse",
]
