"""Push notification schemas for API and service calls."""
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """What the service worker receives after decryption."""
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    tag: Optional[str] = None  # Dedup key across callers
    data: Dict[str, Any] = Field(default_factory=dict)  # Target URL, correlation ids


class DeliveryResult(BaseModel):
    """Aggregate outcome of one notification request."""
    sent: int = 0
    failed: int = 0
    skipped_duplicate: bool = False  # Another delivery already owns the reservation key


class SubscriptionKeys(BaseModel):
    """Key material from PushSubscription.toJSON() in the browser."""
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class SubscriptionRegister(BaseModel):
    """Schema for registering a push subscription."""
    owner_id: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys


class SubscriptionRegisterResponse(BaseModel):
    """Response after registering a subscription."""
    success: bool
    subscription_id: str
    message: str


class SubscriptionUnregisterResponse(BaseModel):
    """Response after removing subscriptions for an endpoint."""
    success: bool
    removed: int


class NotificationRequest(BaseModel):
    """Request to notify one recipient."""
    owner_id: str = Field(..., min_length=1)
    reservation_key: Optional[str] = None
    event_type: Optional[str] = None  # Derives the reservation key when none is given
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    payload: NotificationPayload


class VapidPublicKeyResponse(BaseModel):
    """Application server key handed to browsers for subscribing."""
    public_key: str
