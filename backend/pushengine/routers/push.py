"""Push subscription and delivery API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..exceptions import InvalidSubscriptionError
from ..schemas.push import (
    DeliveryResult,
    NotificationRequest,
    SubscriptionRegister,
    SubscriptionRegisterResponse,
    SubscriptionUnregisterResponse,
    VapidPublicKeyResponse,
)
from ..services.push_sender import PushSenderService
from ..services.reservation import ReservationService
from ..services.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push", tags=["push"])


def get_registry(request: Request) -> SubscriptionRegistry:
    return request.app.state.registry


def get_sender(request: Request) -> PushSenderService:
    return request.app.state.push_sender


def get_reservations(request: Request) -> ReservationService:
    return request.app.state.reservations


@router.get("/vapid-public-key", response_model=VapidPublicKeyResponse)
async def get_vapid_public_key(sender: PushSenderService = Depends(get_sender)):
    """Application server key the browser passes to pushManager.subscribe()."""
    if not sender.key_pair:
        raise HTTPException(status_code=404, detail="VAPID public key not configured")
    return VapidPublicKeyResponse(public_key=sender.key_pair.public_key_b64)


@router.post("/subscriptions", response_model=SubscriptionRegisterResponse)
async def register_subscription(
    request: SubscriptionRegister,
    registry: SubscriptionRegistry = Depends(get_registry),
):
    """Register a browser push subscription.

    Re-registering the same endpoint for the same owner refreshes its keys.
    The client should call this whenever the service worker subscribes.
    """
    try:
        subscription = await registry.register(
            owner_id=request.owner_id,
            endpoint=request.endpoint,
            p256dh_key=request.keys.p256dh,
            auth_key=request.keys.auth,
        )
    except InvalidSubscriptionError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return SubscriptionRegisterResponse(
        success=True,
        subscription_id=subscription.id,
        message="Subscription registered successfully",
    )


@router.delete("/subscriptions", response_model=SubscriptionUnregisterResponse)
async def unregister_subscription(
    owner_id: str = Query(..., min_length=1),
    endpoint: str = Query(..., min_length=1),
    registry: SubscriptionRegistry = Depends(get_registry),
):
    """Remove a subscription when the browser unsubscribes."""
    removed = await registry.unregister(owner_id, endpoint)
    if not removed:
        raise HTTPException(status_code=404, detail="Subscription not found")

    logger.info(f"Push subscription removed: {endpoint[:50]}...")
    return SubscriptionUnregisterResponse(success=True, removed=removed)


@router.post("/send", response_model=DeliveryResult)
async def send_notification(
    request: NotificationRequest,
    reservations: ReservationService = Depends(get_reservations),
):
    """Send a push notification to one recipient.

    With a reservation_key the notification is delivered at most once per
    (owner_id, reservation_key). With an event_type the key is derived from
    the event, its entity or the message content. Otherwise payload.tag is
    used when present.
    """
    if request.reservation_key:
        result = await reservations.send_once(
            request.owner_id,
            request.reservation_key,
            request.payload,
        )
    elif request.event_type:
        result = await reservations.send_event(
            request.owner_id,
            request.event_type,
            request.payload,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
        )
    else:
        result = await reservations.send(request.owner_id, request.payload)

    logger.info(f"Push request for {request.owner_id}: {result.model_dump()}")
    return result
