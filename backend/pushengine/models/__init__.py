"""Database models."""
from .push_subscription import PushSubscription
from .delivery_reservation import DeliveryReservation

__all__ = ["PushSubscription", "DeliveryReservation"]
