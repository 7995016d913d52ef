"""DeliveryReservation model - at-most-once bookkeeping for push deliveries."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from ..database import Base


class DeliveryReservation(Base):
    """A claimed (owner_id, reservation_key) pair.

    finalized_at is NULL while the delivery is in flight and set once at least
    one endpoint accepted the message. Rows for deliveries that reached nobody
    are deleted so the key can be retried.
    """

    __tablename__ = "delivery_reservations"
    __table_args__ = (
        UniqueConstraint("owner_id", "reservation_key", name="uq_delivery_reservation_owner_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False)
    reservation_key = Column(String, nullable=False)
    reference_type = Column(String, nullable=True)  # push_tag, event, ...
    created_at = Column(DateTime, default=datetime.utcnow)
    finalized_at = Column(DateTime, nullable=True)
