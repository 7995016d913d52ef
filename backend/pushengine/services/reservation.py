"""Reservation service - send a notification at most once per (owner, key).

The unique index on delivery_reservations(owner_id, reservation_key) is the
only synchronization primitive: whoever inserts the row first owns the
delivery. The insert is a single statement, never check-then-insert.

    ABSENT --insert ok--> RESERVED --sent > 0--> FINALIZED
                                   --sent == 0--> ABSENT (row deleted)
    ABSENT --unique violation--> ABSENT (duplicate skipped)
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import async_session
from ..models.delivery_reservation import DeliveryReservation
from ..schemas.push import DeliveryResult, NotificationPayload
from .push_sender import PushSenderService

logger = logging.getLogger(__name__)

PUSH_TAG_REFERENCE = "push_tag"
EVENT_REFERENCE = "event"

MAX_KEY_LENGTH = 120
CONTENT_KEY_LENGTH = 64


def build_reservation_key(
    event_type: str,
    title: str,
    body: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
) -> str:
    """Deterministic idempotency key for one logical notification.

    Keyed on the entity the event is about. Without an entity the message
    content stands in for it, so distinct messages of one event type do not
    collide.
    """
    content = f"{title}::{body}"[:CONTENT_KEY_LENGTH] if not entity_id else None
    key = f"n:{event_type}:{entity_type or 'none'}:{entity_id or content or 'none'}"
    return key[:MAX_KEY_LENGTH]


def push_tag_key(owner_id: str, tag: str) -> str:
    return f"push_tag:{owner_id}:{tag}"


class ReservationService:
    """Wraps the dispatcher with race-safe at-most-once delivery."""

    def __init__(
        self,
        dispatcher: PushSenderService,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.dispatcher = dispatcher
        self._session_factory = session_factory or async_session

    async def _reserve(self, owner_id: str, reservation_key: str, reference_type: Optional[str]) -> Optional[bool]:
        """Claim the key.

        Returns:
            True if this caller owns the delivery, False if the key is already
            taken, None if the store could not be reached
        """
        try:
            async with self._session_factory() as session:
                await session.execute(
                    insert(DeliveryReservation).values(
                        owner_id=owner_id,
                        reservation_key=reservation_key,
                        reference_type=reference_type,
                        created_at=datetime.utcnow(),
                        finalized_at=None,
                    )
                )
                await session.commit()
            return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            logger.warning(f"Reservation store unavailable, sending without dedup (non-fatal): {e}")
            return None

    async def _finalize(self, owner_id: str, reservation_key: str, sent: int) -> None:
        try:
            async with self._session_factory() as session:
                if sent > 0:
                    await session.execute(
                        update(DeliveryReservation)
                        .where(DeliveryReservation.owner_id == owner_id)
                        .where(DeliveryReservation.reservation_key == reservation_key)
                        .values(finalized_at=datetime.utcnow())
                    )
                else:
                    # Nothing delivered: release the key so a retry can happen
                    await session.execute(
                        delete(DeliveryReservation)
                        .where(DeliveryReservation.owner_id == owner_id)
                        .where(DeliveryReservation.reservation_key == reservation_key)
                        .where(DeliveryReservation.finalized_at.is_(None))
                    )
                await session.commit()
        except Exception as e:
            logger.warning(f"Failed to finalize reservation {reservation_key} (non-fatal): {e}")

    async def send_once(
        self,
        owner_id: str,
        reservation_key: str,
        payload: NotificationPayload,
        reference_type: Optional[str] = None,
    ) -> DeliveryResult:
        """Dispatch unless another caller already reserved (owner_id, reservation_key)."""
        reserved = await self._reserve(owner_id, reservation_key, reference_type)

        if reserved is False:
            logger.info(f"Skipping duplicate push (reserved): owner={owner_id} key={reservation_key}")
            return DeliveryResult(sent=0, failed=0, skipped_duplicate=True)

        sent = 0
        try:
            result = await self.dispatcher.dispatch(owner_id, payload)
            sent = result.sent
        except Exception:
            logger.exception(f"Push dispatch crashed: owner={owner_id} key={reservation_key}")
            result = DeliveryResult()
        finally:
            # Also runs on cancellation
            if reserved:
                await self._finalize(owner_id, reservation_key, sent)

        return result

    async def send_event(
        self,
        owner_id: str,
        event_type: str,
        payload: NotificationPayload,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> DeliveryResult:
        """Dispatch once per derived event key; the key doubles as the payload tag."""
        key = build_reservation_key(event_type, payload.title, payload.body, entity_type, entity_id)
        if not payload.tag:
            payload = payload.model_copy(update={"tag": key})
        return await self.send_once(owner_id, key, payload, reference_type=EVENT_REFERENCE)

    async def send(self, owner_id: str, payload: NotificationPayload) -> DeliveryResult:
        """Dispatch, de-duplicating on payload.tag when one is set."""
        if not payload.tag:
            return await self.dispatcher.dispatch(owner_id, payload)
        return await self.send_once(
            owner_id,
            push_tag_key(owner_id, payload.tag),
            payload,
            reference_type=PUSH_TAG_REFERENCE,
        )
