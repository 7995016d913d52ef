"""Subscription registry - push endpoints registered per recipient."""
import binascii
import logging
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..database import async_session
from ..exceptions import EncryptionError, InvalidSubscriptionError
from ..models.push_subscription import PushSubscription
from ..utils.db_utils import retry_on_lock
from ..utils.encoding import b64url_decode
from .crypto_provider import CryptoProvider
from .payload_encryptor import AUTH_SECRET_LENGTH

logger = logging.getLogger(__name__)


def dedupe_by_endpoint(
    subscriptions: Iterable[PushSubscription],
) -> Tuple[List[PushSubscription], List[PushSubscription]]:
    """Split subscriptions into (first per endpoint, later duplicates).

    Rows without an endpoint are dropped from both lists: they can neither be
    delivered to nor safely matched against another row.
    """
    by_endpoint = {}
    duplicates: List[PushSubscription] = []

    for sub in subscriptions:
        if not sub or not sub.endpoint:
            continue
        if sub.endpoint in by_endpoint:
            duplicates.append(sub)
            continue
        by_endpoint[sub.endpoint] = sub

    return list(by_endpoint.values()), duplicates


class SubscriptionRegistry:
    """Reads, registers and prunes push subscriptions."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        crypto: Optional[CryptoProvider] = None,
    ):
        self._session_factory = session_factory or async_session
        self._crypto = crypto or CryptoProvider()

    async def list(self, owner_id: str) -> List[PushSubscription]:
        """All subscriptions for one owner, in no particular order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PushSubscription).where(PushSubscription.owner_id == owner_id)
            )
            return list(result.scalars().all())

    def dedupe_by_endpoint(
        self,
        subscriptions: Iterable[PushSubscription],
    ) -> Tuple[List[PushSubscription], List[PushSubscription]]:
        return dedupe_by_endpoint(subscriptions)

    async def remove(self, ids: Iterable[str]) -> bool:
        """Best-effort bulk delete. Failures are logged, never raised."""
        ids = [i for i in ids if isinstance(i, str) and i]
        if not ids:
            return True

        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(PushSubscription).where(PushSubscription.id.in_(ids))
                )
                await retry_on_lock(session.commit)
            return True
        except Exception as e:
            logger.warning(f"Failed to remove subscriptions {ids} (non-fatal): {e}")
            return False

    async def remove_one(self, subscription_id: str) -> bool:
        """Delete a single subscription, e.g. after the relay answered 410."""
        return await self.remove([subscription_id])

    async def has_subscriptions(self, owner_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(PushSubscription.id)).where(PushSubscription.owner_id == owner_id)
            )
            return (result.scalar() or 0) > 0

    def _validate(self, endpoint: str, p256dh_key: str, auth_key: str) -> None:
        parts = urlsplit(endpoint)
        if parts.scheme not in ("https", "http") or not parts.hostname:
            raise InvalidSubscriptionError("Endpoint must be an absolute http(s) URL")

        try:
            client_key = b64url_decode(p256dh_key)
            auth_secret = b64url_decode(auth_key)
        except (binascii.Error, ValueError) as e:
            raise InvalidSubscriptionError(f"Subscription keys are not valid base64url: {e}") from e

        try:
            self._crypto.load_public_point(client_key)
        except EncryptionError as e:
            raise InvalidSubscriptionError(str(e)) from e

        if len(auth_secret) != AUTH_SECRET_LENGTH:
            raise InvalidSubscriptionError(
                f"Auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(auth_secret)}"
            )

    async def register(
        self,
        owner_id: str,
        endpoint: str,
        p256dh_key: str,
        auth_key: str,
    ) -> PushSubscription:
        """Register a subscription, refreshing keys if the endpoint is known.

        Raises:
            InvalidSubscriptionError: If the endpoint or keys are unusable
        """
        endpoint = endpoint.strip()
        self._validate(endpoint, p256dh_key, auth_key)

        async with self._session_factory() as session:
            result = await session.execute(
                select(PushSubscription)
                .where(PushSubscription.owner_id == owner_id)
                .where(PushSubscription.endpoint == endpoint)
                .limit(1)
            )
            existing = result.scalar_one_or_none()

            if existing:
                existing.p256dh_key = p256dh_key
                existing.auth_key = auth_key
                await retry_on_lock(session.commit)
                logger.info(f"Push subscription refreshed: {endpoint[:50]}...")
                return existing

            subscription = PushSubscription(
                owner_id=owner_id,
                endpoint=endpoint,
                p256dh_key=p256dh_key,
                auth_key=auth_key,
            )
            session.add(subscription)
            await retry_on_lock(session.commit)
            await session.refresh(subscription)

            logger.info(f"New push subscription registered: {endpoint[:50]}...")
            return subscription

    async def unregister(self, owner_id: str, endpoint: str) -> int:
        """Remove every row for (owner_id, endpoint). Returns rows removed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(PushSubscription)
                .where(PushSubscription.owner_id == owner_id)
                .where(PushSubscription.endpoint == endpoint)
            )
            await retry_on_lock(session.commit)
            return result.rowcount or 0
