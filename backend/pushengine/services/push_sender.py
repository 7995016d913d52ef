"""Push notification sender service - encrypted Web Push delivery via VAPID."""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..config import Settings
from ..exceptions import ConfigurationError, EncryptionError, SubscriptionGone, TransientDeliveryError
from ..models.push_subscription import PushSubscription
from ..schemas.push import DeliveryResult, NotificationPayload
from ..utils.encoding import b64url_encode
from .crypto_provider import CryptoProvider
from .payload_encryptor import CONTENT_ENCODING, EncryptedMessage, PayloadEncryptor
from .subscription_registry import SubscriptionRegistry
from .vapid import VapidKeyPair, VapidSigner, audience_for

logger = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


@dataclass
class AttemptOutcome:
    """Result of delivering to one endpoint."""
    subscription_id: Optional[str]
    endpoint: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    gone: bool = False


class PushSenderService:
    """Service for sending encrypted Web Push notifications.

    Collaborators are injected so tests can swap the relay transport, the
    crypto provider or the subscription store.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        key_pair: Optional[VapidKeyPair],
        subject: Optional[str],
        crypto: Optional[CryptoProvider] = None,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        ttl_seconds: int = 86400,
        urgency: str = "normal",
        timeout_seconds: float = 10.0,
        default_icon: Optional[str] = None,
        default_badge: Optional[str] = None,
    ):
        self.registry = registry
        self.key_pair = key_pair
        self.subject = subject
        self.crypto = crypto or CryptoProvider()
        self.encryptor = PayloadEncryptor(self.crypto)
        self.signer = VapidSigner(key_pair, self.crypto) if key_pair else None
        self.ttl_seconds = ttl_seconds
        self.urgency = urgency
        self.timeout_seconds = timeout_seconds
        self.default_icon = default_icon
        self.default_badge = default_badge
        self._http_client_factory = http_client_factory or self._default_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: Optional[SubscriptionRegistry] = None,
        **kwargs,
    ) -> "PushSenderService":
        """Build the sender from process configuration.

        A missing or invalid key pair is logged rather than raised so the
        service still starts; every dispatch then reports all subscriptions
        as failed.
        """
        crypto = kwargs.pop("crypto", None) or CryptoProvider()
        try:
            key_pair = VapidKeyPair.from_base64(
                settings.vapid_public_key,
                settings.vapid_private_key,
                crypto,
            )
            logger.info("VAPID key pair loaded")
        except ConfigurationError as e:
            logger.error(f"Push notifications disabled: {e}")
            key_pair = None

        if not settings.vapid_subject:
            logger.error("Push notifications disabled: VAPID_SUBJECT not configured")

        return cls(
            registry=registry or SubscriptionRegistry(),
            key_pair=key_pair,
            subject=settings.vapid_subject,
            crypto=crypto,
            ttl_seconds=settings.push_ttl_seconds,
            urgency=settings.push_urgency,
            timeout_seconds=settings.push_request_timeout_seconds,
            default_icon=settings.push_default_icon,
            default_badge=settings.push_default_badge,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return self.signer is not None and bool(self.subject)

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))

    def serialize(self, payload: NotificationPayload) -> bytes:
        """JSON body the service worker receives after decryption."""
        message = {
            "title": payload.title,
            "body": payload.body,
            "icon": payload.icon or self.default_icon,
            "badge": payload.badge or self.default_badge,
        }
        if payload.tag:
            message["tag"] = payload.tag
        message["data"] = payload.data or {}
        return json.dumps(message, separators=(",", ":")).encode("utf-8")

    def build_headers(self, message: EncryptedMessage, token: str) -> dict:
        vapid_public_key = self.key_pair.public_key_b64
        return {
            "Authorization": self.signer.authorization_header(token),
            "TTL": str(self.ttl_seconds),
            "Content-Type": "application/octet-stream",
            "Content-Encoding": CONTENT_ENCODING,
            "Crypto-Key": f"dh={b64url_encode(message.server_public_key)}; p256ecdsa={vapid_public_key}",
            "Encryption": f"salt={b64url_encode(message.salt)}",
            "Urgency": self.urgency,
        }

    async def _post(self, client: httpx.AsyncClient, endpoint: str, message: EncryptedMessage, token: str) -> int:
        """POST one encrypted message.

        Raises:
            SubscriptionGone: On 404/410
            TransientDeliveryError: On any other non-2xx, network error or timeout
        """
        try:
            # httpx timeouts apply per phase; bound the whole request as well
            response = await asyncio.wait_for(
                client.post(
                    endpoint,
                    content=message.ciphertext,
                    headers=self.build_headers(message, token),
                ),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise TransientDeliveryError(f"Timed out after {self.timeout_seconds}s: {e!r}") from e
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"Network error: {e!r}") from e

        if response.status_code in GONE_STATUSES:
            raise SubscriptionGone(response.status_code, response.text[:200])
        if not response.is_success:
            raise TransientDeliveryError(
                f"{response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.status_code

    async def send_notification(
        self,
        client: httpx.AsyncClient,
        subscription: PushSubscription,
        body: bytes,
    ) -> AttemptOutcome:
        """Send a push notification to a single subscription.

        Never raises: every failure becomes an unsuccessful outcome.
        """
        endpoint = subscription.endpoint
        outcome = AttemptOutcome(subscription_id=subscription.id, endpoint=endpoint, success=False)

        if not subscription.p256dh_key or not subscription.auth_key:
            outcome.error = "Subscription missing encryption keys"
            return outcome

        try:
            message = self.encryptor.encrypt(body, subscription.p256dh_key, subscription.auth_key)
            token = self.signer.sign(audience_for(endpoint), self.subject)
            outcome.status_code = await self._post(client, endpoint, message, token)
            outcome.success = True

        except SubscriptionGone as e:
            outcome.status_code = e.status_code
            outcome.error = str(e)
            outcome.gone = True
            logger.info(f"Removing invalid subscription: {endpoint[:50]}")
            await self.registry.remove_one(subscription.id)

        except TransientDeliveryError as e:
            outcome.status_code = e.status_code
            outcome.error = str(e)

        except EncryptionError as e:
            outcome.error = f"Encryption failed: {e}"

        except Exception as e:
            logger.exception(f"Unexpected push error for {endpoint[:50]}")
            outcome.error = str(e)

        return outcome

    async def dispatch(self, owner_id: str, payload: NotificationPayload) -> DeliveryResult:
        """Send a notification to every unique endpoint of one recipient.

        Returns:
            DeliveryResult with sent/failed counts over all endpoints
        """
        try:
            subscriptions = await self.registry.list(owner_id)
        except Exception as e:
            logger.error(f"Error fetching subscriptions for {owner_id}: {e}")
            return DeliveryResult()

        if not subscriptions:
            logger.debug(f"No push subscriptions found for {owner_id}")
            return DeliveryResult()

        unique, duplicates = self.registry.dedupe_by_endpoint(subscriptions)

        # Best-effort cleanup of true duplicates (does not block sending)
        if duplicates:
            if await self.registry.remove([d.id for d in duplicates]):
                logger.info(f"Removed {len(duplicates)} duplicate subscriptions for {owner_id}")

        if not self.configured:
            logger.error("VAPID keys or subject not configured - push delivery skipped")
            return DeliveryResult(sent=0, failed=len(unique))

        try:
            body = self.serialize(payload)
        except (TypeError, ValueError) as e:
            logger.error(f"Notification payload for {owner_id} is not JSON serializable: {e}")
            return DeliveryResult(sent=0, failed=len(unique))

        try:
            async with self._http_client_factory() as client:
                results = await asyncio.gather(
                    *(self.send_notification(client, sub, body) for sub in unique),
                    return_exceptions=True,
                )
        except Exception as e:
            logger.error(f"Push client failed for {owner_id}: {e!r}")
            return DeliveryResult(sent=0, failed=len(unique))

        sent = 0
        failed = 0
        for result in results:
            if isinstance(result, AttemptOutcome) and result.success:
                sent += 1
                continue
            failed += 1
            if isinstance(result, AttemptOutcome):
                logger.warning(f"Push failed: {result.endpoint[:50]} - {result.error}")
            else:
                logger.error(f"Push attempt crashed: {result!r}")

        logger.info(f"Push notifications sent to {owner_id}: {sent} success, {failed} failed")
        return DeliveryResult(sent=sent, failed=failed)
