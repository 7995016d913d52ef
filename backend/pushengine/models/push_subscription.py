"""PushSubscription model - Web Push endpoints registered per recipient."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime

from ..database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class PushSubscription(Base):
    """A relay endpoint plus the client key material needed to encrypt for it.

    Registration upstream is not guaranteed unique, so several rows may share
    an (owner_id, endpoint) pair. The dispatcher collapses them before sending.
    """

    __tablename__ = "push_subscriptions"

    id = Column(String, primary_key=True, default=_new_id)
    owner_id = Column(String, nullable=False, index=True)
    endpoint = Column(Text, nullable=False)
    p256dh_key = Column(String, nullable=True)  # Client public key (base64url, 65 bytes)
    auth_key = Column(String, nullable=True)  # Auth secret (base64url, 16 bytes)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<PushSubscription id={self.id} owner={self.owner_id}>"
