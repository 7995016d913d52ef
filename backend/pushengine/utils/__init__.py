"""Shared helpers."""
from .encoding import b64url_encode, b64url_decode
from .db_utils import retry_on_lock

__all__ = ["b64url_encode", "b64url_decode", "retry_on_lock"]
