"""Base64url helpers used for Web Push keys, headers and tokens."""
import base64


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str | bytes) -> bytes:
    """Decode URL-safe base64, tolerating missing padding and stray quotes.

    Also accepts the standard alphabet, since some browsers hand out keys
    encoded that way.
    """
    if isinstance(value, bytes):
        value = value.decode("ascii")
    cleaned = value.strip().strip("'\"").strip()
    cleaned = cleaned.replace("+", "-").replace("/", "_").rstrip("=")
    padding = "=" * (-len(cleaned) % 4)
    return base64.urlsafe_b64decode(cleaned + padding)
