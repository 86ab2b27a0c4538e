"""URL-safe, padding-free base64 over UTF-8 text."""

import base64
import binascii


def encode_base64url(text: str) -> str:
    """Encode *text* as UTF-8, then base64 with ``-``/``_`` and no ``=`` padding."""
    encoded = base64.urlsafe_b64encode(text.encode("utf-8"))
    return encoded.decode("ascii").rstrip("=")


def decode_base64url(token: str) -> str:
    """Inverse of encode_base64url.

    Raises ValueError if *token* is not valid base64 (standard or URL-safe
    alphabet) or the bytes are not valid UTF-8.
    """
    stripped = token.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 token: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"token is not UTF-8 text: {exc}") from exc
