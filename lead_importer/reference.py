"""Reversible obfuscated references standing in for numeric contact ids.

A reference is the first 16 hex characters of ``HMAC-SHA256(secret, id)``
followed by the unpadded URL-safe base64 encoding of the decimal id. The id
can always be recovered from the suffix; the prefix only lets callers check
that the token was minted with the current secret. Decoding falls back to
the embedded id when the prefix does not match so references issued before
a secret rotation keep working, which means references are an obfuscation
layer and not an integrity guarantee. Pass ``strict=True`` where a forged
token must be refused.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from typing import Optional, Union

LOGGER = logging.getLogger(__name__)

PREFIX_LENGTH = 16


class ReferenceIntegrityError(ValueError):
    """Raised in strict mode when a reference was not signed with the current secret."""


def _signature(secret: str, contact_id: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), contact_id.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:PREFIX_LENGTH]


def encode_reference(contact_id: int, secret: str) -> str:
    if isinstance(contact_id, bool) or int(contact_id) <= 0:
        raise ValueError(f"Contact ids must be positive integers, got {contact_id!r}")
    text = str(int(contact_id))
    encoded = base64.urlsafe_b64encode(text.encode("ascii")).decode("ascii").rstrip("=")
    return f"{_signature(secret, text)}{encoded}"


def decode_reference(reference: str, secret: str, *, strict: bool = False) -> Optional[int]:
    """Return the id embedded in ``reference`` or ``None`` when it is malformed."""

    if not reference or len(reference) <= PREFIX_LENGTH:
        LOGGER.debug("Reference %r too short to decode", reference)
        return None

    prefix, encoded = reference[:PREFIX_LENGTH], reference[PREFIX_LENGTH:]
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        text = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        LOGGER.debug("Reference %r does not carry a base64 id", reference)
        return None

    if not (text.isascii() and text.isdigit()) or int(text) <= 0:
        LOGGER.warning("Reference %r decodes to an invalid id %r", reference, text)
        return None
    contact_id = int(text)

    if hmac.compare_digest(prefix.encode("utf-8"), _signature(secret, text).encode("ascii")):
        return contact_id

    if strict:
        raise ReferenceIntegrityError(f"Reference for id {contact_id} was not signed with the current secret")
    LOGGER.warning("Reference signature mismatch for id %s, accepting decoded id", contact_id)
    return contact_id


def resolve_reference(value: Union[str, int], secret: str, *, strict: bool = False) -> Optional[int]:
    """Accept either a reference token or a plain positive decimal id."""

    if isinstance(value, int) and not isinstance(value, bool):
        return value if value > 0 else None
    text = str(value).strip()
    decoded = decode_reference(text, secret, strict=strict)
    if decoded is not None:
        return decoded
    if text.isascii() and text.isdigit() and int(text) > 0:
        return int(text)
    return None


__all__ = [
    "ReferenceIntegrityError",
    "decode_reference",
    "encode_reference",
    "resolve_reference",
]
