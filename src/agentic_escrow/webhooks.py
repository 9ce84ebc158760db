"""Webhook signature verification.

The seller side signs each delivery notification with HMAC-SHA256 over the
raw request body and sends it as `X-Abbababa-Signature: sha256=<hex>`.

verify_signature has three outcomes, never two:
    VERIFIED    - secret configured, signature matches
    INVALID     - secret configured, signature missing or wrong
    UNVERIFIED  - no secret configured; nothing was checked

UNVERIFIED is a reduced-security mode and is reported as such; it must not
be treated as VERIFIED.
"""

from __future__ import annotations

import enum
import hashlib
import hmac

SIGNATURE_HEADER = "X-Abbababa-Signature"
_SCHEME = "sha256="


class SignatureCheck(enum.StrEnum):
    VERIFIED = "verified"
    INVALID = "invalid"
    UNVERIFIED = "unverified"


def sign_body(body: bytes, secret: str) -> str:
    """Header value for `body` signed with `secret`."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return _SCHEME + digest


def verify_signature(body: bytes, header: str | None, secret: str | None) -> SignatureCheck:
    """Check a signature header against the raw body in constant time."""
    if not secret:
        return SignatureCheck.UNVERIFIED
    if not header:
        return SignatureCheck.INVALID
    expected = sign_body(body, secret)
    provided = header.strip()
    if not provided.startswith(_SCHEME):
        provided = _SCHEME + provided
    if hmac.compare_digest(expected.encode(), provided.encode()):
        return SignatureCheck.VERIFIED
    return SignatureCheck.INVALID
