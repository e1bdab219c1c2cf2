"""
Signed, expiring download grants.

A grant binds (product, order, user, expiry) under an HMAC-SHA256 tag keyed
with DOWNLOAD_TOKEN_SECRET. Nothing is stored server-side: a grant is
verified by recomputing the tag. The grant only proves that somebody passed
the ownership check recently; the delivery path re-checks ownership and the
download counter on every use.

Wire format (URL-safe, no padding):

    token   = b64url(payload) "." b64url(hmac_sha256(secret, payload))
    payload = "{product_id}:{order_id}:{user_id}:{expires_at_ms}"
"""

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional

from storefront.core.config import get_settings
from storefront.core.errors import InvalidTokenError, ExpiredTokenError, SignatureMismatchError

PAYLOAD_DELIMITER = ":"
TOKEN_SEPARATOR = "."


def now_ms() -> int:
    return int(time.time() * 1000)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def canonical_payload(product_id: int, order_id: int, user_id: int, expires_at: int) -> str:
    return PAYLOAD_DELIMITER.join(str(part) for part in (product_id, order_id, user_id, expires_at))


def sign_payload(payload: str, secret: Optional[str] = None) -> str:
    key = (secret or get_settings().DOWNLOAD_TOKEN_SECRET).encode("utf-8")
    return _b64encode(hmac.new(key, payload.encode("utf-8"), hashlib.sha256).digest())


@dataclass(frozen=True)
class DownloadGrant:
    product_id: int
    order_id: int
    user_id: int
    expires_at: int  # epoch milliseconds
    digest: str

    @property
    def payload(self) -> str:
        return canonical_payload(self.product_id, self.order_id, self.user_id, self.expires_at)

    @property
    def token(self) -> str:
        return _b64encode(self.payload.encode("utf-8")) + TOKEN_SEPARATOR + self.digest


def mint_download_grant(
    product_id: int,
    order_id: int,
    user_id: int,
    ttl_minutes: Optional[int] = None,
    now: Optional[int] = None,
) -> DownloadGrant:
    """Issue a grant that expires `ttl_minutes` from `now` (epoch ms)."""
    if ttl_minutes is None:
        ttl_minutes = get_settings().DOWNLOAD_TOKEN_TTL_MINUTES
    issued_at = now_ms() if now is None else now
    expires_at = issued_at + ttl_minutes * 60 * 1000

    payload = canonical_payload(product_id, order_id, user_id, expires_at)
    return DownloadGrant(
        product_id=product_id,
        order_id=order_id,
        user_id=user_id,
        expires_at=expires_at,
        digest=sign_payload(payload),
    )


def parse_download_token(token: str) -> DownloadGrant:
    """Split a token back into its fields. Does not verify it."""
    if not token or token.count(TOKEN_SEPARATOR) != 1:
        raise InvalidTokenError("Malformed download token")

    encoded_payload, digest = token.split(TOKEN_SEPARATOR)
    try:
        payload = _b64decode(encoded_payload).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidTokenError("Malformed download token") from exc

    parts = payload.split(PAYLOAD_DELIMITER)
    if len(parts) != 4 or not digest:
        raise InvalidTokenError("Malformed download token")

    try:
        product_id, order_id, user_id, expires_at = (int(part) for part in parts)
    except ValueError as exc:
        raise InvalidTokenError("Malformed download token") from exc

    return DownloadGrant(
        product_id=product_id,
        order_id=order_id,
        user_id=user_id,
        expires_at=expires_at,
        digest=digest,
    )


def check_download_grant(
    product_id: int,
    order_id: int,
    user_id: int,
    expires_at: int,
    digest: str,
    now: Optional[int] = None,
) -> None:
    """Raise ExpiredTokenError or SignatureMismatchError unless the grant is valid."""
    current = now_ms() if now is None else now
    # Expiry first: cheap, and gives a distinct failure mode.
    if current > expires_at:
        raise ExpiredTokenError("Download link has expired", expires_at=expires_at)

    expected = sign_payload(canonical_payload(product_id, order_id, user_id, expires_at))
    if not hmac.compare_digest(expected.encode("utf-8"), digest.encode("utf-8")):
        raise SignatureMismatchError("Download token signature mismatch")


def verify_download_grant(
    product_id: int,
    order_id: int,
    user_id: int,
    expires_at: int,
    digest: str,
    now: Optional[int] = None,
) -> bool:
    try:
        check_download_grant(product_id, order_id, user_id, expires_at, digest, now=now)
    except (ExpiredTokenError, SignatureMismatchError):
        return False
    return True
