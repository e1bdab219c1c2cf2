"""
Tests for signed download grants: minting, verification, expiry and tampering.
"""

import base64

import pytest

from storefront.core.download_tokens import (
    mint_download_grant,
    verify_download_grant,
    check_download_grant,
    parse_download_token,
    canonical_payload,
    sign_payload,
)
from storefront.core.errors import (
    InvalidTokenError,
    InvalidOrExpiredTokenError,
    ExpiredTokenError,
    SignatureMismatchError,
)

NOW = 1_700_000_000_000
MINUTE = 60 * 1000


def _fields(grant):
    return grant.product_id, grant.order_id, grant.user_id, grant.expires_at, grant.digest


def test_fresh_grant_verifies():
    grant = mint_download_grant(10, 20, 30, ttl_minutes=15, now=NOW)
    assert grant.expires_at == NOW + 15 * MINUTE
    assert verify_download_grant(*_fields(grant), now=NOW)


def test_payload_layout():
    grant = mint_download_grant(10, 20, 30, ttl_minutes=15, now=NOW)
    assert grant.payload == f"10:20:30:{NOW + 15 * MINUTE}"
    assert canonical_payload(10, 20, 30, grant.expires_at) == grant.payload


def test_token_is_url_safe():
    token = mint_download_grant(10, 20, 30, now=NOW).token
    assert "=" not in token
    assert "+" not in token and "/" not in token
    assert token.count(".") == 1


def test_token_parses_back_to_grant():
    grant = mint_download_grant(10, 20, 30, now=NOW)
    assert parse_download_token(grant.token) == grant


def test_expired_grant_rejected():
    """A 15 minute grant checked 16 minutes later is rejected as expired."""
    grant = mint_download_grant(10, 20, 30, ttl_minutes=15, now=NOW)
    later = NOW + 16 * MINUTE

    assert not verify_download_grant(*_fields(grant), now=later)
    with pytest.raises(ExpiredTokenError):
        check_download_grant(*_fields(grant), now=later)


def test_grant_valid_up_to_expiry_instant():
    grant = mint_download_grant(10, 20, 30, ttl_minutes=15, now=NOW)
    assert verify_download_grant(*_fields(grant), now=grant.expires_at)
    assert not verify_download_grant(*_fields(grant), now=grant.expires_at + 1)


@pytest.mark.parametrize(
    "field, value",
    [
        ("product_id", 11),
        ("order_id", 21),
        ("user_id", 31),
    ],
)
def test_changing_any_identifier_breaks_signature(field, value):
    grant = mint_download_grant(10, 20, 30, now=NOW)
    values = dict(
        product_id=grant.product_id,
        order_id=grant.order_id,
        user_id=grant.user_id,
        expires_at=grant.expires_at,
        digest=grant.digest,
    )
    values[field] = value

    assert not verify_download_grant(now=NOW, **values)
    with pytest.raises(SignatureMismatchError):
        check_download_grant(now=NOW, **values)


def test_extending_expiry_breaks_signature():
    grant = mint_download_grant(10, 20, 30, now=NOW)
    assert not verify_download_grant(
        grant.product_id, grant.order_id, grant.user_id, grant.expires_at + MINUTE, grant.digest, now=NOW
    )


def test_flipped_digest_character_rejected():
    grant = mint_download_grant(10, 20, 30, now=NOW)
    first = "A" if grant.digest[0] != "A" else "B"
    tampered = first + grant.digest[1:]
    assert not verify_download_grant(grant.product_id, grant.order_id, grant.user_id, grant.expires_at, tampered, now=NOW)


def test_grant_signed_with_other_secret_rejected():
    grant = mint_download_grant(10, 20, 30, now=NOW)
    forged = sign_payload(grant.payload, secret="not-the-server-secret")
    assert forged != grant.digest
    assert not verify_download_grant(grant.product_id, grant.order_id, grant.user_id, grant.expires_at, forged, now=NOW)


def test_expiry_checked_before_signature():
    """An expired grant with a bad signature reports expiry."""
    with pytest.raises(ExpiredTokenError):
        check_download_grant(10, 20, 30, NOW - 1, "garbage", now=NOW)


def test_token_errors_share_a_base():
    assert issubclass(ExpiredTokenError, InvalidOrExpiredTokenError)
    assert issubclass(SignatureMismatchError, InvalidOrExpiredTokenError)
    assert issubclass(InvalidOrExpiredTokenError, InvalidTokenError)


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).rstrip(b"=").decode()


@pytest.mark.parametrize(
    "token",
    [
        "",
        "no-separator",
        "too.many.parts",
        "!!!.digest",
        _encode("1:2:3") + ".digest",
        _encode("1:2:3:soon") + ".digest",
        _encode("1:2:3:4") + ".",
    ],
)
def test_malformed_tokens_rejected(token):
    with pytest.raises(InvalidTokenError):
        parse_download_token(token)
