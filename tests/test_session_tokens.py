try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import time

import jwt
import pytest

from mail_broker.services.session_tokens import (
    ACCESS_TOKEN_LIFETIME,
    AUDIENCE,
    REFRESH_TOKEN_LIFETIME,
    SessionTokenCodec,
    TokenKind,
    TokenValidationError,
    extract_bearer_token,
    generate_subject_id,
    generate_token_pair,
    looks_like_subject_id,
    mint_token,
    verify_token,
)

SECRET = "test-secret-key-that-is-at-least-32-chars"
ISSUER = "http://localhost:3000"
SCOPE = "mcp:tools"


def _reason(token: str, **overrides) -> str:
    kwargs = {"secret": SECRET, "expected_issuer": ISSUER, "expected_kind": TokenKind.ACCESS}
    kwargs.update(overrides)
    with pytest.raises(TokenValidationError) as excinfo:
        verify_token(token, kwargs["secret"], kwargs["expected_issuer"], kwargs["expected_kind"])
    return excinfo.value.reason


def test_generate_subject_id_shape_and_uniqueness() -> None:
    ids = {generate_subject_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(looks_like_subject_id(value) for value in ids)


def test_looks_like_subject_id_rejects_other_shapes() -> None:
    assert not looks_like_subject_id("abc")
    assert not looks_like_subject_id("A" * 32)
    assert not looks_like_subject_id("g" * 32)


def test_access_token_verifies() -> None:
    subject = generate_subject_id()
    token = mint_token(subject, ISSUER, SCOPE, TokenKind.ACCESS, SECRET)
    assert len(token.split(".")) == 3

    payload = verify_token(token, SECRET, ISSUER, TokenKind.ACCESS)
    assert payload.subject == subject
    assert payload.kind is TokenKind.ACCESS
    assert payload.scope == SCOPE
    assert payload.audience == AUDIENCE
    assert payload.expires_at - payload.issued_at == ACCESS_TOKEN_LIFETIME


def test_refresh_token_lifetime() -> None:
    token = mint_token("u1", ISSUER, SCOPE, TokenKind.REFRESH, SECRET)
    payload = verify_token(token, SECRET, ISSUER, TokenKind.REFRESH)
    assert payload.kind is TokenKind.REFRESH
    assert payload.expires_at - payload.issued_at == REFRESH_TOKEN_LIFETIME


def test_token_pair_shape() -> None:
    pair = generate_token_pair("u1", ISSUER, SCOPE, SECRET)
    assert pair.token_type == "Bearer"
    assert pair.expires_in == 3600
    assert pair.scope == SCOPE
    assert pair.access_token != pair.refresh_token


def test_tokens_minted_in_the_same_second_differ() -> None:
    now = int(time.time())
    first = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET, issued_at=now)
    second = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET, issued_at=now)
    assert first != second


def test_kinds_are_not_interchangeable() -> None:
    access = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET)
    refresh = mint_token("u1", ISSUER, SCOPE, TokenKind.REFRESH, SECRET)

    assert _reason(access, expected_kind=TokenKind.REFRESH) == "wrong_kind"
    assert _reason(refresh, expected_kind=TokenKind.ACCESS) == "wrong_kind"


def test_wrong_kind_message_names_both_kinds() -> None:
    access = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET)
    with pytest.raises(TokenValidationError) as excinfo:
        verify_token(access, SECRET, ISSUER, TokenKind.REFRESH)
    assert "Expected refresh token" in excinfo.value.message


def test_expired_token_reports_expiry() -> None:
    issued_at = int(time.time()) - ACCESS_TOKEN_LIFETIME - 10
    token = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET, issued_at=issued_at)
    assert _reason(token) == "expired"


def test_wrong_secret_reports_signature() -> None:
    token = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET)
    assert _reason(token, secret="a-different-secret-that-is-long-enough") == "invalid_signature"


def test_wrong_issuer() -> None:
    token = mint_token("u1", ISSUER, SCOPE, TokenKind.ACCESS, SECRET)
    assert _reason(token, expected_issuer="http://wrong-issuer.com") == "wrong_issuer"


def test_wrong_audience() -> None:
    now = int(time.time())
    claims = {
        "sub": "u1",
        "iss": ISSUER,
        "aud": "some-other-service",
        "iat": now,
        "exp": now + 60,
        "scope": SCOPE,
        "type": "access",
        "jti": "x",
    }
    token = jwt.encode(claims, SECRET, algorithm="HS256")
    assert _reason(token) == "wrong_audience"


def test_checks_run_in_order() -> None:
    # Expired and of the wrong kind, minted under another issuer: issuer wins.
    issued_at = int(time.time()) - REFRESH_TOKEN_LIFETIME - 10
    token = mint_token("u1", "http://elsewhere", SCOPE, TokenKind.REFRESH, SECRET, issued_at=issued_at)
    assert _reason(token) == "wrong_issuer"

    token = mint_token("u1", ISSUER, SCOPE, TokenKind.REFRESH, SECRET, issued_at=issued_at)
    assert _reason(token) == "expired"


@pytest.mark.parametrize("token", ["not.a.valid.token", "", "garbage"])
def test_malformed_token_is_a_generic_failure(token: str) -> None:
    assert _reason(token) == "invalid_token"


def test_unsigned_token_is_rejected() -> None:
    now = int(time.time())
    token = jwt.encode(
        {"sub": "u1", "iss": ISSUER, "aud": AUDIENCE, "iat": now, "exp": now + 60, "type": "access"},
        None,
        algorithm="none",
    )
    assert _reason(token) == "invalid_token"


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc123", "abc123"),
        ("bearer abc123", "abc123"),
        ("BEARER abc123", "abc123"),
        ("Basic abc123", None),
        ("Bearer", None),
        ("Bearertoken", None),
        ("Bearer a b", None),
        ("Bearer ", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected) -> None:
    assert extract_bearer_token(header) == expected


def test_codec_binds_issuer_without_trailing_slash() -> None:
    codec = SessionTokenCodec(secret=SECRET, issuer=ISSUER + "/")
    pair = codec.issue_pair("u1", SCOPE)
    assert codec.verify(pair.access_token).issuer == ISSUER
    assert codec.verify(pair.refresh_token, TokenKind.REFRESH).subject == "u1"
