try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import time
from urllib.parse import parse_qs, urlsplit

import pytest

from mail_broker.services.broker_oauth import (
    AuthenticationError,
    BrokerOAuthService,
    InvalidGrantError,
    InvalidRequestError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from mail_broker.services.session_tokens import (
    ACCESS_TOKEN_LIFETIME,
    SessionTokenCodec,
    TokenKind,
    generate_subject_id,
)

SECRET = "broker-test-secret-that-is-at-least-32-chars"
ISSUER = "http://localhost:3000"


@pytest.fixture
def codec() -> SessionTokenCodec:
    return SessionTokenCodec(secret=SECRET, issuer=ISSUER)


@pytest.fixture
def broker(codec) -> BrokerOAuthService:
    return BrokerOAuthService(codec)


def test_end_to_end_issue_verify_and_refresh(broker, codec) -> None:
    original = codec.issue_pair("u1", "mcp:tools")
    subject = "u1"

    context = broker.authenticate(f"Bearer {original.access_token}")
    assert context.subject == subject
    assert context.scope == "mcp:tools"

    rotated = broker.exchange("refresh_token", refresh_token=original.refresh_token)
    assert rotated.access_token != original.access_token
    assert rotated.refresh_token != original.refresh_token
    assert codec.verify(rotated.access_token).subject == subject
    assert rotated.scope == "mcp:tools"


def test_code_with_subject_shape_is_used_as_subject(broker, codec) -> None:
    subject = generate_subject_id()
    pair = broker.exchange("authorization_code", code=subject)
    payload = codec.verify(pair.access_token)
    assert payload.subject == subject
    assert payload.scope == "mcp:tools"
    assert pair.expires_in == ACCESS_TOKEN_LIFETIME


def test_requested_scope_is_carried_through(broker, codec) -> None:
    pair = broker.exchange("authorization_code", code=generate_subject_id(), scope="mcp:tools mail:read")
    assert codec.verify(pair.access_token).scope == "mcp:tools mail:read"
    assert pair.scope == "mcp:tools mail:read"


def test_old_refresh_token_stays_valid_after_rotation(broker) -> None:
    pair = broker.issue_from_code(generate_subject_id())
    broker.refresh(pair.refresh_token)
    assert broker.refresh(pair.refresh_token).access_token


@pytest.mark.parametrize(
    "grant_type, kwargs, error",
    [
        ("authorization_code", {}, InvalidRequestError),
        ("refresh_token", {}, InvalidRequestError),
        ("password", {"code": "x"}, UnsupportedGrantTypeError),
        (None, {}, UnsupportedGrantTypeError),
    ],
)
def test_exchange_rejects_bad_requests(broker, grant_type, kwargs, error) -> None:
    with pytest.raises(error):
        broker.exchange(grant_type, **kwargs)


def test_access_token_cannot_be_used_as_refresh_token(broker) -> None:
    pair = broker.issue_from_code(generate_subject_id())
    with pytest.raises(InvalidGrantError) as excinfo:
        broker.refresh(pair.access_token)
    assert excinfo.value.error == "invalid_grant"
    assert "Expected refresh token" in excinfo.value.description


def test_refresh_token_cannot_authenticate_requests(broker) -> None:
    pair = broker.issue_from_code(generate_subject_id())
    with pytest.raises(AuthenticationError) as excinfo:
        broker.authenticate(f"Bearer {pair.refresh_token}")
    assert excinfo.value.error == "invalid_token"
    assert excinfo.value.status_code == 401
    assert 'error="invalid_token"' in excinfo.value.headers["WWW-Authenticate"]


def test_missing_header_challenge_points_at_resource_metadata(broker) -> None:
    with pytest.raises(AuthenticationError) as excinfo:
        broker.authenticate(None)
    challenge = excinfo.value.headers["WWW-Authenticate"]
    assert challenge.startswith('Bearer realm="gmail-mcp"')
    assert f"{ISSUER}/.well-known/oauth-protected-resource" in challenge
    assert excinfo.value.error == "unauthorized"


def test_expired_access_token_is_rejected(broker, codec) -> None:
    token = codec.mint(
        "u1", "mcp:tools", TokenKind.ACCESS, issued_at=int(time.time()) - ACCESS_TOKEN_LIFETIME - 5
    )
    with pytest.raises(AuthenticationError) as excinfo:
        broker.authenticate(f"Bearer {token}")
    assert excinfo.value.description == "Token expired"


def test_token_from_another_issuer_is_rejected(broker) -> None:
    other = SessionTokenCodec(secret=SECRET, issuer="https://other.example")
    pair = other.issue_pair("u1", "mcp:tools")
    with pytest.raises(AuthenticationError):
        broker.authenticate(f"Bearer {pair.access_token}")


def test_authorize_returns_code_without_redirect(broker) -> None:
    result = broker.authorize(response_type="code", state="xyz")
    assert len(result.code) == 32
    assert result.state == "xyz"
    assert result.redirect_url is None


def test_authorize_appends_code_and_state_to_redirect(broker) -> None:
    result = broker.authorize(
        response_type="code",
        redirect_uri="https://client.example/cb?keep=1",
        state="xyz",
    )
    parts = urlsplit(result.redirect_url)
    query = parse_qs(parts.query)
    assert parts.netloc == "client.example"
    assert query == {"keep": ["1"], "code": [result.code], "state": ["xyz"]}


def test_authorize_rejects_other_response_types(broker) -> None:
    with pytest.raises(UnsupportedResponseTypeError):
        broker.authorize(response_type="token")


def test_authorize_rejects_relative_redirect(broker) -> None:
    with pytest.raises(InvalidRequestError):
        broker.authorize(response_type="code", redirect_uri="/relative")


def test_code_without_subject_shape_mints_new_subject(broker, codec) -> None:
    first = codec.verify(broker.issue_from_code("u1").access_token).subject
    second = codec.verify(broker.issue_from_code("u1").access_token).subject
    assert first != "u1"
    assert first != second


def test_explicit_empty_scope_is_not_replaced_by_default(broker, codec) -> None:
    pair = broker.exchange("authorization_code", code=generate_subject_id(), scope="")
    assert pair.scope == ""
    assert codec.verify(pair.access_token).scope == ""

    default = broker.exchange("authorization_code", code=generate_subject_id(), scope=None)
    assert default.scope == "mcp:tools"
