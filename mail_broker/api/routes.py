"""
FastAPI routes for the credential broker.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError

from mail_broker.clients import StoreUnavailableError, TokenStore
from mail_broker.core.config import AppSettings
from mail_broker.dependencies import (
    SettingsDependency,
    get_broker_oauth_service,
    get_provider_link_service,
    get_token_store,
    require_auth_context,
)
from mail_broker.schemas import (
    AuthorizationCodeResponse,
    HealthResponse,
    LinkageStartResponse,
    LinkageStatusResponse,
    OAuthErrorResponse,
    TokenRequest,
    TokenResponse,
)
from mail_broker.services import AuthContext, BrokerOAuthService, ProviderLinkService
from mail_broker.services.broker_oauth import (
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_RESPONSE_TYPES,
    InvalidRequestError,
)
from mail_broker.utils.pkce import CODE_CHALLENGE_METHOD

router = APIRouter()
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


async def _read_token_request(request: Request) -> TokenRequest:
    """Accept the token request as form-encoded (the OAuth default) or JSON."""
    raw = await request.body()
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            data = json.loads(raw or b"{}")
            if not isinstance(data, dict):
                raise InvalidRequestError("Token request body must be an object")
        else:
            data = dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
        return TokenRequest.model_validate(data)
    except (ValueError, ValidationError) as exc:
        raise InvalidRequestError("Malformed token request body") from exc


@router.get(
    "/healthz",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def healthcheck(
    store: Annotated[TokenStore, Depends(get_token_store)],
) -> Any:
    """Liveness probe; also purges expired OAuth states."""
    try:
        store.cleanup_expired_states()
    except StoreUnavailableError:
        logger.warning("Health check found the token store unavailable")
        return JSONResponse(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            content=HealthResponse(
                status="degraded",
                timestamp=_timestamp(),
                issues=["Token store unavailable"],
            ).model_dump(),
        )
    return HealthResponse(status="ok", timestamp=_timestamp())


@router.get("/oauth/authorize")
async def authorize(
    broker: Annotated[BrokerOAuthService, Depends(get_broker_oauth_service)],
    response_type: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    redirect_uri: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    scope: Optional[str] = Query(default=None),
) -> Any:
    """Issue an authorization code, redirecting back to the client when possible."""
    result = broker.authorize(
        response_type=response_type,
        redirect_uri=redirect_uri,
        state=state,
    )
    if result.redirect_url:
        return RedirectResponse(url=result.redirect_url, status_code=HTTPStatus.FOUND)
    return AuthorizationCodeResponse(code=result.code, state=result.state)


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    responses={400: {"model": OAuthErrorResponse}},
)
async def issue_token(
    request: Request,
    broker: Annotated[BrokerOAuthService, Depends(get_broker_oauth_service)],
) -> TokenResponse:
    """Token endpoint for the authorization_code and refresh_token grants."""
    body = await _read_token_request(request)
    pair = broker.exchange(
        body.grant_type,
        code=body.code,
        refresh_token=body.refresh_token,
        scope=body.scope,
    )
    return TokenResponse(
        access_token=pair.access_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
        refresh_token=pair.refresh_token,
        scope=pair.scope,
    )


@router.get("/oauth/start")
async def start_google_oauth_flow(
    request: Request,
    auth: Annotated[AuthContext, Depends(require_auth_context)],
    linker: Annotated[ProviderLinkService, Depends(get_provider_link_service)],
    response_type: str = Query(default="code"),
    scope: Optional[str] = Query(
        default=None,
        description="Space separated Google scopes; defaults to the configured set.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
) -> Any:
    """Kick off mailbox linkage for the authenticated subject."""
    scopes = scope.split() if scope else None
    start = linker.begin(auth.subject, scopes=scopes, response_type=response_type)

    if redirect or _wants_html(request):
        return RedirectResponse(
            url=start.authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
        )
    return LinkageStartResponse(authorization_url=start.authorization_url, state=start.state)


@router.get("/oauth/callback")
async def handle_google_oauth_callback(
    request: Request,
    linker: Annotated[ProviderLinkService, Depends(get_provider_link_service)],
    settings: AppSettings = SettingsDependency,
    state: Optional[str] = Query(default=None, description="OAuth state token."),
    code: Optional[str] = Query(default=None, description="Authorization code returned by Google."),
    error: Optional[str] = Query(default=None),
) -> Response:
    """Complete the Google exchange and store credentials for the bound subject."""
    credential = await linker.complete(state=state, code=code, error=error)

    if settings.frontend_base_url and _wants_html(request):
        return RedirectResponse(
            url=str(settings.frontend_base_url),
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )
    return JSONResponse(
        content={"status": "connected", "email": credential.mailbox_address}
    )


@router.get("/oauth/status", response_model=LinkageStatusResponse)
async def linkage_status(
    auth: Annotated[AuthContext, Depends(require_auth_context)],
    linker: Annotated[ProviderLinkService, Depends(get_provider_link_service)],
) -> LinkageStatusResponse:
    status = linker.status(auth.subject)
    return LinkageStatusResponse(
        subject=auth.subject,
        scope=auth.scope,
        linked=status.linked,
        mailbox_address=status.mailbox_address,
        granted_scope=status.granted_scope,
        access_expiry=status.access_expiry,
    )


@router.post("/oauth/revoke")
async def revoke_linkage(
    auth: Annotated[AuthContext, Depends(require_auth_context)],
    linker: Annotated[ProviderLinkService, Depends(get_provider_link_service)],
) -> dict:
    """Revoke the Google grant and delete stored credentials for the caller."""
    revoked = await linker.revoke(auth.subject)
    return {"status": "revoked" if revoked else "not_linked"}


@router.get("/.well-known/oauth-protected-resource")
async def protected_resource_metadata(
    broker: Annotated[BrokerOAuthService, Depends(get_broker_oauth_service)],
) -> dict:
    return {
        "resource": broker.issuer,
        "authorization_servers": [broker.issuer],
    }


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(
    broker: Annotated[BrokerOAuthService, Depends(get_broker_oauth_service)],
) -> dict:
    return {
        "issuer": broker.issuer,
        "authorization_endpoint": f"{broker.issuer}/oauth/authorize",
        "token_endpoint": f"{broker.issuer}/oauth/token",
        "response_types_supported": list(SUPPORTED_RESPONSE_TYPES),
        "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
        "code_challenge_methods_supported": [CODE_CHALLENGE_METHOD],
    }


__all__ = ["router"]
