"""
OAuth2 Authorization-Code flow with PKCE support.

Stateless helpers shared by every plugin.  Confidential clients (with a
client secret) and public PKCE-only clients go through the same two
token functions; the only branching is on ``client_secret`` and
``use_pkce``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from typing import Any, Dict, Optional, Type
from urllib.parse import urlencode

import httpx

from config.settings import config as settings
from plugins.errors import ExchangeError, RefreshError, TokenRequestError
from plugins.schemas import OAuthConfig, OAuthCredentials

logger = logging.getLogger(__name__)

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


# ── PKCE / CSRF material ───────────────────────────────────────────────


def generate_code_verifier() -> str:
    """32 random bytes, base64url encoded (43 chars)."""
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier))."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    """Random CSRF token, independent of the PKCE verifier."""
    return secrets.token_hex(16)


# ── Authorization URL ──────────────────────────────────────────────────


def build_authorization_url(
    config: OAuthConfig,
    state: str,
    code_challenge: Optional[str] = None,
) -> str:
    params = {
        "client_id": config.client_id,
        "response_type": "code",
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(config.scopes),
        "state": state,
    }
    if config.use_pkce and code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    return f"{config.authorization_url}?{urlencode(params)}"


# ── Token endpoint ─────────────────────────────────────────────────────


def _basic_auth(config: OAuthConfig) -> str:
    raw = f"{config.client_id}:{config.client_secret}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")


async def _post_token_request(
    config: OAuthConfig,
    data: Dict[str, str],
    http_client: Optional[httpx.AsyncClient],
) -> httpx.Response:
    headers = dict(_FORM_HEADERS)
    if config.client_secret:
        headers["Authorization"] = _basic_auth(config)

    if http_client is not None:
        return await http_client.post(config.token_url, data=data, headers=headers)
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        return await client.post(config.token_url, data=data, headers=headers)


def _expires_at(payload: Dict[str, Any], fetched_at: float) -> int:
    return int(fetched_at) + int(payload.get("expires_in") or 0)


def _parse_token_response(
    resp: httpx.Response,
    fetched_at: float,
    error_cls: Type[TokenRequestError],
    default_scope: str,
) -> OAuthCredentials:
    """Build credentials from a 2xx token response; a malformed body raises ``error_cls``."""
    try:
        payload = resp.json()
        return OAuthCredentials(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=_expires_at(payload, fetched_at),
            token_type=payload.get("token_type") or "Bearer",
            scope=payload.get("scope") or default_scope,
        )
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Malformed token response (HTTP %d): %s", resp.status_code, exc)
        raise error_cls(
            f"Malformed token response: {resp.text[:200]}",
            status_code=resp.status_code,
            body=resp.text,
        ) from exc


async def exchange_code_for_tokens(
    config: OAuthConfig,
    code: str,
    code_verifier: Optional[str] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> OAuthCredentials:
    """
    Trade an authorization code for tokens.

    Raises
    ------
    ExchangeError – non-2xx status or a body without usable tokens.
    """
    data = {
        "client_id": config.client_id,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.redirect_uri,
    }
    if config.client_secret and not config.use_pkce:
        data["client_secret"] = config.client_secret
    if config.use_pkce and code_verifier:
        data["code_verifier"] = code_verifier

    fetched_at = time.time()
    resp = await _post_token_request(config, data, http_client)
    if not resp.is_success:
        logger.warning("Token exchange at %s failed: HTTP %d", config.token_url, resp.status_code)
        raise ExchangeError(
            f"Token exchange failed: {resp.text}",
            status_code=resp.status_code,
            body=resp.text,
        )

    return _parse_token_response(resp, fetched_at, ExchangeError, " ".join(config.scopes))


async def refresh_access_token(
    config: OAuthConfig,
    refresh_token: str,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> OAuthCredentials:
    """
    Use a refresh token to obtain a new access token.

    ``refresh_token`` on the result is ``None`` when the provider did not
    rotate it; callers keep the previous one in that case.

    Raises
    ------
    RefreshError – non-2xx status or a body without usable tokens.
    """
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }
    if not config.client_secret:
        data["client_id"] = config.client_id

    fetched_at = time.time()
    resp = await _post_token_request(config, data, http_client)
    if not resp.is_success:
        logger.warning("Token refresh at %s failed: HTTP %d", config.token_url, resp.status_code)
        raise RefreshError(
            f"Token refresh failed: {resp.text}",
            status_code=resp.status_code,
            body=resp.text,
        )

    return _parse_token_response(resp, fetched_at, RefreshError, "")
