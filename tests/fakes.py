"""
Test doubles shared across test modules.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64encode
from typing import List, Optional

import httpx

from config.settings import config
from plugins.base import BasePlugin
from plugins.schemas import (
    FetchResult,
    FieldDefinition,
    ImportedRecord,
    OAuthConfig,
    OAuthCredentials,
)


def make_credentials(
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_in: int = 3600,
) -> OAuthCredentials:
    return OAuthCredentials(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=int(time.time()) + expires_in,
        token_type="Bearer",
        scope="activity",
    )


class FakePlugin(BasePlugin):
    """Plugin double: records fetch calls and returns scripted results."""

    def __init__(self, plugin_id: str = "fake", records: Optional[List[ImportedRecord]] = None):
        self._id = plugin_id
        self.records = records if records is not None else [
            ImportedRecord(date="2024-06-09", field_id="steps", value=1000),
            ImportedRecord(date="2024-06-10", field_id="steps", value=2000),
        ]
        self.fetch_errors: List[str] = []
        self.fetch_calls: List[tuple] = []
        self.refreshed: Optional[OAuthCredentials] = None
        self.refresh_exc: Optional[Exception] = None
        self.before_fetch = None

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._id.title()

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            client_id="client",
            client_secret="secret",
            authorization_url="https://provider.test/authorize",
            token_url="https://provider.test/token",
            redirect_uri="https://app.test/callback",
            scopes=["activity"],
        )

    def get_available_fields(self) -> List[FieldDefinition]:
        return [FieldDefinition(id="steps", name="Steps", unit="steps")]

    async def refresh_credentials(self, credentials, *, http_client=None):
        if self.refresh_exc is not None:
            raise self.refresh_exc
        return self.refreshed

    async def fetch_data(self, credentials, start_date, end_date, *, http_client=None):
        self.fetch_calls.append((credentials.access_token, start_date, end_date))
        if self.before_fetch is not None:
            await self.before_fetch(credentials)
        return FetchResult(records=list(self.records), errors=list(self.fetch_errors))


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_token(user_id: str, expires_in: int = 3600) -> str:
    """Bearer token in the format the surrounding application issues."""
    raw = json.dumps({"user_id": user_id, "exp": int(time.time()) + expires_in}).encode()
    sig = hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()
    return b64encode(raw).decode() + "." + sig


class RefreshingFakePlugin(FakePlugin):
    """FakePlugin that refreshes through the real token endpoint client."""

    refresh_credentials = BasePlugin.refresh_credentials
