"""
BasePlugin — abstract interface for all data-source plugins.

Every provider (Fitbit, Oura, Withings, …) subclasses this.  The sync
service only talks to this contract: metadata, a catalog of importable
fields, a credential-refresh hook and a data-import hook.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from plugins.oauth import refresh_access_token
from plugins.schemas import FetchResult, FieldDefinition, OAuthConfig, OAuthCredentials


class BasePlugin(ABC):
    """Abstract base for OAuth-backed data-source plugins."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def id(self) -> str:
        """Unique slug: 'fitbit', 'oura', …"""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable: 'Fitbit', 'Oura', …"""
        ...

    @property
    def description(self) -> str:
        return ""

    @property
    def icon(self) -> str:
        """Optional emoji / icon for UI."""
        return "🔌"

    @property
    @abstractmethod
    def oauth_config(self) -> OAuthConfig:
        """OAuth client description used for the handshake and refreshes."""
        ...

    # ── Data ────────────────────────────────────────────────────────────

    @abstractmethod
    def get_available_fields(self) -> List[FieldDefinition]:
        """Catalog of fields this plugin can import."""
        ...

    @abstractmethod
    async def fetch_data(
        self,
        credentials: OAuthCredentials,
        start_date: str,
        end_date: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> FetchResult:
        """
        Fetch normalized daily records for ``[start_date, end_date]``.

        Both dates are inclusive ``YYYY-MM-DD`` strings.  A failure limited
        to one field goes into ``FetchResult.errors``; anything that makes
        the whole fetch meaningless may raise.
        """
        ...

    # ── Credentials ─────────────────────────────────────────────────────

    async def refresh_credentials(
        self,
        credentials: OAuthCredentials,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> OAuthCredentials:
        """
        Obtain fresh credentials.  Providers that do not rotate refresh
        tokens get the previous one carried over.
        """
        refreshed = await refresh_access_token(
            self.oauth_config,
            credentials.refresh_token or "",
            http_client=http_client,
        )
        if refreshed.refresh_token is None:
            refreshed = refreshed.model_copy(update={"refresh_token": credentials.refresh_token})
        return refreshed

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """True when client credentials for this provider are present."""
        return True

    def field_ids(self) -> set[str]:
        return {f.id for f in self.get_available_fields()}

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "configured": self.is_configured(),
            "fields": [f.model_dump() for f in self.get_available_fields()],
        }
