"""
Pydantic schemas shared by the OAuth protocol, plugins, sync and routes.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth
# ═══════════════════════════════════════════════════════════════════════════════


class OAuthConfig(BaseModel):
    """Static OAuth2 client description owned by a plugin."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: Optional[str] = None
    authorization_url: str
    token_url: str
    redirect_uri: str
    scopes: tuple[str, ...] = ()
    use_pkce: bool = True


class OAuthCredentials(BaseModel):
    """Tokens for one (user, plugin) pair.  Replaced wholesale on refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int  # absolute epoch seconds
    token_type: str = "Bearer"
    scope: str = ""

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return self.expires_at <= current + seconds


# ═══════════════════════════════════════════════════════════════════════════════
# Plugin contract
# ═══════════════════════════════════════════════════════════════════════════════


class FieldDefinition(BaseModel):
    id: str
    name: str
    unit: str = ""
    description: str = ""


class ImportedRecord(BaseModel):
    """One normalized daily value produced by a plugin fetch."""

    date: str
    field_id: str
    value: float

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        if date.fromisoformat(value).isoformat() != value:
            raise ValueError(f"expected YYYY-MM-DD, got {value!r}")
        return value


class FetchResult(BaseModel):
    records: List[ImportedRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Sync
# ═══════════════════════════════════════════════════════════════════════════════


class SyncResult(BaseModel):
    success: bool
    records_imported: int = 0
    errors: Optional[List[str]] = None


class SweepUnitResult(BaseModel):
    user_id: str
    plugin_id: str
    result: SyncResult


class SweepReport(BaseModel):
    start_date: str
    end_date: str
    units: List[SweepUnitResult] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)  # plugin ids not in the registry


# ═══════════════════════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════════════════════


class SyncRequest(BaseModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class PluginStatus(BaseModel):
    plugin: Dict[str, Any]
    connected: bool
    enabled: bool
    last_sync: Optional[str] = None
    last_error: Optional[str] = None
