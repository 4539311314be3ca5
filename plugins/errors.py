"""
Exception taxonomy for the plugin subsystem.

Routes translate these into HTTP errors; the scheduler logs them per
unit and moves on.
"""

from __future__ import annotations

from typing import Optional


class PluginError(Exception):
    """Base class for every plugin-subsystem failure."""


class AuthorizationExpired(PluginError):
    """The OAuth ``state`` is unknown, already used, or past its TTL."""

    def __init__(self, message: str = "Authorization request expired or unknown") -> None:
        super().__init__(message)


class TokenRequestError(PluginError):
    """The provider's token endpoint rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ExchangeError(TokenRequestError):
    """Authorization-code exchange failed."""


class RefreshError(TokenRequestError):
    """Access-token refresh failed."""


class PluginNotFound(PluginError):
    def __init__(self, plugin_id: str) -> None:
        super().__init__(f"Plugin '{plugin_id}' not found")
        self.plugin_id = plugin_id


class NotConnected(PluginError):
    def __init__(self, user_id: str, plugin_id: str) -> None:
        super().__init__(f"Plugin '{plugin_id}' is not connected for user {user_id}")
        self.user_id = user_id
        self.plugin_id = plugin_id
