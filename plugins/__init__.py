"""
plugins — third-party data-source integrations.

Provides a generic plugin framework that handles:
  • OAuth2 Authorization Code + PKCE handshake and token refresh
  • Short-lived pending-authorization state for the callback
  • Per-user plugin configuration with encrypted credentials
  • Date-range sync into the metric-value store
  • A recurring, single-flight sync scheduler

Each provider (Fitbit, …) is a subclass of BasePlugin.
"""
