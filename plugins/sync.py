"""
Sync orchestrator — one (user, plugin, date range) import.

Loads the stored connection, refreshes credentials when they are about
to expire, runs the plugin's fetch hook and persists the normalized
records.  Configuration problems raise; provider-side problems are
reported through ``SyncResult.errors``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from database.helpers import upsert_metric_values
from plugins.config_store import (
    get_user_plugin_config,
    load_credentials,
    mark_synced,
    record_error,
    update_credentials,
)
from plugins.errors import NotConnected, RefreshError
from plugins.registry import PluginRegistry
from plugins.schemas import ImportedRecord, SyncResult

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_date_range(start_date: str, end_date: str) -> None:
    """Both dates must be ``YYYY-MM-DD`` and ``start_date <= end_date``."""
    try:
        start = date.fromisoformat(start_date)
        end = date.fromisoformat(end_date)
    except (TypeError, ValueError):
        raise ValueError(f"Dates must be YYYY-MM-DD, got {start_date!r} and {end_date!r}")
    # fromisoformat also takes week dates like 2024-W24-1 on 3.11+
    if start.isoformat() != start_date or end.isoformat() != end_date:
        raise ValueError(f"Dates must be YYYY-MM-DD, got {start_date!r} and {end_date!r}")
    if start > end:
        raise ValueError(f"start_date {start_date} is after end_date {end_date}")


def default_session_factory() -> async_sessionmaker[AsyncSession]:
    from database.session import async_session_factory

    return async_session_factory


class PluginSyncService:
    def __init__(
        self,
        registry: Optional[PluginRegistry] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Callable[[], datetime] = utcnow,
        refresh_margin_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Parameters
        ----------
        registry               : plugin lookup; falls back to the singleton.
        session_factory        : async session factory for config and record writes.
        clock                  : returns the current aware datetime.
        refresh_margin_seconds : refresh credentials expiring within this window.
        http_client            : shared client handed to plugin hooks (tests).
        """
        self._registry = registry or PluginRegistry()
        self._session_factory = session_factory or default_session_factory()
        self._clock = clock
        self._refresh_margin = (
            config.token_refresh_margin_seconds
            if refresh_margin_seconds is None
            else refresh_margin_seconds
        )
        self._http_client = http_client

    async def sync_plugin_data(
        self,
        user_id: str,
        plugin_id: str,
        start_date: str,
        end_date: str,
    ) -> SyncResult:
        """
        Import ``[start_date, end_date]`` for one user and plugin.

        Raises
        ------
        PluginNotFound – ``plugin_id`` is not registered
        NotConnected   – the user has no stored credentials for it
        ValueError     – malformed date range
        """
        plugin = self._registry.require(plugin_id)
        validate_date_range(start_date, end_date)

        async with self._session_factory() as session:
            row = await get_user_plugin_config(session, user_id, plugin_id)
            credentials = load_credentials(row)
            if credentials is None:
                raise NotConnected(user_id, plugin_id)

            now = self._clock()
            if credentials.expires_within(self._refresh_margin, now=now.timestamp()):
                if not credentials.refresh_token:
                    message = "Credentials expired and no refresh token is available"
                    logger.warning("%s sync for user %s: %s", plugin_id, user_id, message)
                    await record_error(session, row, message)
                    await session.commit()
                    return SyncResult(success=False, errors=[message])
                try:
                    credentials = await plugin.refresh_credentials(
                        credentials, http_client=self._http_client
                    )
                except (RefreshError, httpx.HTTPError) as exc:
                    # Stored credentials stay as last-known-good.
                    logger.warning("Token refresh failed for %s/%s: %s", plugin_id, user_id, exc)
                    await record_error(session, row, str(exc))
                    await session.commit()
                    return SyncResult(success=False, errors=[str(exc)])
                await update_credentials(session, row, credentials)
                await session.commit()
                logger.info("Refreshed %s credentials for user %s", plugin_id, user_id)

            fetched = await plugin.fetch_data(
                credentials, start_date, end_date, http_client=self._http_client
            )

            errors: List[str] = list(fetched.errors)
            known_fields = plugin.field_ids()
            accepted: List[ImportedRecord] = []
            for record in fetched.records:
                if record.field_id not in known_fields:
                    errors.append(f"{record.date} {record.field_id}: unknown field")
                    continue
                accepted.append(record)

            imported = await upsert_metric_values(session, user_id, plugin_id, accepted)
            await mark_synced(session, row, self._clock(), errors)
            await session.commit()

        logger.info(
            "Synced %s for user %s (%s..%s): %d records, %d errors",
            plugin_id, user_id, start_date, end_date, imported, len(errors),
        )
        return SyncResult(
            success=imported > 0 or not errors,
            records_imported=imported,
            errors=errors or None,
        )
