"""
Plugin configuration store — per-user, per-plugin connection state.

One ``PluginConfig`` row per (user, plugin): enabled flag, encrypted
credentials and last-sync bookkeeping.  Callers own the session and
decide when to commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import PluginConfig
from plugins.encryption import decrypt_credentials, encrypt_credentials
from plugins.schemas import OAuthCredentials

logger = logging.getLogger(__name__)


async def get_user_plugin_config(
    session: AsyncSession,
    user_id: str,
    plugin_id: str,
) -> Optional[PluginConfig]:
    result = await session.execute(
        select(PluginConfig).where(
            PluginConfig.user_id == user_id,
            PluginConfig.plugin_id == plugin_id,
        )
    )
    return result.scalar_one_or_none()


async def list_enabled_plugin_configs(session: AsyncSession) -> List[PluginConfig]:
    """Every enabled (user, plugin) pair across all users."""
    result = await session.execute(
        select(PluginConfig)
        .where(PluginConfig.enabled.is_(True))
        .order_by(PluginConfig.created_at)
    )
    return list(result.scalars().all())


def load_credentials(row: Optional[PluginConfig]) -> Optional[OAuthCredentials]:
    if row is None or not row.credentials:
        return None
    return decrypt_credentials(row.credentials)


async def save_plugin_credentials(
    session: AsyncSession,
    user_id: str,
    plugin_id: str,
    credentials: OAuthCredentials,
) -> PluginConfig:
    """
    Store credentials for a (user, plugin) pair, creating the row on the
    first successful authorization, and enable the plugin.
    """
    row = await get_user_plugin_config(session, user_id, plugin_id)
    if row is None:
        row = PluginConfig(user_id=user_id, plugin_id=plugin_id)
        session.add(row)
        logger.info("Created %s config for user %s", plugin_id, user_id)

    row.credentials = encrypt_credentials(credentials)
    row.enabled = True
    row.last_error = None
    await session.flush()
    return row


async def update_credentials(
    session: AsyncSession,
    row: PluginConfig,
    credentials: OAuthCredentials,
) -> None:
    """Replace the credentials of an existing row (after a refresh)."""
    row.credentials = encrypt_credentials(credentials)
    await session.flush()


async def mark_synced(
    session: AsyncSession,
    row: PluginConfig,
    when: datetime,
    errors: Optional[List[str]] = None,
) -> None:
    row.last_sync = when
    row.last_error = "; ".join(errors) if errors else None
    await session.flush()


async def disable_user_plugin(
    session: AsyncSession,
    user_id: str,
    plugin_id: str,
) -> bool:
    """
    Disable a plugin and forget its credentials.

    The row and previously imported values are kept.  Returns False if
    the user never connected this plugin.
    """
    row = await get_user_plugin_config(session, user_id, plugin_id)
    if row is None:
        return False
    row.enabled = False
    row.credentials = None
    await session.flush()
    logger.info("Disabled %s for user %s", plugin_id, user_id)
    return True


async def record_error(session: AsyncSession, row: PluginConfig, message: str) -> None:
    """Note a failed attempt without moving ``last_sync``."""
    row.last_error = message
    await session.flush()
