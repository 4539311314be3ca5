"""
Plugin API routes — connect/callback, status, disconnect, sync now.

Route prefix: /api/v1/plugins
"""

from __future__ import annotations

import html
import logging
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import db_session, get_current_user_id, get_scheduler
from config.settings import config
from plugins.base import BasePlugin
from plugins.config_store import (
    disable_user_plugin,
    get_user_plugin_config,
    save_plugin_credentials,
)
from plugins.errors import AuthorizationExpired, ExchangeError, NotConnected, PluginNotFound
from plugins.oauth import (
    build_authorization_url,
    exchange_code_for_tokens,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from plugins.oauth_state import pending_auths
from plugins.registry import PluginRegistry
from plugins.scheduler import PluginSyncScheduler
from plugins.schemas import PluginStatus, SyncRequest, SyncResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["plugins"])


def _get_plugin(plugin_id: str) -> BasePlugin:
    plugin = PluginRegistry().get(plugin_id)
    if plugin is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plugin '{plugin_id}' not found or not configured",
        )
    return plugin


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/")
async def list_plugins() -> List[Dict[str, Any]]:
    """All registered plugins with metadata and field catalog."""
    return PluginRegistry().list_plugins()


@router.get("/scheduler/status")
async def scheduler_status(
    scheduler: PluginSyncScheduler = Depends(get_scheduler),
) -> Dict[str, bool]:
    return {"running": scheduler.is_running(), "sweep_in_progress": scheduler.run_in_progress}


@router.get("/{plugin_id}", response_model=PluginStatus)
async def plugin_status(
    plugin_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> PluginStatus:
    plugin = _get_plugin(plugin_id)
    row = await get_user_plugin_config(session, user_id, plugin_id)
    return PluginStatus(
        plugin=plugin.describe(),
        connected=bool(row is not None and row.credentials),
        enabled=bool(row is not None and row.enabled),
        last_sync=row.last_sync.isoformat() if row is not None and row.last_sync else None,
        last_error=row.last_error if row is not None else None,
    )


@router.get("/{plugin_id}/connect")
async def connect_plugin(
    plugin_id: str,
    user_id: str = Depends(get_current_user_id),
) -> Dict[str, str]:
    """
    Begin the OAuth handshake.

    Frontend should redirect the user (or open a popup) to ``auth_url``.
    """
    plugin = _get_plugin(plugin_id)
    oauth_config = plugin.oauth_config

    state = generate_state()
    verifier = generate_code_verifier()
    pending_auths.put(
        state,
        user_id=user_id,
        plugin_id=plugin_id,
        code_verifier=verifier,
        ttl_seconds=config.oauth_state_ttl_seconds,
    )
    challenge = generate_code_challenge(verifier) if oauth_config.use_pkce else None
    auth_url = build_authorization_url(oauth_config, state, challenge)

    logger.info("OAuth handshake started: user=%s plugin=%s", user_id, plugin_id)
    return {"auth_url": auth_url, "plugin_id": plugin_id}


@router.get("/{plugin_id}/callback")
async def oauth_callback(
    plugin_id: str,
    state: str = Query(...),
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
) -> HTMLResponse:
    """
    Provider redirect target.  Exchanges the code, stores credentials and
    returns a small HTML page that notifies the opener window.
    """
    plugin = _get_plugin(plugin_id)

    pending = pending_auths.take_once(state)
    if pending is None or pending.plugin_id != plugin_id:
        exc = AuthorizationExpired()
        logger.warning("OAuth callback with unknown or expired state for %s", plugin_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if error or not code:
        message = f"Authorization denied: {error or 'no code returned'}"
        return HTMLResponse(_callback_html(False, message, plugin.name), status_code=200)

    try:
        credentials = await exchange_code_for_tokens(
            plugin.oauth_config, code, pending.code_verifier
        )
    except (ExchangeError, httpx.HTTPError) as exc:
        logger.error("OAuth exchange failed for %s: %s", plugin_id, exc)
        return HTMLResponse(
            _callback_html(False, "Connection failed, please try again", plugin.name),
            status_code=200,
        )

    await save_plugin_credentials(session, pending.user_id, plugin_id, credentials)
    await session.commit()

    logger.info("OAuth connected: user=%s plugin=%s", pending.user_id, plugin_id)
    return HTMLResponse(_callback_html(True, f"Connected {plugin.name}", plugin.name), status_code=200)


@router.delete("/{plugin_id}")
async def disconnect_plugin(
    plugin_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Forget credentials and stop syncing.  Imported values are kept."""
    _get_plugin(plugin_id)
    await disable_user_plugin(session, user_id, plugin_id)
    await session.commit()
    return {"success": True}


@router.post("/{plugin_id}/sync", response_model=SyncResult)
async def sync_now(
    plugin_id: str,
    body: Optional[SyncRequest] = None,
    user_id: str = Depends(get_current_user_id),
    scheduler: PluginSyncScheduler = Depends(get_scheduler),
) -> SyncResult:
    """Run a sync immediately; defaults to the last 30 days."""
    body = body or SyncRequest()
    try:
        return await scheduler.trigger_sync(
            user_id,
            plugin_id,
            start_date=body.start_date,
            end_date=body.end_date,
        )
    except PluginNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except NotConnected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{plugin_id} not connected",
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str, plugin_name: str) -> str:
    """Popup page: posts the outcome to the opener and closes itself."""
    status_text = "Connected!" if success else "Failed"
    color = "#00d992" if success else "#ef4444"
    safe_message = html.escape(message)
    safe_name = html.escape(plugin_name)

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{safe_name} {status_text}</title>
    <style>
        body {{ font-family: system-ui, sans-serif; display: flex; align-items: center;
               justify-content: center; height: 100vh; margin: 0; }}
        h2 {{ color: {color}; }}
    </style>
</head>
<body>
    <div>
        <h2>{status_text}</h2>
        <p>{safe_message}</p>
    </div>
    <script>
        if (window.opener) {{
            window.opener.postMessage({{
                type: 'plugin-oauth-callback',
                success: {'true' if success else 'false'},
            }}, window.location.origin);
        }}
        setTimeout(() => window.close(), 2000);
    </script>
</body>
</html>"""
