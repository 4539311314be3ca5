"""
In-process store for pending OAuth authorizations.

Bridges the redirect to the provider and the callback: the ``state``
query parameter maps back to the user who started the handshake and the
PKCE verifier needed for the code exchange.  Entries are read-once.

The store is volatile.  A restart during an in-flight handshake fails
that handshake, and several API instances need a shared backing store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAuth:
    user_id: str
    plugin_id: str
    code_verifier: str
    expires_at: float  # epoch seconds


class PendingAuthStore:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pending: Dict[str, PendingAuth] = {}

    def put(
        self,
        state: str,
        *,
        user_id: str,
        plugin_id: str,
        code_verifier: str,
        ttl_seconds: float,
    ) -> PendingAuth:
        """Insert a pending authorization after sweeping expired ones."""
        self._sweep_expired()
        entry = PendingAuth(
            user_id=user_id,
            plugin_id=plugin_id,
            code_verifier=code_verifier,
            expires_at=self._clock() + ttl_seconds,
        )
        self._pending[state] = entry
        return entry

    def take_once(self, state: str) -> Optional[PendingAuth]:
        """
        Remove and return the entry for ``state``.

        Returns None for unknown, already-consumed and expired states alike.
        """
        entry = self._pending.pop(state, None)
        if entry is None or entry.expires_at < self._clock():
            return None
        return entry

    def _sweep_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._pending.items() if entry.expires_at < now]
        for key in expired:
            del self._pending[key]
        if expired:
            logger.debug("Dropped %d expired pending authorization(s)", len(expired))

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, state: object) -> bool:
        return state in self._pending


pending_auths = PendingAuthStore()
