"""
Tests for the pending-authorization store.
"""

from plugins.oauth_state import PendingAuthStore


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _put(store, state, ttl=600, user_id="user-1"):
    return store.put(
        state,
        user_id=user_id,
        plugin_id="fitbit",
        code_verifier=f"verifier-{state}",
        ttl_seconds=ttl,
    )


class TestPendingAuthStore:
    def test_take_once_returns_entry_exactly_once(self):
        clock = FakeClock()
        store = PendingAuthStore(clock=clock)
        _put(store, "abc")

        entry = store.take_once("abc")
        assert entry is not None
        assert entry.user_id == "user-1"
        assert entry.plugin_id == "fitbit"
        assert entry.code_verifier == "verifier-abc"
        assert entry.expires_at == 1_600.0

        assert store.take_once("abc") is None

    def test_unknown_state_is_not_found(self):
        assert PendingAuthStore().take_once("never-issued") is None

    def test_expired_entry_is_not_returned(self):
        clock = FakeClock()
        store = PendingAuthStore(clock=clock)
        _put(store, "abc", ttl=60)

        clock.now += 61
        assert store.take_once("abc") is None
        assert len(store) == 0

    def test_entry_valid_until_ttl(self):
        clock = FakeClock()
        store = PendingAuthStore(clock=clock)
        _put(store, "abc", ttl=60)

        clock.now += 59
        assert store.take_once("abc") is not None

    def test_insert_sweeps_all_expired_entries(self):
        clock = FakeClock()
        store = PendingAuthStore(clock=clock)
        _put(store, "old-1", ttl=10)
        _put(store, "old-2", ttl=20)
        _put(store, "fresh", ttl=600)
        assert len(store) == 3

        clock.now += 30
        _put(store, "new")

        assert len(store) == 2
        assert "old-1" not in store
        assert "old-2" not in store
        assert "fresh" in store
        assert "new" in store

    def test_reusing_state_overwrites(self):
        store = PendingAuthStore(clock=FakeClock())
        _put(store, "abc", user_id="first")
        _put(store, "abc", user_id="second")

        assert store.take_once("abc").user_id == "second"
        assert store.take_once("abc") is None
