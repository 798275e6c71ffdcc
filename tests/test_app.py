"""Tests for the application factory and its lifespan."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from relaycms.core.models import Session
from relaycms.core.session_store import MemorySessionStore
from relaycms.main import create_app, periodic_cleanup


class TestSessionCleanup:
    """Tests for expiring stored sessions in the background."""

    def test_periodic_cleanup_removes_idle_sessions(self, clock):
        """Test the cleanup loop drops idle sessions and stops when cancelled."""
        store = MemorySessionStore(ttl=10, clock=clock)
        store.save(Session())
        clock.advance(11)

        async def run():
            task = asyncio.create_task(periodic_cleanup(store, 0))
            while len(store):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(asyncio.wait_for(run(), timeout=5))
        assert len(store) == 0

    def test_cleanup_survives_store_errors(self, clock):
        """Test a failing cleanup is logged and retried."""
        calls = []

        class FlakyStore(MemorySessionStore):
            def cleanup_expired(self):
                calls.append(1)
                if len(calls) == 1:
                    raise OSError("disk unavailable")
                return super().cleanup_expired()

        store = FlakyStore(ttl=10, clock=clock)

        async def run():
            task = asyncio.create_task(periodic_cleanup(store, 0))
            while len(calls) < 2:
                await asyncio.sleep(0)
            task.cancel()

        asyncio.run(asyncio.wait_for(run(), timeout=5))
        assert len(calls) >= 2

    def test_shutdown_drops_expired_sessions(self, site, clock):
        """Test stopping the app clears idle sessions from the store."""
        store = MemorySessionStore(ttl=1800, clock=clock)
        app = create_app(site, session_store=store)

        with TestClient(app) as client:
            assert client.get("/admin/login").status_code == 200
            assert len(store) == 1
            clock.advance(1801)

        assert len(store) == 0
