"""Unit tests for the resource pool."""

import asyncio

import pytest

from pageshot.capture.resource_pool import (
    BrowserConfig,
    BrowserEngineType,
    ResourcePool,
    context_key,
    session_cache_key,
)
from pageshot.capture.session_store import SessionStore
from pageshot.models.capture import SessionArtifacts, Viewport

from tests.fakes import FakeClock, FakeLauncher


class TestBrowserConfig:
    """Tests for BrowserConfig conversion."""

    def test_browser_options_include_chromium_args(self):
        config = BrowserConfig(headless=False, slow_mo=50)
        options = config.to_browser_options()

        assert options['headless'] is False
        assert options['slow_mo'] == 50
        assert '--no-sandbox' in options['args']

    def test_browser_options_skip_args_for_firefox(self):
        config = BrowserConfig(engine=BrowserEngineType.FIREFOX)

        assert 'args' not in config.to_browser_options()

    def test_context_options(self):
        config = BrowserConfig(locale="en-US", timezone="Europe/Berlin", extra_headers={"X-Test": "1"})
        options = config.to_context_options(Viewport(width=1280, height=720))

        assert options['viewport'] == {'width': 1280, 'height': 720}
        assert options['locale'] == "en-US"
        assert options['timezone_id'] == "Europe/Berlin"
        assert options['extra_http_headers'] == {"X-Test": "1"}
        assert options['ignore_https_errors'] is True
        assert "Chrome" in options['user_agent']


class TestKeys:

    def test_context_key(self):
        assert context_key(Viewport(width=800, height=600), "alice") == "alice_800x600"
        assert context_key(Viewport(width=800, height=600)) == "default_800x600"

    def test_session_cache_key(self):
        assert session_cache_key("a.test", "u1") == "a.test_u1"


class TestBrowserPool:
    """Tests for browser acquisition."""

    def test_rejects_empty_pool(self):
        with pytest.raises(ValueError):
            ResourcePool(max_browsers=0)

    @pytest.mark.asyncio
    async def test_reuses_browser_for_same_key(self, pool, launcher):
        first = await pool.acquire_browser("alice")
        second = await pool.acquire_browser("alice")

        assert first is second
        assert len(launcher.launched) == 1
        assert pool.get_stats()['browser_reuse'] == 1

    @pytest.mark.asyncio
    async def test_dead_browser_is_evicted_and_replaced(self, pool, launcher):
        first = await pool.acquire_browser("alice")
        first.connected = False

        second = await pool.acquire_browser("alice")

        assert second is not first
        assert first.closed
        assert len(launcher.launched) == 2
        assert pool.get_stats()['browsers_evicted'] == 1

    @pytest.mark.asyncio
    async def test_full_pool_reassigns_least_recently_used(self, pool, launcher):
        alice = await pool.acquire_browser("alice")
        bob = await pool.acquire_browser("bob")

        carol = await pool.acquire_browser("carol")

        assert carol is alice
        assert carol is not bob
        assert len(launcher.launched) == 2
        assert pool.browser_count == 2
        assert pool.get_stats()['browser_reassignments'] == 1

        # The alias sticks for later acquisitions
        assert await pool.acquire_browser("carol") is alice

    @pytest.mark.asyncio
    async def test_concurrent_acquisition_never_exceeds_cap(self, pool, launcher):
        browsers = await asyncio.gather(*(pool.acquire_browser(f"user{i}") for i in range(6)))

        assert len(browsers) == 6
        assert len(launcher.launched) == 2
        assert pool.browser_count <= pool.max_browsers

    @pytest.mark.asyncio
    async def test_dead_lru_is_evicted_when_full(self, pool, launcher):
        alice = await pool.acquire_browser("alice")
        await pool.acquire_browser("bob")
        alice.connected = False

        carol = await pool.acquire_browser("carol")

        assert carol is launcher.launched[-1]
        assert len(launcher.launched) == 3
        assert pool.browser_count == 2


class TestContextPool:
    """Tests for context acquisition."""

    @pytest.mark.asyncio
    async def test_reuses_context_for_same_key_and_viewport(self, pool):
        browser = await pool.acquire_browser("alice")
        viewport = Viewport(width=1280, height=720)

        first = await pool.acquire_context(browser, viewport, "alice")
        second = await pool.acquire_context(browser, viewport, "alice")

        assert first is second
        assert first.options['viewport'] == {'width': 1280, 'height': 720}
        assert pool.get_stats()['context_reuse'] == 1

    @pytest.mark.asyncio
    async def test_different_viewport_gets_new_context(self, pool):
        browser = await pool.acquire_browser("alice")

        first = await pool.acquire_context(browser, Viewport(width=1280, height=720), "alice")
        second = await pool.acquire_context(browser, Viewport(width=800, height=600), "alice")

        assert first is not second
        assert pool.context_count == 2

    @pytest.mark.asyncio
    async def test_closed_context_is_recreated(self, pool):
        browser = await pool.acquire_browser("alice")
        viewport = Viewport()

        first = await pool.acquire_context(browser, viewport, "alice")
        await first.close()
        second = await pool.acquire_context(browser, viewport, "alice")

        assert second is not first
        assert pool.get_stats()['contexts_created'] == 2

    @pytest.mark.asyncio
    async def test_same_key_on_another_browser_leaves_context_open(self, pool):
        alice = await pool.acquire_browser("alice")
        bob = await pool.acquire_browser("bob")
        viewport = Viewport()

        first = await pool.acquire_context(alice, viewport, "shared")
        second = await pool.acquire_context(bob, viewport, "shared")

        assert second is not first
        assert not first.closed
        assert pool.context_count == 2
        assert await pool.acquire_context(alice, viewport, "shared") is first
        assert pool.get_stats()['context_reuse'] == 1


class TestSessionCache:
    """Tests for cached authentication sessions."""

    def test_hit_within_ttl(self, pool, clock):
        artifacts = SessionArtifacts(cookies=[{"name": "sid", "value": "1"}])
        pool.cache_session("a.test", "u1", artifacts)

        clock.advance(1799)

        assert pool.get_cached_session("a.test", "u1") == artifacts
        assert pool.get_stats()['cache_hits'] == 1

    def test_expires_after_ttl(self, pool, clock):
        pool.cache_session("a.test", "u1", SessionArtifacts())

        clock.advance(1800)

        assert pool.get_cached_session("a.test", "u1") is None
        stats = pool.get_stats()
        assert stats['sessions_expired'] == 1
        assert stats['cache_misses'] == 1
        assert pool.session_count == 0

    def test_sessions_are_keyed_by_principal(self, pool):
        pool.cache_session("a.test", "u1", SessionArtifacts())

        assert pool.get_cached_session("a.test", "u2") is None
        assert pool.get_cached_session("b.test", "u1") is None

    def test_invalidate(self, pool):
        pool.cache_session("a.test", "u1", SessionArtifacts())
        pool.invalidate_session("a.test", "u1")

        assert pool.get_cached_session("a.test", "u1") is None

    def test_seeded_from_session_store(self, tmp_path, clock, launcher):
        store = SessionStore(tmp_path, clock=lambda: 5000.0)
        store.save("a.test", "u1", SessionArtifacts(cookies=[{"name": "sid", "value": "abc"}]))

        pool = ResourcePool(clock=clock, launcher=launcher, session_store=store)
        restored = pool.get_cached_session("a.test", "u1")

        assert restored is not None
        assert restored.cookies[0]['value'] == "abc"

    def test_cache_writes_to_session_store(self, tmp_path, clock, launcher):
        store = SessionStore(tmp_path)
        pool = ResourcePool(clock=clock, launcher=launcher, session_store=store)

        pool.cache_session("a.test", "u1", SessionArtifacts(storage={"token": "t"}))

        assert store.path_for("a.test", "u1").exists()


class TestLifecycle:
    """Tests for sweeping and shutdown."""

    @pytest.mark.asyncio
    async def test_sweep_removes_idle_resources(self, pool, clock):
        browser = await pool.acquire_browser("alice")
        await pool.acquire_context(browser, Viewport(), "alice")
        pool.cache_session("a.test", "alice", SessionArtifacts())

        clock.advance(1801)
        removed = await pool.sweep()

        assert removed == {'sessions': 1, 'contexts': 1, 'browsers': 1}
        assert browser.closed
        assert pool.browser_count == 0
        assert pool.get_stats()['sweeps'] == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_recent_resources(self, pool, clock):
        browser = await pool.acquire_browser("alice")

        clock.advance(60)
        removed = await pool.sweep()

        assert removed['browsers'] == 0
        assert not browser.closed

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, clock):
        launcher = FakeLauncher()
        pool = ResourcePool(clock=clock, launcher=launcher, sweep_interval_s=3600)

        await pool.start()
        browser = await pool.acquire_browser("alice")
        context = await pool.acquire_context(browser, Viewport(), "alice")
        await pool.shutdown()

        assert browser.closed
        assert context.closed
        assert pool.browser_count == 0
        assert pool.context_count == 0

    def test_repr(self):
        pool = ResourcePool(clock=FakeClock(), launcher=FakeLauncher())

        assert repr(pool) == "ResourcePool(browsers=0/3, contexts=0, sessions=0)"
