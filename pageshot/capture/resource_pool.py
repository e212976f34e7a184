"""Pooled browser processes, browsing contexts and cached sessions.

This module provides the ResourcePool that owns every long-lived browser
resource of the engine. Browsers are reused across requests and keyed by an
identity string; contexts are keyed by (session key, viewport); authenticated
session material is cached by (domain, principal) with a fixed TTL. When the
browser pool is full the least recently used browser is reassigned instead of
blocking, so acquisition always makes progress.

Time is read from an injected clock so expiry and eviction can be driven
deterministically.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from ..models.capture import SessionArtifacts, Viewport
from .session_store import SessionStore

logger = logging.getLogger(__name__)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class BrowserConfig:
    """Configuration for browser launch and context setup."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        slow_mo: int = 0,
        launch_args: Optional[List[str]] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        extra_headers: Optional[Dict[str, str]] = None,
        ignore_https_errors: bool = True,
        locale: Optional[str] = None,
        timezone: Optional[str] = None,
        **kwargs
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            slow_mo: Slow down operations by specified milliseconds
            launch_args: Extra command line switches for chromium
            user_agent: User-Agent string applied to every context
            extra_headers: Additional HTTP headers for all requests
            ignore_https_errors: Ignore SSL/TLS certificate errors
            locale: Locale for browser contexts
            timezone: Timezone ID (e.g., 'America/New_York')
        """
        self.engine = engine
        self.headless = headless
        self.slow_mo = slow_mo
        self.launch_args = list(DEFAULT_LAUNCH_ARGS if launch_args is None else launch_args)
        self.user_agent = user_agent
        self.extra_headers = extra_headers or {}
        self.ignore_https_errors = ignore_https_errors
        self.locale = locale
        self.timezone = timezone
        self.extra_options = kwargs

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
        }
        if self.engine == BrowserEngineType.CHROMIUM and self.launch_args:
            options['args'] = list(self.launch_args)
        options.update(self.extra_options)
        return options

    def to_context_options(self, viewport: Viewport) -> Dict[str, Any]:
        """Convert to Playwright browser context options for one viewport."""
        options = {'viewport': {'width': viewport.width, 'height': viewport.height}}

        if self.user_agent:
            options['user_agent'] = self.user_agent

        if self.extra_headers:
            options['extra_http_headers'] = self.extra_headers

        if self.ignore_https_errors:
            options['ignore_https_errors'] = True

        if self.locale:
            options['locale'] = self.locale

        if self.timezone:
            options['timezone_id'] = self.timezone

        return options


@dataclass
class PooledBrowser:
    """One running browser process."""

    key: str
    browser: Browser
    created_at: float
    last_used: float
    use_count: int = 0


@dataclass
class PooledContext:
    """One browsing context bound to a session key and viewport."""

    key: str
    browser_key: str
    browser: Browser
    context: BrowserContext
    created_at: float
    last_used: float


@dataclass
class CachedSession:
    """Authenticated session material for one (domain, principal) pair."""

    domain: str
    principal: str
    artifacts: SessionArtifacts
    cached_at: float

    def age(self, now: float) -> float:
        return now - self.cached_at


@dataclass
class PoolStats:
    """Counters exposed by ResourcePool.get_stats()."""

    browsers_launched: int = 0
    browser_reuse: int = 0
    browser_reassignments: int = 0
    browsers_evicted: int = 0
    contexts_created: int = 0
    context_reuse: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    sessions_expired: int = 0
    sweeps: int = 0


Launcher = Callable[[BrowserConfig], Awaitable[Browser]]


def context_key(viewport: Viewport, session_key: Optional[str] = None) -> str:
    """Build the pool key for a (session key, viewport) pair."""
    return f"{session_key or 'default'}_{viewport.width}x{viewport.height}"


def session_cache_key(domain: str, principal: str) -> str:
    return f"{domain}_{principal}"


class ResourcePool:
    """Owner of pooled browsers, contexts and cached sessions."""

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        max_browsers: int = 3,
        session_ttl_s: float = 30 * 60,
        idle_ttl_s: float = 10 * 60,
        sweep_interval_s: float = 60,
        clock: Callable[[], float] = time.monotonic,
        launcher: Optional[Launcher] = None,
        session_store: Optional[SessionStore] = None,
    ):
        """Initialize the pool.

        Args:
            config: Browser launch and context configuration
            max_browsers: Maximum number of concurrently pooled browsers
            session_ttl_s: Lifetime of a cached session in seconds
            idle_ttl_s: Idle time after which browsers and contexts are swept
            sweep_interval_s: Period of the background sweep task
            clock: Monotonic time source in seconds
            launcher: Coroutine that launches a browser; defaults to Playwright
            session_store: Optional on-disk session snapshot store
        """
        if max_browsers < 1:
            raise ValueError("max_browsers must be at least 1")

        self.config = config or BrowserConfig()
        self.max_browsers = max_browsers
        self.session_ttl_s = session_ttl_s
        self.idle_ttl_s = idle_ttl_s
        self.sweep_interval_s = sweep_interval_s
        self._clock = clock
        self._launcher = launcher or self._launch_with_playwright
        self._session_store = session_store

        self._playwright: Optional[Playwright] = None
        self._browsers: "OrderedDict[str, PooledBrowser]" = OrderedDict()
        self._aliases: Dict[str, str] = {}
        self._contexts: "OrderedDict[str, PooledContext]" = OrderedDict()
        self._sessions: Dict[str, CachedSession] = {}

        self._browser_lock = asyncio.Lock()
        self._context_lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None
        self.stats = PoolStats()

    # Browser pool

    async def acquire_browser(self, key: str = "default") -> Browser:
        """Return a live browser for ``key``, launching or reassigning as needed.

        A pooled browser for the same key is reused after a liveness probe;
        a failing probe evicts it. When the pool is full the least recently
        used browser is lent to ``key`` instead of launching a new one.
        """
        async with self._browser_lock:
            now = self._clock()
            owner_key = key if key in self._browsers else self._aliases.get(key)

            if owner_key is not None and owner_key in self._browsers:
                entry = self._browsers[owner_key]
                if self._probe_browser(entry):
                    self._touch_browser(entry, now)
                    self.stats.browser_reuse += 1
                    logger.debug(f"Reusing browser '{entry.key}' for '{key}'")
                    return entry.browser
                logger.warning(f"Browser '{entry.key}' failed liveness probe, evicting")
                await self._evict_browser(entry.key)

            while len(self._browsers) >= self.max_browsers:
                lru_key, lru = next(iter(self._browsers.items()))
                if self._probe_browser(lru):
                    self._aliases[key] = lru_key
                    self._touch_browser(lru, now)
                    self.stats.browser_reassignments += 1
                    logger.info(
                        f"Browser pool at capacity ({self.max_browsers}), "
                        f"reassigning '{lru_key}' to '{key}'"
                    )
                    return lru.browser
                logger.warning(f"Least recently used browser '{lru_key}' is dead, evicting")
                await self._evict_browser(lru_key)

            browser = await self._launcher(self.config)
            entry = PooledBrowser(key=key, browser=browser, created_at=now, last_used=now, use_count=1)
            self._browsers[key] = entry
            self._aliases.pop(key, None)
            self.stats.browsers_launched += 1
            logger.info(f"Launched browser '{key}' ({len(self._browsers)}/{self.max_browsers})")
            return browser

    def _touch_browser(self, entry: PooledBrowser, now: float) -> None:
        entry.last_used = now
        entry.use_count += 1
        self._browsers.move_to_end(entry.key)

    def _probe_browser(self, entry: PooledBrowser) -> bool:
        try:
            return bool(entry.browser.is_connected()) and bool(entry.browser.version)
        except Exception as e:
            logger.debug(f"Browser probe for '{entry.key}' raised: {e}")
            return False

    async def _evict_browser(self, key: str) -> None:
        entry = self._browsers.pop(key, None)
        if entry is None:
            return

        for alias in [a for a, owner in self._aliases.items() if owner == key]:
            del self._aliases[alias]

        for ctx_key in [k for k, c in self._contexts.items() if c.browser_key == key]:
            await self._close_context(ctx_key)

        try:
            await entry.browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser '{key}': {e}")

        self.stats.browsers_evicted += 1
        logger.debug(f"Evicted browser '{key}'")

    def _browser_key_for(self, browser: Browser) -> Optional[str]:
        for key, entry in self._browsers.items():
            if entry.browser is browser:
                return key
        return None

    @property
    def browser_count(self) -> int:
        return len(self._browsers)

    # Context pool

    async def acquire_context(
        self,
        browser: Browser,
        viewport: Viewport,
        session_key: Optional[str] = None,
    ) -> BrowserContext:
        """Return the context for (session key, viewport) on ``browser``, creating it on first use.

        Contexts are pooled per browser, so a context handed out on one
        browser stays open when the same key is requested on another.
        """
        key = context_key(viewport, session_key)

        async with self._context_lock:
            now = self._clock()
            browser_key = self._browser_key_for(browser) or "unpooled"
            slot = f"{browser_key}/{key}"
            entry = self._contexts.get(slot)

            if entry is not None:
                if entry.browser is not browser:
                    # slot held by another unpooled browser; its owner still uses the context
                    del self._contexts[slot]
                elif await self._probe_context(entry):
                    entry.last_used = now
                    self._contexts.move_to_end(slot)
                    self.stats.context_reuse += 1
                    logger.debug(f"Reusing context '{key}' on browser '{browser_key}'")
                    return entry.context
                else:
                    logger.debug(f"Context '{key}' on browser '{browser_key}' is stale, recreating")
                    await self._close_context(slot)

            context = await browser.new_context(**self.config.to_context_options(viewport))
            self._contexts[slot] = PooledContext(
                key=key,
                browser_key=browser_key,
                browser=browser,
                context=context,
                created_at=now,
                last_used=now,
            )
            self.stats.contexts_created += 1
            logger.debug(f"Created context '{key}' on browser '{browser_key}'")
            return context

    async def _probe_context(self, entry: PooledContext) -> bool:
        try:
            await entry.context.cookies()
            return True
        except Exception as e:
            logger.debug(f"Context probe for '{entry.key}' raised: {e}")
            return False

    async def _close_context(self, key: str) -> None:
        entry = self._contexts.pop(key, None)
        if entry is None:
            return
        try:
            await entry.context.close()
        except Exception as e:
            logger.warning(f"Error closing context '{key}': {e}")

    @property
    def context_count(self) -> int:
        return len(self._contexts)

    # Session cache

    def get_cached_session(self, domain: str, principal: str) -> Optional[SessionArtifacts]:
        """Return cached session artifacts while younger than the session TTL."""
        key = session_cache_key(domain, principal)
        now = self._clock()
        entry = self._sessions.get(key)

        if entry is None and self._session_store is not None:
            entry = self._load_stored_session(domain, principal, now)

        if entry is None:
            self.stats.cache_misses += 1
            return None

        if entry.age(now) >= self.session_ttl_s:
            del self._sessions[key]
            self.stats.sessions_expired += 1
            self.stats.cache_misses += 1
            logger.info(f"Cached session for {principal}@{domain} expired")
            return None

        self.stats.cache_hits += 1
        logger.debug(f"Session cache hit for {principal}@{domain}")
        return entry.artifacts

    def cache_session(self, domain: str, principal: str, artifacts: SessionArtifacts) -> None:
        """Store session artifacts captured after a successful login."""
        key = session_cache_key(domain, principal)
        self._sessions[key] = CachedSession(
            domain=domain,
            principal=principal,
            artifacts=artifacts,
            cached_at=self._clock(),
        )
        logger.info(f"Cached session for {principal}@{domain} ({len(artifacts.cookies)} cookies)")

        if self._session_store is not None:
            self._session_store.save(domain, principal, artifacts)

    def invalidate_session(self, domain: str, principal: str) -> None:
        """Drop a session whose restore did not authenticate."""
        self._sessions.pop(session_cache_key(domain, principal), None)
        if self._session_store is not None:
            self._session_store.clear(domain, principal)
        logger.info(f"Invalidated cached session for {principal}@{domain}")

    def _load_stored_session(self, domain: str, principal: str, now: float) -> Optional[CachedSession]:
        stored = self._session_store.load(domain, principal)
        if stored is None:
            return None
        artifacts, age_s = stored
        entry = CachedSession(
            domain=domain,
            principal=principal,
            artifacts=artifacts,
            cached_at=now - age_s,
        )
        self._sessions[session_cache_key(domain, principal)] = entry
        logger.debug(f"Seeded session cache for {principal}@{domain} from disk")
        return entry

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # Lifecycle

    async def sweep(self) -> Dict[str, int]:
        """Remove expired sessions and idle contexts and browsers."""
        now = self._clock()
        removed = {'sessions': 0, 'contexts': 0, 'browsers': 0}

        for key in [k for k, s in self._sessions.items() if s.age(now) >= self.session_ttl_s]:
            del self._sessions[key]
            removed['sessions'] += 1
        self.stats.sessions_expired += removed['sessions']

        async with self._context_lock:
            for key in [k for k, c in self._contexts.items() if now - c.last_used > self.idle_ttl_s]:
                await self._close_context(key)
                removed['contexts'] += 1

        async with self._browser_lock:
            for key in [k for k, b in self._browsers.items() if now - b.last_used > self.idle_ttl_s]:
                before = len(self._contexts)
                await self._evict_browser(key)
                removed['contexts'] += before - len(self._contexts)
                removed['browsers'] += 1

        self.stats.sweeps += 1
        if any(removed.values()):
            logger.info(
                f"Pool sweep removed {removed['sessions']} sessions, "
                f"{removed['contexts']} contexts, {removed['browsers']} browsers"
            )
        return removed

    async def start(self) -> None:
        """Start the periodic background sweep."""
        if self._sweep_task is not None:
            logger.warning("Resource pool already started")
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"Started pool sweep every {self.sweep_interval_s}s")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Pool sweep failed: {e}")

    async def shutdown(self) -> None:
        """Stop the sweep task and close every pooled resource."""
        logger.info("Shutting down resource pool")

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        async with self._context_lock:
            for key in list(self._contexts):
                await self._close_context(key)

        async with self._browser_lock:
            for key in list(self._browsers):
                await self._evict_browser(key)
            self._aliases.clear()

        self._sessions.clear()

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _launch_with_playwright(self, config: BrowserConfig) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        if config.engine == BrowserEngineType.FIREFOX:
            browser_type = self._playwright.firefox
        elif config.engine == BrowserEngineType.WEBKIT:
            browser_type = self._playwright.webkit
        else:
            browser_type = self._playwright.chromium

        return await browser_type.launch(**config.to_browser_options())

    def get_stats(self) -> Dict[str, Any]:
        return {
            'browsers': len(self._browsers),
            'contexts': len(self._contexts),
            'sessions': len(self._sessions),
            'max_browsers': self.max_browsers,
            'browsers_launched': self.stats.browsers_launched,
            'browser_reuse': self.stats.browser_reuse,
            'browser_reassignments': self.stats.browser_reassignments,
            'browsers_evicted': self.stats.browsers_evicted,
            'contexts_created': self.stats.contexts_created,
            'context_reuse': self.stats.context_reuse,
            'cache_hits': self.stats.cache_hits,
            'cache_misses': self.stats.cache_misses,
            'sessions_expired': self.stats.sessions_expired,
            'sweeps': self.stats.sweeps,
        }

    def __repr__(self) -> str:
        return (
            f"ResourcePool(browsers={len(self._browsers)}/{self.max_browsers}, "
            f"contexts={len(self._contexts)}, sessions={len(self._sessions)})"
        )
