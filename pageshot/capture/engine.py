"""Capture engine that composes pooled resources and capture sessions.

This module provides the CaptureEngine class. It owns the resource pool and
the shared capture collaborators, lends each request a pooled browser and
context, opens a fresh page per request and runs a CaptureSession on it under
a page-level deadline. When the deadline expires the request returns what it
captured so far with status ``partial``.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from ..models.capture import CaptureRequest, CaptureResult, CaptureStatus, FailureReason
from .analysis_client import AnalysisClient, AnalysisServiceConfig
from .auth import AuthController
from .interactions import InteractionRunner
from .navigation import NavigationCrawler
from .page_session import CaptureSession, SessionComponents
from .readiness import ReadinessClassifier
from .resource_pool import BrowserConfig, Launcher, ResourcePool
from .scroll_planner import ScrollPlanner
from .selector_resolver import SelectorResolver
from .session_store import SessionStore
from .tab_detector import AITabDetector, HeuristicTabDetector

logger = logging.getLogger(__name__)


class CaptureEngineConfig:
    """Configuration for the capture engine."""

    def __init__(
        self,
        # Resource pool
        browser_config: Optional[BrowserConfig] = None,
        max_browsers: int = 3,
        session_ttl_s: float = 30 * 60,
        idle_ttl_s: float = 10 * 60,
        sweep_interval_s: float = 60,
        session_dir: Optional[Path] = None,
        session_max_age_s: float = 24 * 60 * 60,

        # Request deadlines
        page_timeout_s: float = 120,
        navigation_timeout_ms: int = 30000,

        # Collaborator options
        readiness_options: Optional[Dict[str, Any]] = None,
        scroll_options: Optional[Dict[str, Any]] = None,
        tab_selectors: Optional[List[str]] = None,
        container_selectors: Optional[List[str]] = None,
        max_tabs: int = 10,
        tab_delay_ms: int = 1500,
        analysis_config: Optional[AnalysisServiceConfig] = None,

        **kwargs
    ):
        """Initialize capture engine configuration.

        Args:
            browser_config: Browser launch and context configuration
            max_browsers: Cap on pooled browser processes
            session_ttl_s: Lifetime of cached authentication sessions
            idle_ttl_s: Idle time after which pooled browsers and contexts are swept
            sweep_interval_s: Period of the background pool sweep
            session_dir: Directory for on-disk session snapshots (disabled if None)
            session_max_age_s: Age after which on-disk snapshots are ignored
            page_timeout_s: Hard deadline for one capture request
            navigation_timeout_ms: Timeout for page navigations
            readiness_options: Keyword overrides for ReadinessClassifier
            scroll_options: Keyword overrides for ScrollPlanner
            tab_selectors: Structural tab selectors for heuristic detection
            container_selectors: Tab container selectors for heuristic detection
            max_tabs: Maximum tab regions captured per page
            tab_delay_ms: Delay after activating a tab region
            analysis_config: External analysis service settings (AI tab detection)
        """
        self.browser_config = browser_config or BrowserConfig()
        self.max_browsers = max_browsers
        self.session_ttl_s = session_ttl_s
        self.idle_ttl_s = idle_ttl_s
        self.sweep_interval_s = sweep_interval_s
        self.session_dir = Path(session_dir) if session_dir else None
        self.session_max_age_s = session_max_age_s

        self.page_timeout_s = page_timeout_s
        self.navigation_timeout_ms = navigation_timeout_ms

        self.readiness_options = dict(readiness_options or {})
        self.scroll_options = dict(scroll_options or {})
        self.tab_selectors = tab_selectors
        self.container_selectors = container_selectors
        self.max_tabs = max_tabs
        self.tab_delay_ms = tab_delay_ms
        self.analysis_config = analysis_config

        # Store extra config
        self.extra_config = kwargs


class CaptureEngine:
    """Capture requests against pooled browser resources."""

    def __init__(
        self,
        config: Optional[CaptureEngineConfig] = None,
        launcher: Optional[Launcher] = None,
        analysis_client: Optional[AnalysisClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize capture engine.

        Args:
            config: Engine configuration (uses defaults if None)
            launcher: Browser launcher passed to the pool (Playwright if None)
            analysis_client: Client for AI tab detection (built from config if None)
            clock: Monotonic time source shared with the pool
        """
        self.config = config or CaptureEngineConfig()
        self.pool: Optional[ResourcePool] = None
        self.components: Optional[SessionComponents] = None
        self._launcher = launcher
        self._analysis_client = analysis_client
        self._clock = clock
        self._is_running = False

        # Statistics
        self.stats = {
            'requests': 0,
            'successful': 0,
            'partial': 0,
            'failed': 0,
            'timeouts': 0,
            'total_duration_ms': 0.0,
            'start_time': None,
        }

    async def start(self) -> None:
        """Create the resource pool and capture collaborators."""
        if self._is_running:
            logger.warning("Capture engine already running")
            return

        logger.info("Starting capture engine")
        config = self.config

        session_store = None
        if config.session_dir is not None:
            session_store = SessionStore(config.session_dir, max_age_s=config.session_max_age_s)

        self.pool = ResourcePool(
            config.browser_config,
            max_browsers=config.max_browsers,
            session_ttl_s=config.session_ttl_s,
            idle_ttl_s=config.idle_ttl_s,
            sweep_interval_s=config.sweep_interval_s,
            clock=self._clock,
            launcher=self._launcher,
            session_store=session_store,
        )
        await self.pool.start()

        self.components = self._build_components(self.pool)
        self.stats['start_time'] = datetime.now(timezone.utc)
        self._is_running = True
        logger.info(f"Capture engine started (max_browsers={config.max_browsers})")

    def _build_components(self, pool: ResourcePool) -> SessionComponents:
        config = self.config
        readiness = ReadinessClassifier(**config.readiness_options)
        resolver = SelectorResolver()
        heuristic_tabs = HeuristicTabDetector(
            tab_selectors=config.tab_selectors,
            container_selectors=config.container_selectors,
            max_regions=config.max_tabs,
        )

        if self._analysis_client is None and config.analysis_config is not None:
            self._analysis_client = AnalysisClient(config.analysis_config)

        ai_tabs = None
        if self._analysis_client is not None and self._analysis_client.is_configured:
            ai_tabs = AITabDetector(self._analysis_client, heuristic_tabs, max_regions=config.max_tabs)

        return SessionComponents(
            readiness=readiness,
            resolver=resolver,
            auth=AuthController(
                pool,
                resolver,
                readiness,
                navigation_timeout_ms=config.navigation_timeout_ms,
            ),
            scroll_planner=ScrollPlanner(readiness, **config.scroll_options),
            interactions=InteractionRunner(resolver, readiness),
            navigator=NavigationCrawler(readiness, navigation_timeout_ms=config.navigation_timeout_ms),
            heuristic_tabs=heuristic_tabs,
            ai_tabs=ai_tabs,
            navigation_timeout_ms=config.navigation_timeout_ms,
            tab_delay_ms=config.tab_delay_ms,
        )

    async def stop(self) -> None:
        """Shut down the resource pool and the analysis client."""
        logger.info("Stopping capture engine")

        if self.pool is not None:
            await self.pool.shutdown()
            self.pool = None

        if self._analysis_client is not None:
            await self._analysis_client.close()

        self.components = None
        self._is_running = False
        logger.info("Capture engine stopped")

    def _elapsed_ms(self, started: float) -> float:
        return round((self._clock() - started) * 1000, 1)

    async def capture(self, request: CaptureRequest) -> CaptureResult:
        """Capture one request.

        Never raises for capture failures; the returned result carries the
        status and a machine-readable failure reason.

        Raises:
            RuntimeError: engine has not been started
        """
        if not self._is_running:
            raise RuntimeError("Capture engine not started. Call start() first.")

        started = self._clock()
        timings: Dict[str, Optional[float]] = {}
        key = request.principal or "default"
        logger.info(f"Capturing {request.url}")

        try:
            step = self._clock()
            browser = await self.pool.acquire_browser(key)
            timings['browser'] = self._elapsed_ms(step)

            step = self._clock()
            context = await self.pool.acquire_context(browser, request.viewport, key)
            timings['context'] = self._elapsed_ms(step)

            step = self._clock()
            page = await context.new_page()
            timings['page'] = self._elapsed_ms(step)
        except PlaywrightError as e:
            logger.error(f"Could not open a page for {request.url}: {e}")
            result = CaptureResult(
                url=request.url,
                status=CaptureStatus.FAILED,
                failure=FailureReason(code="browser_unavailable", message=str(e)),
            )
            return self._complete(result, timings, started)

        session = CaptureSession(request, self.components, clock=self._clock)
        try:
            result = await asyncio.wait_for(session.run(page), timeout=self.config.page_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(
                f"Capture of {request.url} exceeded {self.config.page_timeout_s}s, "
                f"returning {len(session.collector)} artifacts"
            )
            self.stats['timeouts'] += 1
            session.fail(
                CaptureStatus.PARTIAL,
                "page_timeout",
                f"Capture exceeded {self.config.page_timeout_s}s deadline",
                {"timeout_s": self.config.page_timeout_s},
            )
            result = session.finish()
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing page: {e}")

        timings.update(result.timings)
        return self._complete(result, timings, started)

    async def capture_many(self, requests: List[CaptureRequest]) -> List[CaptureResult]:
        """Capture several requests concurrently on the shared pool."""
        logger.info(f"Capturing {len(requests)} requests")
        return list(await asyncio.gather(*(self.capture(request) for request in requests)))

    def _complete(self, result: CaptureResult, timings: Dict[str, Optional[float]], started: float) -> CaptureResult:
        timings['total'] = self._elapsed_ms(started)
        result.timings = timings
        self._update_stats(result)
        logger.info(
            f"Capture of {result.url} finished: {result.status.value}, "
            f"{len(result.artifacts)} artifacts in {timings['total']}ms"
        )
        return result

    def _update_stats(self, result: CaptureResult) -> None:
        self.stats['requests'] += 1

        if result.status == CaptureStatus.SUCCESS:
            self.stats['successful'] += 1
        elif result.status == CaptureStatus.PARTIAL:
            self.stats['partial'] += 1
        else:
            self.stats['failed'] += 1

        self.stats['total_duration_ms'] += result.timings.get('total') or 0

    @asynccontextmanager
    async def session(self) -> AsyncGenerator['CaptureEngine', None]:
        """Context manager for engine lifecycle.

        Yields:
            Started capture engine that will be automatically stopped
        """
        try:
            await self.start()
            yield self
        finally:
            await self.stop()

    def get_stats(self) -> Dict[str, Any]:
        """Get engine and pool statistics."""
        stats = self.stats.copy()

        if stats['requests'] > 0:
            stats['average_response_ms'] = stats['total_duration_ms'] / stats['requests']
            stats['success_rate'] = (stats['successful'] / stats['requests']) * 100
        else:
            stats['average_response_ms'] = 0
            stats['success_rate'] = 0

        if self.pool is not None:
            pool_stats = self.pool.get_stats()
            lookups = pool_stats['cache_hits'] + pool_stats['cache_misses']
            pool_stats['cache_hit_rate'] = (pool_stats['cache_hits'] / lookups) * 100 if lookups else 0
            stats['pool'] = pool_stats

        if self.components is not None:
            stats['resolver'] = self.components.resolver.get_stats()

        stats['is_running'] = self._is_running
        return stats

    @property
    def is_running(self) -> bool:
        """Check if engine is running."""
        return self._is_running

    def __repr__(self) -> str:
        return (
            f"CaptureEngine(running={self._is_running}, "
            f"requests={self.stats['requests']}, "
            f"pool={self.pool!r})"
        )


def create_capture_engine(
    headless: bool = True,
    max_browsers: int = 3,
    page_timeout_s: float = 120,
    **kwargs
) -> CaptureEngine:
    """Create capture engine with common configuration.

    Args:
        headless: Run browsers in headless mode
        max_browsers: Cap on pooled browser processes
        page_timeout_s: Hard deadline for one capture request
        **kwargs: Additional CaptureEngineConfig options

    Returns:
        Configured CaptureEngine instance
    """
    engine_config = CaptureEngineConfig(
        browser_config=BrowserConfig(headless=headless),
        max_browsers=max_browsers,
        page_timeout_s=page_timeout_s,
        **kwargs
    )
    return CaptureEngine(engine_config)
