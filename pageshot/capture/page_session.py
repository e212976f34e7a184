"""Capture of one request on one page.

A ``CaptureSession`` drives a single page through navigation, landing
classification (login wall, error page), authentication, interactions,
navigation flow, tab capture, scroll capture and full-page capture.
Artifacts are collected as they are produced so that a session interrupted
by the engine deadline can still report what it captured.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..models.capture import (
    ArtifactKind,
    CaptureRequest,
    CaptureResult,
    CaptureStatus,
    FailureReason,
)
from .auth import AuthController, is_login_url
from .errors import (
    CaptureError,
    LoginFailed,
    LoginRequired,
    NavigationFailed,
    NavigationRedirectedError,
)
from .interactions import InteractionRunner
from .naming import ArtifactCollector, generate_base_name, sanitize_tab_name
from .navigation import NavigationCrawler
from .page_analysis import analyze_page
from .readiness import ReadinessClassifier
from .scroll_planner import ScrollPlanner
from .selector_resolver import SelectorResolver
from .tab_detector import AITabDetector, HeuristicTabDetector, RegionDetection, activate_region

logger = logging.getLogger(__name__)


ERROR_PATH_HINTS = ('/error', '/404', '/403')


def is_redirect(requested_url: str, landed_url: str) -> bool:
    """Prefix heuristic: neither URL starts with the other.

    Misses same-path query changes and single-page apps that never change
    the URL.
    """
    return not landed_url.startswith(requested_url) and not requested_url.startswith(landed_url)


def is_error_url(url: str) -> bool:
    return is_login_url(url, hints=ERROR_PATH_HINTS)


FAILURE_STATUS = {
    LoginRequired: CaptureStatus.LOGIN_REQUIRED,
    NavigationRedirectedError: CaptureStatus.ERROR_PAGE,
}


@dataclass
class SessionComponents:
    """Collaborators shared by every capture session of an engine."""

    readiness: ReadinessClassifier
    resolver: SelectorResolver
    auth: AuthController
    scroll_planner: ScrollPlanner
    interactions: InteractionRunner
    navigator: NavigationCrawler
    heuristic_tabs: HeuristicTabDetector
    ai_tabs: Optional[AITabDetector] = None
    navigation_timeout_ms: int = 30000
    full_page_delay_ms: int = 1000
    tab_delay_ms: int = 1500
    tab_gap_ms: int = 500


class CaptureSession:
    """Run one capture request against an open page."""

    def __init__(
        self,
        request: CaptureRequest,
        components: SessionComponents,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request = request
        self.components = components
        self.clock = clock
        self.collector = ArtifactCollector()
        self.result = CaptureResult(url=request.url)
        self.base_name = generate_base_name(request.url)
        self.page: Optional[Page] = None

    async def run(self, page: Page) -> CaptureResult:
        """Capture the request and return the result.

        Aborting failures are reported in ``result.failure``; they never
        propagate out of this method.
        """
        self.page = page
        try:
            await self._capture(page)
        except CaptureError as e:
            self.fail(FAILURE_STATUS.get(type(e), CaptureStatus.FAILED), e.error_code, e.message, e.details)
        except PlaywrightError as e:
            logger.error(f"Capture of {self.request.url} failed: {e}")
            self.fail(CaptureStatus.FAILED, "capture_failed", str(e))
        except Exception as e:
            logger.error(f"Unexpected error capturing {self.request.url}: {e}", exc_info=True)
            self.fail(CaptureStatus.FAILED, "capture_failed", f"{type(e).__name__}: {e}")
        return self.finish()

    def fail(self, status: CaptureStatus, code: str, message: str, details: Optional[dict] = None) -> None:
        self.result.status = status
        self.result.failure = FailureReason(code=code, message=message, details=details or {})

    def finish(self) -> CaptureResult:
        """Snapshot the artifacts produced so far into the result."""
        self.result.artifacts = list(self.collector.artifacts)
        if self.page is not None:
            self.result.final_url = self.page.url
        return self.result

    def _elapsed(self, name: str, started: float) -> None:
        self.result.timings[name] = round((self.clock() - started) * 1000, 1)

    async def _capture(self, page: Page) -> None:
        request = self.request
        readiness = self.components.readiness

        started = self.clock()
        await self._navigate(page, request.url)
        self._elapsed("navigation", started)

        started = self.clock()
        await readiness.await_ready(page, fast_mode=request.has_credentials)
        self._elapsed("readiness", started)

        self.base_name = generate_base_name(page.url)
        await self._resolve_landing(page)

        started = self.clock()
        try:
            await self._capture_content(page)
        finally:
            self._elapsed("capture", started)

    async def _navigate(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.components.navigation_timeout_ms)
        except PlaywrightError as e:
            raise NavigationFailed(f"Navigation to {url} failed: {e}", url=url) from e

    async def _resolve_landing(self, page: Page) -> None:
        """Handle login walls and error pages the request landed on."""
        request = self.request
        landed = page.url
        on_login = is_login_url(landed)

        if request.has_credentials and on_login:
            await self._login(page)
            return

        if not is_redirect(request.url, landed):
            return

        if on_login:
            logger.warning(f"Redirected to login page without credentials: {landed}")
            await self._diagnostic(page, f"{self.base_name}_login_page.png", "Login required", "login_required")
            raise LoginRequired(f"Redirected to login page: {landed}", url=landed)

        if is_error_url(landed):
            logger.error(f"Redirected to error page: {landed}")
            await self._diagnostic(
                page, f"{self.base_name}_error_page.png", "Redirected to error page", "navigation_redirected"
            )
            raise NavigationRedirectedError(
                f"Redirected to error page: {landed}",
                requested_url=request.url,
                landed_url=landed,
            )

        logger.info(f"Redirected to {landed}, proceeding with capture")

    async def _login(self, page: Page) -> None:
        request = self.request
        started = self.clock()
        outcome = await self.components.auth.authenticate(page, request.login_credentials, request.domain)
        self._elapsed("login", started)
        self.result.auth_state = outcome.state.value

        if not outcome.is_authenticated:
            await self._diagnostic(
                page, f"{self.base_name}_login_failed.png", outcome.message or "Login failed", "login_failed"
            )
            raise LoginFailed(
                f"Login failed: {outcome.message}",
                url=outcome.url,
                reason=outcome.message,
            )

        logger.info(f"Navigating to requested URL after login: {request.url}")
        await self._navigate(page, request.url)
        await self.components.readiness.await_ready(page, fast_mode=True)
        self.base_name = generate_base_name(page.url)

    async def _diagnostic(self, page: Page, name: str, message: str, code: str) -> None:
        try:
            payload = await page.screenshot(type="png", full_page=False)
        except PlaywrightError as e:
            logger.warning(f"Could not take diagnostic screenshot {name}: {e}")
            payload = b""
        self.collector.add(name, ArtifactKind.ERROR, payload, url=page.url, error=message, error_code=code)

    async def _capture_content(self, page: Page) -> None:
        request = self.request
        components = self.components

        if request.page_analysis:
            self.result.page_analysis = await analyze_page(page)

        if request.interactions:
            await components.interactions.run(page, request.interactions, self.collector)

        flow = request.navigation_flow
        if flow is not None and flow.follow_links:
            landed = page.url
            produced = len(self.collector)
            await components.navigator.crawl(page, flow, landed, self.collector)
            if len(self.collector) > produced:
                logger.info("Navigation flow produced captures, skipping scroll and full-page capture")
                return
            if page.url != landed:
                logger.debug(f"Returning to {landed} after navigation flow")
                await self._navigate(page, landed)
                await components.readiness.await_ready(page, fast_mode=True)

        if request.detect_tabs:
            await self._capture_tabs(page)

        if request.scroll_screenshots:
            await self._capture_scroll(page)

        if request.full_page:
            await self._capture_full_page(page)

    async def _detect(self, page: Page) -> RegionDetection:
        components = self.components
        if self.request.tab_strategy == "ai" and components.ai_tabs is not None:
            return await components.ai_tabs.detect_regions(page, requested_url=self.request.url)
        if self.request.tab_strategy == "ai":
            logger.warning("AI tab detection requested but no analysis client is configured")
        return await components.heuristic_tabs.detect_regions(page)

    async def _capture_tabs(self, page: Page) -> None:
        components = self.components
        try:
            detection = await self._detect(page)
        except PlaywrightError as e:
            logger.warning(f"Tab detection failed: {e}")
            return

        if detection.navigation_issue:
            logger.warning(f"Skipping tab capture, navigation issue: {detection.navigation_issue}")
            return
        if not detection.regions:
            logger.info("No tab regions detected")
            return

        logger.info(f"Capturing {len(detection.regions)} tab regions ({detection.source})")
        for number, region in enumerate(detection.regions, start=1):
            tab_name = sanitize_tab_name(region.text, number)
            name = f"{self.base_name}_tab_{number}_{tab_name}.png"
            try:
                method = await activate_region(page, region, components.resolver)
                await page.wait_for_timeout(components.tab_delay_ms)
                await components.readiness.await_ready(page)
                payload = await page.screenshot(type="png", full_page=False)
                self.collector.add(name, ArtifactKind.TAB, payload, url=page.url)
                logger.debug(f"Captured tab '{region.text}' via {method}")
            except CaptureError as e:
                logger.warning(f"Tab '{region.text}' could not be captured: {e.message}")
                self.collector.add(name, ArtifactKind.ERROR, url=page.url, error=e.message, error_code=e.error_code)
            except PlaywrightError as e:
                logger.warning(f"Tab '{region.text}' could not be captured: {e}")
                self.collector.add(name, ArtifactKind.ERROR, url=page.url, error=str(e), error_code="tab_failed")
            await page.wait_for_timeout(components.tab_gap_ms)

        home = next((r for r in detection.regions if r.is_active), detection.regions[0])
        try:
            await activate_region(page, home, components.resolver)
            await page.wait_for_timeout(components.tab_gap_ms)
        except (CaptureError, PlaywrightError) as e:
            logger.debug(f"Could not return to tab '{home.text}': {e}")

    async def _capture_scroll(self, page: Page) -> None:
        planner = self.components.scroll_planner
        plan = await planner.plan(page)

        payload = await page.screenshot(type="png", full_page=False)
        self.collector.add(f"{self.base_name}_scroll_0_top.png", ArtifactKind.TOP, payload, url=page.url)

        if plan.is_empty:
            logger.info("No significant scroll content detected")
            return

        index = 1
        async for offset in planner.iterate(page, plan):
            payload = await page.screenshot(type="png", full_page=False)
            self.collector.add(
                f"{self.base_name}_scroll_{index}_{offset}px.png",
                ArtifactKind.SCROLL,
                payload,
                url=page.url,
            )
            logger.debug(f"Scroll capture {index} at {offset}px")
            index += 1

        await planner.reset(page, plan)

    async def _capture_full_page(self, page: Page) -> None:
        await self.components.scroll_planner.reset(page)
        await page.wait_for_timeout(self.components.full_page_delay_ms)
        payload = await page.screenshot(type="png", full_page=True)
        self.collector.add(f"{self.base_name}_fullpage.png", ArtifactKind.FULL_PAGE, payload, url=page.url)
