"""Content readiness classification and waiting.

Readiness is judged from structural signals only: chart-like and table-like
elements, the number of interactive controls and the document height relative
to the viewport. Network idleness is not consulted because it never settles on
pages that poll or stream.

``await_ready`` runs a set of DOM predicates chosen from the page profile. Every
predicate has its own bound, all of them race a hard ceiling, and a predicate
that cannot be satisfied is treated as satisfied. The wait never raises.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

logger = logging.getLogger(__name__)


MAIN_CONTENT_SELECTOR = 'main, [role="main"], #content'
INTERACTIVE_SELECTOR = 'button, input, select, [role="button"]'
CHART_SELECTOR = 'canvas, svg'
TABLE_SELECTOR = 'table, [role="grid"]'
REALTIME_SELECTOR = '[data-realtime], [data-live]'
LOADING_SELECTOR = '[class*="loading"], [class*="spinner"], [data-loading="true"]'


SIGNALS_SCRIPT = f"""
() => ({{
    chartCount: document.querySelectorAll('{CHART_SELECTOR}').length,
    tableCount: document.querySelectorAll('{TABLE_SELECTOR}').length,
    realtimeCount: document.querySelectorAll('{REALTIME_SELECTOR}').length,
    interactiveCount: document.querySelectorAll('{INTERACTIVE_SELECTOR}').length,
    hasMainContent: !!document.querySelector('{MAIN_CONTENT_SELECTOR}'),
    documentHeight: Math.max(
        document.body ? document.body.scrollHeight : 0,
        document.documentElement.scrollHeight
    ),
    viewportHeight: window.innerHeight
}})
"""

CHECK_SCRIPTS = {
    'basic_content': f"""
        () => {{
            const main = document.querySelector('{MAIN_CONTENT_SELECTOR}');
            return !!main && main.children.length > 0;
        }}
    """,
    'data_elements': f"""
        () => {{
            const charts = Array.from(document.querySelectorAll('{CHART_SELECTOR}'));
            const chartsReady = charts.every(chart => {{
                const box = chart.getBoundingClientRect();
                return box.width > 0 && box.height > 0;
            }});
            const tables = Array.from(document.querySelectorAll('{TABLE_SELECTOR}'));
            const tablesReady = tables.every(table => {{
                const rows = table.rows ? table.rows.length
                    : table.querySelectorAll('[role="row"]').length;
                return rows > 0;
            }});
            return chartsReady && tablesReady;
        }}
    """,
    'interactive_controls': f"""
        () => Array.from(document.querySelectorAll('{INTERACTIVE_SELECTOR}')).every(el => {{
            const style = getComputedStyle(el);
            return style.display !== 'none' && !el.disabled;
        }})
    """,
    'no_loading': f"""
        () => Array.from(document.querySelectorAll('{LOADING_SELECTOR}')).every(el => {{
            const style = getComputedStyle(el);
            return style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0';
        }})
    """,
}


@dataclass(frozen=True)
class PageSignals:
    """Structural signals measured on a page."""

    chart_count: int = 0
    table_count: int = 0
    realtime_count: int = 0
    interactive_count: int = 0
    has_main_content: bool = False
    document_height: int = 0
    viewport_height: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageSignals":
        return cls(
            chart_count=int(data.get('chartCount', 0)),
            table_count=int(data.get('tableCount', 0)),
            realtime_count=int(data.get('realtimeCount', 0)),
            interactive_count=int(data.get('interactiveCount', 0)),
            has_main_content=bool(data.get('hasMainContent', False)),
            document_height=int(data.get('documentHeight', 0)),
            viewport_height=int(data.get('viewportHeight', 0)),
        )


@dataclass(frozen=True)
class ReadinessProfile:
    """Loading complexity of a page."""

    data_heavy: bool = False
    interactive: bool = False
    long: bool = False

    @classmethod
    def from_signals(
        cls,
        signals: PageSignals,
        interactive_threshold: int = 10,
        long_page_factor: float = 2.0,
    ) -> "ReadinessProfile":
        return cls(
            data_heavy=bool(signals.chart_count or signals.table_count or signals.realtime_count),
            interactive=signals.interactive_count > interactive_threshold,
            long=signals.document_height > signals.viewport_height * long_page_factor,
        )


@dataclass
class ReadinessOutcome:
    """What a readiness wait did."""

    checks: List[str]
    ceiling_ms: int
    timed_out: bool = False
    unsatisfied: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0


class ReadinessClassifier:
    """Classify pages and wait until their content is plausibly rendered."""

    def __init__(
        self,
        fast_ceiling_ms: int = 2000,
        default_ceiling_ms: int = 5000,
        data_heavy_ceiling_ms: int = 8000,
        check_timeout_ms: int = 5000,
        data_check_timeout_ms: int = 8000,
        settle_ms: int = 100,
        interactive_threshold: int = 10,
        long_page_factor: float = 2.0,
    ):
        self.fast_ceiling_ms = fast_ceiling_ms
        self.default_ceiling_ms = default_ceiling_ms
        self.data_heavy_ceiling_ms = data_heavy_ceiling_ms
        self.check_timeout_ms = check_timeout_ms
        self.data_check_timeout_ms = data_check_timeout_ms
        self.settle_ms = settle_ms
        self.interactive_threshold = interactive_threshold
        self.long_page_factor = long_page_factor

    async def measure(self, page: Page) -> PageSignals:
        data = await page.evaluate(SIGNALS_SCRIPT)
        return PageSignals.from_dict(data or {})

    async def classify(self, page: Page) -> ReadinessProfile:
        """Return the readiness profile of the page as currently rendered."""
        try:
            signals = await self.measure(page)
        except PlaywrightError as e:
            logger.warning(f"Could not measure page signals, assuming simple page: {e}")
            return ReadinessProfile()

        profile = ReadinessProfile.from_signals(
            signals,
            interactive_threshold=self.interactive_threshold,
            long_page_factor=self.long_page_factor,
        )
        logger.debug(f"Readiness profile {profile} from {signals}")
        return profile

    def plan_checks(self, profile: ReadinessProfile, fast_mode: bool = False) -> List[str]:
        """Names of the predicates to wait for, in order."""
        if fast_mode:
            return ['basic_content', 'no_loading']
        if profile.data_heavy:
            return ['basic_content', 'data_elements', 'no_loading']
        if profile.interactive:
            return ['basic_content', 'interactive_controls', 'no_loading']
        return ['basic_content', 'no_loading']

    def ceiling_ms(self, profile: ReadinessProfile, fast_mode: bool = False) -> int:
        if fast_mode:
            return self.fast_ceiling_ms
        if profile.data_heavy:
            return self.data_heavy_ceiling_ms
        return self.default_ceiling_ms

    def check_timeout(self, check: str, fast_mode: bool = False) -> int:
        timeout = self.data_check_timeout_ms if check == 'data_elements' else self.check_timeout_ms
        if fast_mode:
            timeout = min(timeout, self.fast_ceiling_ms)
        return timeout

    async def await_ready(
        self,
        page: Page,
        profile: Optional[ReadinessProfile] = None,
        fast_mode: bool = False,
    ) -> ReadinessOutcome:
        """Wait for the page to look ready. Never raises on page errors."""
        started = time.monotonic()
        if profile is None and not fast_mode:
            profile = await self.classify(page)
        profile = profile or ReadinessProfile()

        checks = self.plan_checks(profile, fast_mode)
        outcome = ReadinessOutcome(checks=checks, ceiling_ms=self.ceiling_ms(profile, fast_mode))

        try:
            results = await asyncio.wait_for(
                asyncio.gather(*(self._run_check(page, name, fast_mode) for name in checks)),
                timeout=outcome.ceiling_ms / 1000,
            )
            outcome.unsatisfied = [name for name, ok in zip(checks, results) if not ok]
        except asyncio.TimeoutError:
            outcome.timed_out = True
            logger.debug(f"Readiness ceiling of {outcome.ceiling_ms}ms reached")

        try:
            await page.wait_for_timeout(self.settle_ms)
        except PlaywrightError as e:
            logger.debug(f"Settle delay interrupted: {e}")

        outcome.elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug(
            f"Readiness wait finished in {outcome.elapsed_ms:.0f}ms "
            f"(fast_mode={fast_mode}, checks={checks}, timed_out={outcome.timed_out})"
        )
        return outcome

    async def _run_check(self, page: Page, name: str, fast_mode: bool) -> bool:
        try:
            await page.wait_for_function(
                CHECK_SCRIPTS[name],
                timeout=self.check_timeout(name, fast_mode),
            )
            return True
        except PlaywrightError as e:
            logger.debug(f"Readiness check '{name}' not satisfied, continuing: {e}")
            return False
