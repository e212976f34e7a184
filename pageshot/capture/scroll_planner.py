"""Scroll capture planning.

The planner resets the page to its origin, measures the window's scrollable
extent and any in-page scroll containers, and computes an ordered list of
offsets to visit. The window is scrolled when its extent exceeds a small
threshold; otherwise the first qualifying container is scrolled; otherwise the
plan is empty and only the top frame is captured.

``compute_scroll_plan`` is pure so plans can be checked without a browser.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from playwright.async_api import Page

from ..models.capture import ScrollPlan, ScrollRoot
from .readiness import ReadinessClassifier

logger = logging.getLogger(__name__)


SCROLL_INDEX_ATTRIBUTE = "data-pageshot-scroll-index"

MEASURE_SCRIPT = f"""
(minContainerHeight) => {{
    const body = document.body;
    const root = document.documentElement;
    const containers = Array.from(document.querySelectorAll('*')).filter(el => {{
        const style = getComputedStyle(el);
        const scrollable = ['auto', 'scroll'].includes(style.overflow)
            || ['auto', 'scroll'].includes(style.overflowY);
        return scrollable
            && el.scrollHeight > el.clientHeight
            && el.clientHeight > minContainerHeight;
    }});
    return {{
        windowScrollHeight: Math.max(body ? body.scrollHeight : 0, root.scrollHeight),
        windowClientHeight: Math.max(body ? body.clientHeight : 0, root.clientHeight),
        viewportHeight: window.innerHeight,
        containers: containers.map((el, index) => {{
            el.setAttribute('{SCROLL_INDEX_ATTRIBUTE}', String(index));
            return {{
                index: index,
                tagName: el.tagName.toLowerCase(),
                scrollHeight: el.scrollHeight,
                clientHeight: el.clientHeight
            }};
        }})
    }};
}}
"""

SCROLL_SCRIPT = f"""
([index, top]) => {{
    const target = index === null ? null
        : document.querySelector('[{SCROLL_INDEX_ATTRIBUTE}="' + index + '"]');
    if (target) {{
        target.scrollTo({{ top: top, behavior: 'instant' }});
    }} else {{
        window.scrollTo({{ top: top, behavior: 'instant' }});
    }}
}}
"""


@dataclass
class ContainerMetrics:
    """Scroll metrics of one in-page scroll container."""

    index: int
    scroll_height: int
    client_height: int
    tag_name: str = ""

    @property
    def extent(self) -> int:
        return max(0, self.scroll_height - self.client_height)


@dataclass
class ScrollMetrics:
    """Window and container scroll measurements of a page."""

    window_scroll_height: int
    window_client_height: int
    viewport_height: int
    containers: List[ContainerMetrics] = field(default_factory=list)

    @property
    def window_extent(self) -> int:
        return max(
            0,
            self.window_scroll_height - self.window_client_height,
            self.window_scroll_height - self.viewport_height,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ScrollMetrics":
        return cls(
            window_scroll_height=int(data.get('windowScrollHeight', 0)),
            window_client_height=int(data.get('windowClientHeight', 0)),
            viewport_height=int(data.get('viewportHeight', 0)),
            containers=[
                ContainerMetrics(
                    index=int(c['index']),
                    scroll_height=int(c['scrollHeight']),
                    client_height=int(c['clientHeight']),
                    tag_name=c.get('tagName', ''),
                )
                for c in data.get('containers', [])
            ],
        )


def compute_scroll_plan(
    metrics: ScrollMetrics,
    step_size: int = 800,
    max_screenshots: int = 10,
    window_threshold: int = 100,
) -> ScrollPlan:
    """Compute scroll offsets for a page.

    One slot of ``max_screenshots`` is reserved for the top frame, so at most
    ``max_screenshots - 1`` offsets are planned. Offsets are clamped to the true
    maximum extent and are strictly increasing.
    """
    if step_size <= 0:
        raise ValueError("step_size must be positive")

    max_steps = max(0, max_screenshots - 1)
    container_index: Optional[int] = None

    if metrics.window_extent > window_threshold:
        root = ScrollRoot.WINDOW
        extent = metrics.window_extent
    elif metrics.containers:
        root = ScrollRoot.CONTAINER
        container = metrics.containers[0]
        container_index = container.index
        extent = container.extent
    else:
        return ScrollPlan(step_size=step_size, max_steps=max_steps)

    steps = min(math.ceil(extent / step_size), max_steps)
    offsets: List[int] = []
    for step in range(1, steps + 1):
        offset = min(step * step_size, extent)
        if offsets and offset <= offsets[-1]:
            break
        offsets.append(offset)

    return ScrollPlan(
        root=root if offsets else ScrollRoot.NONE,
        offsets=offsets,
        step_size=step_size,
        max_steps=max_steps,
        max_extent=extent,
        container_index=container_index if offsets else None,
    )


class ScrollPlanner:
    """Plan and drive scroll captures on a live page."""

    def __init__(
        self,
        readiness: ReadinessClassifier,
        step_size: int = 800,
        max_screenshots: int = 10,
        scroll_delay_ms: int = 800,
        reset_delay_ms: int = 1000,
        window_threshold: int = 100,
        min_container_height: int = 200,
    ):
        self.readiness = readiness
        self.step_size = step_size
        self.max_screenshots = max_screenshots
        self.scroll_delay_ms = scroll_delay_ms
        self.reset_delay_ms = reset_delay_ms
        self.window_threshold = window_threshold
        self.min_container_height = min_container_height

    async def measure(self, page: Page) -> ScrollMetrics:
        data = await page.evaluate(MEASURE_SCRIPT, self.min_container_height)
        return ScrollMetrics.from_dict(data or {})

    async def plan(self, page: Page) -> ScrollPlan:
        """Reset to the origin, wait for content and compute the plan."""
        await self.reset(page)
        await page.wait_for_timeout(self.reset_delay_ms)
        await self.readiness.await_ready(page, fast_mode=True)

        metrics = await self.measure(page)
        plan = compute_scroll_plan(
            metrics,
            step_size=self.step_size,
            max_screenshots=self.max_screenshots,
            window_threshold=self.window_threshold,
        )
        logger.debug(
            f"Scroll plan: root={plan.root.value}, extent={plan.max_extent}, "
            f"offsets={plan.offsets}"
        )
        return plan

    async def scroll_to(self, page: Page, plan: ScrollPlan, offset: int) -> None:
        index = plan.container_index if plan.root == ScrollRoot.CONTAINER else None
        await page.evaluate(SCROLL_SCRIPT, [index, offset])

    async def iterate(self, page: Page, plan: ScrollPlan) -> AsyncIterator[int]:
        """Scroll to each planned offset and yield it once content is ready."""
        for offset in plan.offsets:
            await self.scroll_to(page, plan, offset)
            await page.wait_for_timeout(self.scroll_delay_ms)
            await self.readiness.await_ready(page, fast_mode=True)
            yield offset

    async def reset(self, page: Page, plan: Optional[ScrollPlan] = None) -> None:
        """Return the window, and the planned container if any, to the origin."""
        if plan is not None and plan.root == ScrollRoot.CONTAINER:
            await self.scroll_to(page, plan, 0)
        await page.evaluate(SCROLL_SCRIPT, [None, 0])
