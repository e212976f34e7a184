"""Link-following navigation flow.

Starting from the landed page, links matched by the caller's selectors are
followed depth first up to ``max_depth``, skipping excluded URLs, fragment and
mailto/tel links, and hosts other than the starting host. Each visited page can
be captured full-page.
"""

import logging
from typing import List, Set
from urllib.parse import urldefrag, urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..models.capture import ArtifactKind, NavigationFlow
from .naming import ArtifactCollector, generate_base_name
from .readiness import ReadinessClassifier

logger = logging.getLogger(__name__)


LINKS_SCRIPT = """
(selectors) => {
    const links = [];
    for (const selector of selectors) {
        let elements = [];
        try { elements = document.querySelectorAll(selector); } catch (e) { continue; }
        elements.forEach(el => {
            const raw = el.getAttribute('href');
            if (!raw || raw.startsWith('#') || raw.startsWith('mailto:') || raw.startsWith('tel:')) return;
            links.push(el.href || raw);
        });
    }
    return [...new Set(links)];
}
"""


class NavigationCrawler:
    """Depth-first crawl of links from a starting page."""

    def __init__(
        self,
        readiness: ReadinessClassifier,
        max_links_per_page: int = 5,
        navigation_timeout_ms: int = 30000,
        settle_ms: int = 2000,
    ):
        self.readiness = readiness
        self.max_links_per_page = max_links_per_page
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_ms = settle_ms

    async def crawl(
        self,
        page: Page,
        flow: NavigationFlow,
        start_url: str,
        collector: ArtifactCollector,
    ) -> List[str]:
        """Visit pages reachable from ``start_url`` and return them in visit order."""
        visited: List[str] = []
        seen: Set[str] = set()
        host = urlparse(start_url).hostname

        async def visit(url: str, depth: int) -> None:
            url = urldefrag(url)[0]
            if depth > flow.max_depth or url in seen:
                return
            if any(pattern in url for pattern in flow.exclude_patterns):
                logger.debug(f"Skipping excluded URL: {url}")
                return
            if urlparse(url).hostname != host:
                logger.debug(f"Skipping off-site URL: {url}")
                return

            seen.add(url)
            visited.append(url)
            logger.info(f"Navigating to {url} (depth {depth})")

            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
                await page.wait_for_timeout(self.settle_ms)
                await self.readiness.await_ready(page, fast_mode=True)

                if flow.screenshot_each_page:
                    payload = await page.screenshot(type="png", full_page=True)
                    collector.add(
                        f"nav_{depth}_{generate_base_name(url)}.png",
                        ArtifactKind.NAVIGATION,
                        payload,
                        url=url,
                    )

                links = await page.evaluate(LINKS_SCRIPT, flow.follow_links) or []
            except PlaywrightError as e:
                logger.warning(f"Navigation failed for {url}: {e}")
                collector.add(
                    f"nav_error_{depth}_{generate_base_name(url)}.png",
                    ArtifactKind.ERROR,
                    url=url,
                    error=str(e),
                    error_code="navigation_failed",
                )
                return

            for link in links[:self.max_links_per_page]:
                await visit(link, depth + 1)

        await visit(start_url, 0)
        logger.info(f"Navigation flow complete, visited {len(visited)} pages")
        return visited
