"""Tab and interactive-region detection.

Two strategies share one interface, ``detect_regions(page)``:

* HeuristicTabDetector scans for structural tab patterns (role and class-name
  families), deduplicates by text and position, drops noise words, and falls
  back to grouping nearby small clickable elements near the top of the viewport
  when nothing structural matches.
* AITabDetector sends a viewport snapshot and a summary of candidate elements
  to the external analysis service and maps its answer back onto regions. Any
  failure of the service falls back to the heuristic detector.

Regions always carry a bounding box so a click can be attempted by coordinates
when no selector resolves.
"""

import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from pydantic import BaseModel, Field

from ..models.capture import ElementQuery, InteractionAction
from .analysis_client import AnalysisClient, AnalysisResult
from .errors import AnalysisServiceFailure, ElementNotFound
from .selector_resolver import SelectorResolver

logger = logging.getLogger(__name__)


DEFAULT_TAB_SELECTORS = [
    '[role="tab"]',
    '.tab:not(.tab-content)',
    '.nav-tab',
    '.nav-link',
    '.tabs > *',
    '.tab-header > *',
    '.MuiTab-root',
    '.ant-tabs-tab',
    '[data-tab]',
    '[aria-selected]',
    'button[class*="tab"]',
    'button[data-testid*="tab"]',
    'button[aria-controls]',
    'a[class*="tab"]',
    'a[role="tab"]',
    'div[role="tab"]',
    'li[class*="tab"]',
    'li[role="tab"]',
    '[class*="TabButton"]',
    '[class*="TabItem"]',
    '[class*="segment"]',
    '[class*="pill"]',
    '[class*="chip"]:not([class*="input"])',
]

DEFAULT_CONTAINER_SELECTORS = [
    '[role="tablist"]',
    '.tabs',
    '.nav-tabs',
    '.tab-container',
    '.MuiTabs-root',
    '.ant-tabs',
]

NOISE_WORDS = ('dropdown', 'menu', 'button', 'close', '×')


STRUCTURAL_SCRIPT = """
({ tabSelectors, containerSelectors }) => {
    const containers = [];
    for (const sel of containerSelectors) {
        try { containers.push(...document.querySelectorAll(sel)); } catch (e) {}
    }
    const indexSelector = el => {
        const siblings = el.parentNode ? Array.from(el.parentNode.children) : [el];
        return `${el.tagName.toLowerCase()}:nth-child(${siblings.indexOf(el) + 1})`;
    };
    const found = [];
    for (const sel of tabSelectors) {
        let elements = [];
        try { elements = Array.from(document.querySelectorAll(sel)); } catch (e) { continue; }
        for (const el of elements) {
            const style = getComputedStyle(el);
            const rect = el.getBoundingClientRect();
            const visible = style.display !== 'none' && style.visibility !== 'hidden'
                && parseFloat(style.opacity) > 0.1 && rect.width > 10 && rect.height > 10;
            if (!visible) continue;
            const text = ((el.textContent || '').trim() || el.getAttribute('aria-label')
                || el.getAttribute('title') || el.getAttribute('data-tab') || '').substring(0, 50);
            const classes = typeof el.className === 'string' ? el.className.trim() : '';
            let selector = el.id ? `#${el.id}`
                : (classes ? '.' + classes.split(/\\s+/).join('.') : indexSelector(el));
            const container = containers.find(c => c.contains(el) && c !== el);
            if (container && !el.id) {
                const containerClass = typeof container.className === 'string' && container.className.trim()
                    ? '.' + container.className.trim().split(/\\s+/)[0]
                    : container.tagName.toLowerCase();
                selector = `${containerClass} ${selector}`;
            }
            const active = el.getAttribute('aria-selected') === 'true'
                || el.getAttribute('aria-current') === 'page'
                || ['active', 'selected', 'current', 'is-active', 'is-selected']
                    .some(c => el.classList.contains(c))
                || el.hasAttribute('data-active');
            found.push({
                text, selector, fallbackSelector: indexSelector(el), isActive: active,
                x: rect.x, y: rect.y, width: rect.width, height: rect.height
            });
        }
    }
    return found;
}
"""

CLICKABLE_SCRIPT = """
() => Array.from(document.querySelectorAll('*')).filter(el => {
    const style = getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const text = (el.textContent || '').trim();
    return (el.onclick || el.getAttribute('onclick') || style.cursor === 'pointer')
        && rect.width > 20 && rect.height > 15
        && rect.y < window.innerHeight / 2
        && style.display !== 'none'
        && text.length > 0 && text.length < 50;
}).map(el => {
    const rect = el.getBoundingClientRect();
    const siblings = el.parentNode ? Array.from(el.parentNode.children) : [el];
    const selector = `${el.tagName.toLowerCase()}:nth-child(${siblings.indexOf(el) + 1})`;
    return {
        text: (el.textContent || '').trim().substring(0, 50),
        selector, fallbackSelector: selector, isActive: false,
        x: rect.x, y: rect.y, width: rect.width, height: rect.height
    };
})
"""

CANDIDATES_SCRIPT = """
(limit) => Array.from(document.querySelectorAll('*')).filter(el => {
    const rect = el.getBoundingClientRect();
    const style = getComputedStyle(el);
    const tag = el.tagName.toLowerCase();
    const classes = typeof el.className === 'string' ? el.className.toLowerCase() : '';
    return rect.width > 20 && rect.height > 15 && rect.y < window.innerHeight
        && style.display !== 'none'
        && (el.onclick || el.getAttribute('onclick') || style.cursor === 'pointer'
            || tag === 'button' || tag === 'a' || el.getAttribute('role') === 'tab'
            || classes.includes('tab'));
}).slice(0, limit).map(el => {
    const rect = el.getBoundingClientRect();
    const classes = typeof el.className === 'string' ? el.className.trim() : '';
    const siblings = el.parentNode ? Array.from(el.parentNode.children) : [el];
    const indexSelector = `${el.tagName.toLowerCase()}:nth-child(${siblings.indexOf(el) + 1})`;
    return {
        tag: el.tagName.toLowerCase(),
        text: (el.textContent || '').trim().substring(0, 100),
        className: classes,
        id: el.id || '',
        role: el.getAttribute('role') || '',
        ariaLabel: el.getAttribute('aria-label') || '',
        selector: el.id ? `#${el.id}` : (classes ? '.' + classes.split(/\\s+/).join('.') : indexSelector),
        fallbackSelector: indexSelector,
        rect: { x: Math.round(rect.x), y: Math.round(rect.y),
                width: Math.round(rect.width), height: Math.round(rect.height) }
    };
})
"""


class Region(BaseModel):
    """A clickable element that switches visible content without navigation."""

    text: str = Field(default="")
    selector: Optional[str] = Field(default=None)
    fallback_selector: Optional[str] = Field(default=None)
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    is_active: bool = False
    confidence: Optional[float] = None
    source: str = Field(default="structural", description="structural, heuristic or ai")
    order: int = 0

    @property
    def center(self) -> tuple:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def has_box(self) -> bool:
        return self.width > 0 and self.height > 0

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], source: str) -> "Region":
        return cls(
            text=(raw.get('text') or '').strip(),
            selector=raw.get('selector'),
            fallback_selector=raw.get('fallbackSelector'),
            x=float(raw.get('x', 0)),
            y=float(raw.get('y', 0)),
            width=float(raw.get('width', 0)),
            height=float(raw.get('height', 0)),
            is_active=bool(raw.get('isActive', False)),
            source=source,
        )


class RegionDetection(BaseModel):
    """Ordered regions plus the detector's view of the page."""

    regions: List[Region] = Field(default_factory=list)
    source: str = "heuristic"
    navigation_issue: Optional[str] = None
    should_proceed: bool = True
    fallback_used: bool = False
    notes: List[str] = Field(default_factory=list)


def dedupe_regions(regions: List[Region], x_tolerance: float = 10) -> List[Region]:
    """Keep the first region per selector and per (text, approximate x)."""
    unique: List[Region] = []
    for region in regions:
        duplicate = any(
            (kept.text == region.text and abs(kept.x - region.x) < x_tolerance)
            or (region.selector is not None and kept.selector == region.selector)
            for kept in unique
        )
        if not duplicate:
            unique.append(region)
    return unique


def filter_noise(regions: List[Region], noise_words=NOISE_WORDS) -> List[Region]:
    """Drop regions without text or whose text contains a noise word."""
    kept = []
    for region in regions:
        text = region.text.lower()
        if text and not any(word in text for word in noise_words):
            kept.append(region)
    return kept


def group_clickables(
    candidates: List[Region],
    max_dy: float = 50,
    max_dx: float = 200,
    min_group_size: int = 2,
) -> List[Region]:
    """Group nearby clickables and return members of groups of two or more."""
    groups: List[Dict[str, Any]] = []
    for region in candidates:
        group = next(
            (g for g in groups if abs(g['y'] - region.y) < max_dy and abs(g['x'] - region.x) < max_dx),
            None,
        )
        if group is None:
            groups.append({'x': region.x, 'y': region.y, 'members': [region]})
        else:
            group['members'].append(region)
            group['y'] = (group['y'] + region.y) / 2
            group['x'] = (group['x'] + region.x) / 2

    grouped = []
    for group in groups:
        if len(group['members']) >= min_group_size:
            grouped.extend(group['members'])
    return grouped


def _finalize(regions: List[Region], limit: int) -> List[Region]:
    regions = filter_noise(dedupe_regions(regions))[:limit]
    return [region.model_copy(update={'order': i}) for i, region in enumerate(regions)]


class HeuristicTabDetector:
    """DOM-pattern tab detection."""

    def __init__(
        self,
        tab_selectors: Optional[List[str]] = None,
        container_selectors: Optional[List[str]] = None,
        max_regions: int = 10,
    ):
        self.tab_selectors = list(tab_selectors or DEFAULT_TAB_SELECTORS)
        self.container_selectors = list(container_selectors or DEFAULT_CONTAINER_SELECTORS)
        self.max_regions = max_regions

    async def detect_regions(self, page: Page) -> RegionDetection:
        raw = await page.evaluate(STRUCTURAL_SCRIPT, {
            'tabSelectors': self.tab_selectors,
            'containerSelectors': self.container_selectors,
        })
        structural = [Region.from_raw(item, "structural") for item in raw or []]
        regions = _finalize(structural, self.max_regions)

        if regions:
            logger.debug(f"Found {len(regions)} structural tab regions")
            return RegionDetection(regions=regions, source="heuristic")

        clickables = await page.evaluate(CLICKABLE_SCRIPT)
        candidates = [Region.from_raw(item, "heuristic") for item in clickables or []]
        regions = _finalize(group_clickables(candidates), self.max_regions)
        logger.debug(f"No structural tabs, grouped {len(regions)} clickable regions")
        return RegionDetection(
            regions=regions,
            source="heuristic",
            notes=["grouped clickable elements"] if regions else [],
        )


class AITabDetector:
    """Service-assisted tab detection with heuristic fallback."""

    def __init__(
        self,
        client: AnalysisClient,
        fallback: HeuristicTabDetector,
        max_elements: int = 50,
        max_regions: int = 10,
    ):
        self.client = client
        self.fallback = fallback
        self.max_elements = max_elements
        self.max_regions = max_regions

    async def detect_regions(self, page: Page, requested_url: Optional[str] = None) -> RegionDetection:
        try:
            screenshot = await page.screenshot(type="png", full_page=False)
            elements = await page.evaluate(CANDIDATES_SCRIPT, self.max_elements) or []
            title = await page.title()
            result = await self.client.analyze(
                screenshot,
                elements,
                requested_url or page.url,
                current_url=page.url,
                title=title,
            )
        except (AnalysisServiceFailure, PlaywrightError) as e:
            logger.warning(f"AI tab detection failed, using heuristic detection: {e}")
            return await self._fall_back(page, f"analysis service failed: {e}")
        except Exception as e:
            logger.error(f"Analysis client raised {type(e).__name__}, using heuristic detection: {e}")
            return await self._fall_back(page, f"analysis client error: {e}")

        return self._to_detection(result, elements)

    async def _fall_back(self, page: Page, note: str) -> RegionDetection:
        detection = await self.fallback.detect_regions(page)
        detection.fallback_used = True
        detection.notes.append(note)
        return detection

    def _to_detection(self, result: AnalysisResult, elements: List[Dict[str, Any]]) -> RegionDetection:
        if result.navigation_issue:
            logger.warning(f"Analysis service reports navigation issue: {result.issue_type}")
            return RegionDetection(
                source="ai",
                navigation_issue=result.issue_type or "unknown",
                should_proceed=result.should_proceed,
                notes=[n for n in [result.issue_description, result.navigation_strategy] if n],
            )

        regions = []
        if result.should_proceed:
            for suggestion in sorted(result.tab_elements, key=lambda s: s.click_order):
                index = suggestion.element_index - 1
                if index < 0 or index >= len(elements):
                    continue
                element = elements[index]
                rect = element.get('rect', {})
                regions.append(Region(
                    text=suggestion.tab_name or element.get('text', ''),
                    selector=element.get('selector'),
                    fallback_selector=element.get('fallbackSelector'),
                    x=float(rect.get('x', 0)),
                    y=float(rect.get('y', 0)),
                    width=float(rect.get('width', 0)),
                    height=float(rect.get('height', 0)),
                    confidence=suggestion.confidence,
                    source="ai",
                ))

        regions = regions[:self.max_regions]
        return RegionDetection(
            regions=[r.model_copy(update={'order': i}) for i, r in enumerate(regions)],
            source="ai",
            should_proceed=result.should_proceed,
            notes=list(result.recommendations),
        )


async def activate_region(
    page: Page,
    region: Region,
    resolver: SelectorResolver,
    click_timeout_ms: int = 5000,
) -> str:
    """Click a region and return how it was activated.

    Tries the resolution cascade on the region selector, then the fallback
    selector, then a click at the center of the region's box.

    Raises:
        ElementNotFound: no method could activate the region
    """
    attempted: List[str] = []

    if region.selector:
        try:
            resolved = await resolver.resolve(page, ElementQuery(
                selector=region.selector,
                hint=region.text or None,
                action=InteractionAction.CLICK,
            ))
            await resolved.locator.click(timeout=click_timeout_ms)
            return f"selector:{resolved.strategy}"
        except ElementNotFound as e:
            attempted.extend(e.attempted)
        except PlaywrightError as e:
            logger.debug(f"Click on resolved region '{region.text}' failed: {e}")
            attempted.append("selector_click")

    if region.fallback_selector and region.fallback_selector != region.selector:
        try:
            await page.locator(region.fallback_selector).first.click(timeout=click_timeout_ms)
            return "fallback_selector"
        except PlaywrightError as e:
            logger.debug(f"Fallback selector for '{region.text}' failed: {e}")
            attempted.append("fallback_selector")

    if region.has_box:
        x, y = region.center
        try:
            await page.mouse.click(x, y)
            return "coordinates"
        except PlaywrightError as e:
            logger.debug(f"Coordinate click for '{region.text}' failed: {e}")
            attempted.append("coordinates")

    raise ElementNotFound(
        message=f"Could not activate region '{region.text}'",
        selector=region.selector,
        attempted=attempted,
    )
