"""Cascading element resolution.

An element query (raw selector, hint text, intended action) is turned into a
live locator by trying an ordered list of strategies. Each strategy is a plain
builder function that either returns a candidate locator or ``None`` when it
does not apply to the query. The resolver waits briefly for each candidate to
become visible and enabled; the first one that does wins, and the names of
every strategy tried are kept for diagnostics.

The same resolver is used for interaction steps, login forms and tab regions.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from ..models.capture import ElementQuery, InteractionAction
from .errors import ElementNotFound

logger = logging.getLogger(__name__)


BUTTON_LIKE_SELECTOR = (
    'button, [role="button"], input[type="button"], input[type="submit"], .btn, .button'
)

COMMON_CLASS_SYNONYMS = ['.btn', '.button', '.link', '.nav', '.menu', '.form', '.input']

Builder = Callable[[Page, ElementQuery], Optional[Locator]]


@dataclass
class ResolutionStrategy:
    """One named step of the resolution cascade."""

    name: str
    build: Builder
    timeout_ms: Optional[int] = None


@dataclass
class ResolvedElement:
    """A resolved element and how it was found."""

    locator: Locator
    strategy: str
    attempted: List[str] = field(default_factory=list)


def _hint_pattern(hint: str) -> "re.Pattern":
    return re.compile(re.escape(hint), re.IGNORECASE)


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def _selector_token(selector: str) -> str:
    """Bare identifier of a selector, e.g. ``nav .tab-item`` -> ``tab-item``."""
    last = selector.strip().split(' ')[-1]
    return re.sub(r'^[.#]+', '', last).strip('[]"\' ')


# Direct and semantic strategies

def direct(page: Page, query: ElementQuery) -> Optional[Locator]:
    if not query.selector:
        return None
    return page.locator(query.selector)


def role_name(page: Page, query: ElementQuery) -> Optional[Locator]:
    if query.action not in (InteractionAction.CLICK, InteractionAction.HOVER) or not query.hint:
        return None
    return page.get_by_role("button", name=_hint_pattern(query.hint))


def text(page: Page, query: ElementQuery) -> Optional[Locator]:
    if not query.hint:
        return None
    return page.get_by_text(_hint_pattern(query.hint))


def label(page: Page, query: ElementQuery) -> Optional[Locator]:
    if query.action not in (InteractionAction.FILL, InteractionAction.SELECT) or not query.hint:
        return None
    return page.get_by_label(_hint_pattern(query.hint))


def placeholder(page: Page, query: ElementQuery) -> Optional[Locator]:
    if query.action != InteractionAction.FILL or not query.hint:
        return None
    return page.get_by_placeholder(_hint_pattern(query.hint))


def generic_button(page: Page, query: ElementQuery) -> Optional[Locator]:
    if query.action != InteractionAction.CLICK or query.selector:
        return None
    return page.locator(BUTTON_LIKE_SELECTOR)


# Attribute-pattern strategies

def automation_id(page: Page, query: ElementQuery) -> Optional[Locator]:
    if not query.selector:
        return None
    token = _quote(_selector_token(query.selector))
    if not token:
        return None
    return page.locator(
        f'[data-testid*="{token}"], [data-test*="{token}"], [data-cy*="{token}"]'
    )


def aria_label(page: Page, query: ElementQuery) -> Optional[Locator]:
    if not query.hint:
        return None
    return page.locator(f'[aria-label*="{_quote(query.hint)}" i]')


def title(page: Page, query: ElementQuery) -> Optional[Locator]:
    if not query.hint:
        return None
    return page.locator(f'[title*="{_quote(query.hint)}" i]')


# Selector-repair strategies

def _repaired(repair: Callable[[str], Optional[str]]) -> Builder:
    def build(page: Page, query: ElementQuery) -> Optional[Locator]:
        if not query.selector:
            return None
        fixed = repair(query.selector.strip())
        if not fixed or fixed == query.selector.strip():
            return None
        return page.locator(fixed)
    build.__name__ = repair.__name__
    return build


def last_segment(selector: str) -> Optional[str]:
    return selector.split(' ')[-1]


def tag_and_id(selector: str) -> Optional[str]:
    match = re.match(r'^(\w+)(#[\w-]+)', selector)
    return match.group(0) if match else None


def bare_id(selector: str) -> Optional[str]:
    match = re.search(r'#([\w-]+)', selector)
    return f"#{match.group(1)}" if match else None


def bare_tag(selector: str) -> Optional[str]:
    match = re.match(r'^(\w+)', selector)
    return match.group(1) if match else None


def class_synonym(selector: str) -> Optional[str]:
    for cls in COMMON_CLASS_SYNONYMS:
        if cls[1:] in selector:
            return cls
    return None


def build_strategies(
    direct_timeout_ms: int = 5000,
    fallback_timeout_ms: int = 3000,
) -> List[ResolutionStrategy]:
    """Return the default cascade in evaluation order."""
    strategies = [ResolutionStrategy("direct", direct, direct_timeout_ms)]
    for name, builder in (
        ("role_name", role_name),
        ("text", text),
        ("label", label),
        ("placeholder", placeholder),
        ("generic_button", generic_button),
        ("test_id", automation_id),
        ("aria_label", aria_label),
        ("title", title),
        ("repair_last_segment", _repaired(last_segment)),
        ("repair_tag_id", _repaired(tag_and_id)),
        ("repair_id", _repaired(bare_id)),
        ("repair_tag", _repaired(bare_tag)),
        ("repair_class_synonym", _repaired(class_synonym)),
    ):
        strategies.append(ResolutionStrategy(name, builder, fallback_timeout_ms))
    return strategies


class SelectorResolver:
    """Resolve element queries through an ordered strategy cascade."""

    def __init__(
        self,
        strategies: Optional[List[ResolutionStrategy]] = None,
        default_timeout_ms: int = 3000,
    ):
        self.strategies = strategies if strategies is not None else build_strategies()
        self.default_timeout_ms = default_timeout_ms
        self._stats = {'resolved': 0, 'not_found': 0}

    async def resolve(self, page: Page, query: ElementQuery) -> ResolvedElement:
        """Return the first visible, enabled match.

        Raises:
            ElementNotFound: every applicable strategy failed
        """
        attempted: List[str] = []

        for strategy in self.strategies:
            try:
                candidate = strategy.build(page, query)
            except (PlaywrightError, re.error, ValueError) as e:
                logger.debug(f"Strategy '{strategy.name}' could not build a locator: {e}")
                continue
            if candidate is None:
                continue

            attempted.append(strategy.name)
            timeout_ms = strategy.timeout_ms or self.default_timeout_ms
            target = candidate.first

            if await self._is_usable(target, timeout_ms):
                self._stats['resolved'] += 1
                logger.debug(
                    f"Resolved {query.selector or query.hint!r} with '{strategy.name}' "
                    f"after {len(attempted)} attempts"
                )
                return ResolvedElement(locator=target, strategy=strategy.name, attempted=attempted)

            logger.debug(f"Strategy '{strategy.name}' found nothing for {query.selector!r}")

        self._stats['not_found'] += 1
        raise ElementNotFound(
            message=f"Could not find element for {query.action.value} "
                    f"(selector={query.selector!r}, hint={query.hint!r})",
            selector=query.selector,
            attempted=attempted,
        )

    async def _is_usable(self, target: Locator, timeout_ms: int) -> bool:
        try:
            await target.wait_for(state="visible", timeout=timeout_ms)
            return await target.is_enabled()
        except PlaywrightError:
            return False

    def get_stats(self) -> dict:
        return dict(self._stats)
