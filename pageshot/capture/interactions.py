"""Caller-supplied interaction sequences.

Each step is resolved through the selector cascade and performed on the page.
A failing step is recorded as an error artifact and the sequence continues
with the next step.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..models.capture import ArtifactKind, ElementQuery, Interaction, InteractionAction
from .errors import ElementNotFound
from .naming import ArtifactCollector
from .readiness import ReadinessClassifier
from .selector_resolver import SelectorResolver

logger = logging.getLogger(__name__)


WINDOW_SCROLL_SCRIPT = "(top) => window.scrollTo({ top: top, behavior: 'instant' })"


def parse_int(value: Optional[str], default: int) -> int:
    """Leading integer of ``value``, or ``default`` when there is none or it is zero."""
    match = re.match(r'\s*(-?\d+)', value or '')
    if not match:
        return default
    return int(match.group(1)) or default


@dataclass
class InteractionOutcome:
    """Result of one interaction step."""

    index: int
    action: str
    succeeded: bool
    strategy: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class InteractionRunner:
    """Execute interaction steps with the resolution cascade."""

    def __init__(
        self,
        resolver: SelectorResolver,
        readiness: ReadinessClassifier,
        wait_for_timeout_ms: int = 10000,
        transition_delay_ms: int = 1000,
        default_wait_ms: int = 2000,
    ):
        self.resolver = resolver
        self.readiness = readiness
        self.wait_for_timeout_ms = wait_for_timeout_ms
        self.transition_delay_ms = transition_delay_ms
        self.default_wait_ms = default_wait_ms

    async def run(
        self,
        page: Page,
        interactions: List[Interaction],
        collector: ArtifactCollector,
    ) -> List[InteractionOutcome]:
        outcomes = []
        logger.info(f"Performing {len(interactions)} interactions")

        for number, interaction in enumerate(interactions, start=1):
            action = interaction.action.value
            try:
                strategy = await self._perform(page, interaction)
            except ElementNotFound as e:
                logger.warning(f"Interaction {number} ({action} {interaction.selector}) failed: {e.message}")
                await self._record_error(page, collector, number, action, e.message, e.error_code)
                outcomes.append(InteractionOutcome(
                    number, action, False, error=e.message, error_code=e.error_code
                ))
                continue
            except PlaywrightError as e:
                logger.warning(f"Interaction {number} ({action} {interaction.selector}) failed: {e}")
                await self._record_error(page, collector, number, action, str(e), "interaction_failed")
                outcomes.append(InteractionOutcome(
                    number, action, False, error=str(e), error_code="interaction_failed"
                ))
                continue

            if interaction.action != InteractionAction.WAIT:
                await self._after_action(page, interaction, collector, number)

            logger.debug(f"Interaction {number} ({action}) completed via {strategy}")
            outcomes.append(InteractionOutcome(number, action, True, strategy=strategy))

        return outcomes

    async def _perform(self, page: Page, interaction: Interaction) -> str:
        action = interaction.action

        if action == InteractionAction.WAIT:
            await page.wait_for_timeout(parse_int(interaction.value, self.default_wait_ms))
            return "wait"

        if action == InteractionAction.SCROLL and not interaction.selector:
            await page.evaluate(WINDOW_SCROLL_SCRIPT, parse_int(interaction.value, 0))
            return "window"

        resolved = await self.resolver.resolve(page, ElementQuery.from_interaction(interaction))
        locator = resolved.locator

        if action == InteractionAction.CLICK:
            await locator.click()
        elif action == InteractionAction.HOVER:
            await locator.hover()
        elif action == InteractionAction.FILL:
            await locator.fill(interaction.value or '')
        elif action == InteractionAction.SELECT:
            await locator.select_option(interaction.value or '')
        elif action == InteractionAction.SCROLL:
            await locator.scroll_into_view_if_needed()

        return resolved.strategy

    async def _after_action(
        self,
        page: Page,
        interaction: Interaction,
        collector: ArtifactCollector,
        number: int,
    ) -> None:
        if interaction.wait_for:
            try:
                await page.wait_for_selector(interaction.wait_for, timeout=self.wait_for_timeout_ms)
            except PlaywrightError:
                logger.warning(f"wait_for element not found: {interaction.wait_for}")

        await page.wait_for_timeout(self.transition_delay_ms)

        if interaction.screenshot:
            await self.readiness.await_ready(page)
            payload = await page.screenshot(type="png", full_page=False)
            collector.add(
                f"interaction_{number}_{interaction.action.value}.png",
                ArtifactKind.INTERACTION,
                payload,
                url=page.url,
            )

    async def _record_error(
        self,
        page: Page,
        collector: ArtifactCollector,
        number: int,
        action: str,
        message: str,
        error_code: str,
    ) -> None:
        try:
            payload = await page.screenshot(type="png", full_page=False)
        except PlaywrightError as e:
            logger.warning(f"Could not take error screenshot: {e}")
            payload = b""
        collector.add(
            f"error_interaction_{number}_{action}.png",
            ArtifactKind.ERROR,
            payload,
            url=page.url,
            error=message,
            error_code=error_code,
        )
