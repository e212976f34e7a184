"""Unit tests for the selector resolution cascade."""

import pytest

from pageshot.capture.errors import ElementNotFound
from pageshot.capture.selector_resolver import (
    BUTTON_LIKE_SELECTOR,
    ResolutionStrategy,
    SelectorResolver,
    bare_id,
    bare_tag,
    build_strategies,
    class_synonym,
    last_segment,
    tag_and_id,
)
from pageshot.models.capture import ElementQuery, InteractionAction

from tests.fakes import FakePage


class TestRepairFunctions:

    def test_last_segment(self):
        assert last_segment("nav ul .tab-item") == ".tab-item"

    def test_tag_and_id(self):
        assert tag_and_id("button#save.primary") == "button#save"
        assert tag_and_id(".save") is None

    def test_bare_id(self):
        assert bare_id("div.panel #save-btn") == "#save-btn"

    def test_bare_tag(self):
        assert bare_tag("button.primary") == "button"
        assert bare_tag(".primary") is None

    def test_class_synonym(self):
        assert class_synonym(".big-button") == ".button"
        assert class_synonym(".widget") is None


class TestBuildStrategies:

    def test_order(self):
        names = [s.name for s in build_strategies()]

        assert names[0] == "direct"
        assert names.index("role_name") < names.index("text") < names.index("test_id")
        assert names.index("test_id") < names.index("repair_last_segment")
        assert names[-1] == "repair_class_synonym"

    def test_timeouts(self):
        strategies = build_strategies(direct_timeout_ms=5000, fallback_timeout_ms=3000)

        assert strategies[0].timeout_ms == 5000
        assert all(s.timeout_ms == 3000 for s in strategies[1:])


class TestSelectorResolver:
    """Tests for SelectorResolver.resolve()."""

    @pytest.mark.asyncio
    async def test_direct_match(self):
        page = FakePage(present={"#save"})
        resolver = SelectorResolver()

        resolved = await resolver.resolve(page, ElementQuery(selector="#save"))

        assert resolved.strategy == "direct"
        assert resolved.attempted == ["direct"]
        assert resolved.locator.key == "#save"

    @pytest.mark.asyncio
    async def test_role_name_from_hint(self):
        page = FakePage(present={"role:button:Save"})
        resolver = SelectorResolver()

        resolved = await resolver.resolve(page, ElementQuery(selector=".gone", hint="Save"))

        assert resolved.strategy == "role_name"
        assert resolved.attempted == ["direct", "role_name"]

    @pytest.mark.asyncio
    async def test_test_id_from_selector_token(self):
        token_selector = '[data-testid*="save-btn"], [data-test*="save-btn"], [data-cy*="save-btn"]'
        page = FakePage(present={token_selector})

        resolved = await SelectorResolver().resolve(page, ElementQuery(selector="div .save-btn"))

        assert resolved.strategy == "test_id"

    @pytest.mark.asyncio
    async def test_repair_last_segment(self):
        page = FakePage(present={".tab-item"})

        resolved = await SelectorResolver().resolve(page, ElementQuery(selector="nav ul .tab-item"))

        assert resolved.strategy == "repair_last_segment"

    @pytest.mark.asyncio
    async def test_generic_button_only_without_selector(self):
        page = FakePage(present={BUTTON_LIKE_SELECTOR})

        resolved = await SelectorResolver().resolve(page, ElementQuery(hint="Continue"))

        assert resolved.strategy == "generic_button"

        with pytest.raises(ElementNotFound) as exc_info:
            await SelectorResolver().resolve(page, ElementQuery(selector=".continue"))
        assert "generic_button" not in exc_info.value.attempted

    @pytest.mark.asyncio
    async def test_disabled_candidate_is_skipped(self):
        page = FakePage(present={"#save", "role:button:Save"})
        page.disabled.add("#save")

        resolved = await SelectorResolver().resolve(page, ElementQuery(selector="#save", hint="Save"))

        assert resolved.strategy == "role_name"

    @pytest.mark.asyncio
    async def test_missing_element_raises_with_attempted_strategies(self):
        page = FakePage()
        resolver = SelectorResolver()

        with pytest.raises(ElementNotFound) as exc_info:
            await resolver.resolve(page, ElementQuery(selector=".missing"))

        error = exc_info.value
        assert error.error_code == "element_not_found"
        assert error.selector == ".missing"
        assert error.attempted == ["direct", "test_id"]
        assert error.details["attempted"] == ["direct", "test_id"]
        assert resolver.get_stats() == {'resolved': 0, 'not_found': 1}

    @pytest.mark.asyncio
    async def test_earlier_strategy_wins(self):
        """When several strategies match, the first in cascade order is used."""
        page = FakePage(present={"#save", "role:button:Save", "text:Save"})

        resolved = await SelectorResolver().resolve(page, ElementQuery(selector="#save", hint="Save"))

        assert resolved.strategy == "direct"

    @pytest.mark.asyncio
    async def test_custom_strategies(self):
        def always(page, query):
            return page.locator("body")

        page = FakePage(present={"body"})
        resolver = SelectorResolver(strategies=[ResolutionStrategy("body", always)])

        resolved = await resolver.resolve(page, ElementQuery(action=InteractionAction.HOVER))

        assert resolved.strategy == "body"
        assert resolver.get_stats()['resolved'] == 1
