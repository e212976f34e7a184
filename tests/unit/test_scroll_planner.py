"""Unit tests for scroll planning."""

import pytest

from pageshot.capture.readiness import ReadinessClassifier
from pageshot.capture.scroll_planner import (
    MEASURE_SCRIPT,
    SCROLL_SCRIPT,
    ContainerMetrics,
    ScrollMetrics,
    ScrollPlanner,
    compute_scroll_plan,
)
from pageshot.models.capture import ScrollRoot

from tests.fakes import FakePage


def window(scroll_height, client_height=1000, viewport_height=1000, containers=None):
    return ScrollMetrics(
        window_scroll_height=scroll_height,
        window_client_height=client_height,
        viewport_height=viewport_height,
        containers=containers or [],
    )


class TestComputeScrollPlan:
    """Tests for compute_scroll_plan()."""

    def test_window_plan_is_clamped_to_extent(self):
        plan = compute_scroll_plan(window(4000), step_size=800, max_screenshots=10)

        assert plan.root == ScrollRoot.WINDOW
        assert plan.offsets == [800, 1600, 2400, 3000]
        assert plan.max_extent == 3000

    @pytest.mark.parametrize("scroll_height, step_size", [
        (1000, 800), (1101, 800), (2600, 800), (9999, 700), (123456, 800), (5000, 1000),
    ])
    def test_offsets_strictly_increase_without_overshoot(self, scroll_height, step_size):
        metrics = window(scroll_height)
        plan = compute_scroll_plan(metrics, step_size=step_size, max_screenshots=10)

        assert all(a < b for a, b in zip(plan.offsets, plan.offsets[1:]))
        assert all(offset <= metrics.window_extent for offset in plan.offsets)
        assert len(plan.offsets) <= 9

    def test_exact_multiple_has_no_duplicate_last_offset(self):
        plan = compute_scroll_plan(window(2600), step_size=800)

        assert plan.offsets == [800, 1600]

    def test_max_screenshots_reserves_top_frame(self):
        plan = compute_scroll_plan(window(100000), step_size=800, max_screenshots=10)

        assert len(plan.offsets) == 9
        assert plan.offsets[-1] == 7200

    def test_short_page_has_empty_plan(self):
        plan = compute_scroll_plan(window(1050))

        assert plan.is_empty
        assert plan.root == ScrollRoot.NONE

    def test_container_plan(self):
        metrics = window(1000, containers=[
            ContainerMetrics(index=2, scroll_height=2000, client_height=600, tag_name="div"),
            ContainerMetrics(index=5, scroll_height=9000, client_height=300),
        ])

        plan = compute_scroll_plan(metrics, step_size=800)

        assert plan.root == ScrollRoot.CONTAINER
        assert plan.container_index == 2
        assert plan.offsets == [800, 1400]

    def test_rejects_non_positive_step(self):
        with pytest.raises(ValueError):
            compute_scroll_plan(window(4000), step_size=0)


class TestScrollMetrics:

    def test_from_dict(self):
        metrics = ScrollMetrics.from_dict({
            'windowScrollHeight': 4000,
            'windowClientHeight': 900,
            'viewportHeight': 1000,
            'containers': [{'index': 0, 'tagName': 'div', 'scrollHeight': 800, 'clientHeight': 300}],
        })

        assert metrics.window_extent == 3100
        assert metrics.containers[0].extent == 500


class TestScrollPlanner:
    """Tests for ScrollPlanner on a page."""

    @pytest.mark.asyncio
    async def test_plan_and_iterate_window(self):
        page = FakePage(scripts={MEASURE_SCRIPT: {
            'windowScrollHeight': 4000,
            'windowClientHeight': 1000,
            'viewportHeight': 1000,
            'containers': [],
        }})
        planner = ScrollPlanner(ReadinessClassifier(), step_size=800)

        plan = await planner.plan(page)
        offsets = [offset async for offset in planner.iterate(page, plan)]

        assert offsets == [800, 1600, 2400, 3000]
        scrolls = [arg for script, arg in page.evaluations if script == SCROLL_SCRIPT]
        # reset before measuring, then one scroll per offset
        assert scrolls == [[None, 0], [None, 800], [None, 1600], [None, 2400], [None, 3000]]

    @pytest.mark.asyncio
    async def test_container_scroll_and_reset(self):
        page = FakePage(scripts={MEASURE_SCRIPT: {
            'windowScrollHeight': 1000,
            'windowClientHeight': 1000,
            'viewportHeight': 1000,
            'containers': [{'index': 0, 'tagName': 'div', 'scrollHeight': 1500, 'clientHeight': 500}],
        }})
        planner = ScrollPlanner(ReadinessClassifier(), step_size=800)

        plan = await planner.plan(page)
        offsets = [offset async for offset in planner.iterate(page, plan)]
        await planner.reset(page, plan)

        assert offsets == [800, 1000]
        scrolls = [arg for script, arg in page.evaluations if script == SCROLL_SCRIPT]
        assert scrolls[-2:] == [[0, 0], [None, 0]]

    @pytest.mark.asyncio
    async def test_measure_passes_min_container_height(self):
        page = FakePage()
        planner = ScrollPlanner(ReadinessClassifier(), min_container_height=250)

        plan = await planner.plan(page)

        assert plan.is_empty
        assert (MEASURE_SCRIPT, 250) in page.evaluations
