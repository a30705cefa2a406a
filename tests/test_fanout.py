"""Tests for the connection fan-out controller (workflow/fanout.py)"""
import logging

import pytest

from workflow.context import VirtualUserContext
from workflow.errors import (
    AllConnectionsFailedError,
    ConnectionShortfallError,
    ConnectionTimeoutError,
)
from workflow.fanout import FanoutController, SecondaryPages
from browser.request_classifier import TRACK_HEADER
from config import USER_AGENT
from conftest import (
    FakeContext,
    CONNECTED_SNAPSHOT,
    CONNECTING_SNAPSHOT,
    timeout_error,
)

TARGET = "https://app.test/personal-designs"


def make_context(fast_vars, **extra_vars):
    return VirtualUserContext.from_vu_context({
        'vars': {**fast_vars, **extra_vars},
        'config': {'target': "https://app.test"},
    })


async def establish(controller, browser_context, primary, desired=4):
    return await controller.establish(primary, browser_context, TARGET, desired,
                                      controller.vu_context.echo_timeout_ms)


# ============================================================================
# PARALLEL-TAB STRATEGY
# ============================================================================

@pytest.mark.asyncio
async def test_parallel_tabs_one_timeout_reports_three_of_four(fast_vars):
    browser_context = FakeContext(page_snapshots=[CONNECTED_SNAPSHOT, CONNECTING_SNAPSHOT, CONNECTED_SNAPSHOT])
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars))

    try:
        results = await establish(controller, browser_context, primary)
    finally:
        await controller.close()

    assert [r.index for r in results] == [0, 1, 2, 3]
    assert sum(r.connected for r in results) == 3
    assert [r.index for r in results if not r.connected] == [2]
    assert results[2].state == "Pusher state: connecting"
    assert len(browser_context.pages) == 3
    assert [p.close_count for p in browser_context.pages] == [1, 1, 1]
    assert primary.close_count == 0


@pytest.mark.asyncio
async def test_parallel_tabs_navigates_every_page_including_primary(fast_vars):
    browser_context = FakeContext()
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars))

    results = await establish(controller, browser_context, primary)
    await controller.close()

    assert all(r.connected for r in results)
    assert primary.visited == [TARGET]
    for page in browser_context.pages:
        assert page.visited == [TARGET]
        assert page.routes and page.routes[0][0] == "**/*"
        assert page.extra_headers == {"User-Agent": USER_AGENT}
        assert {'websocket', 'console', 'pageerror', 'requestfailed'} <= set(page.listeners)


@pytest.mark.asyncio
async def test_parallel_tabs_navigation_failure_does_not_cancel_siblings(fast_vars):
    browser_context = FakeContext()
    primary = browser_context.primary_page()
    primary.goto_error = timeout_error()
    controller = FanoutController(make_context(fast_vars))

    results = await establish(controller, browser_context, primary)
    await controller.close()

    assert results[0].connected is False
    assert "Timeout" in results[0].error
    assert [r.connected for r in results[1:]] == [True, True, True]


@pytest.mark.asyncio
async def test_parallel_tabs_page_open_failure_is_a_shortfall(fast_vars):
    browser_context = FakeContext(new_page_errors={2})
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars))

    results = await establish(controller, browser_context, primary)
    await controller.close()

    assert [r.connected for r in results] == [True, True, False, True]
    assert "could not open page" in results[2].error
    opened = [p for p in browser_context.pages if p is not None]
    assert len(opened) == 2
    assert all(p.close_count == 1 for p in opened)


@pytest.mark.asyncio
async def test_parallel_tabs_strict_policy_raises_after_all_settle(fast_vars):
    browser_context = FakeContext(page_snapshots=[CONNECTING_SNAPSHOT])
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars, PARTIAL_POLICY='strict'))

    with pytest.raises(ConnectionShortfallError) as exc_info:
        await establish(controller, browser_context, primary)
    await controller.close()

    assert exc_info.value.connected == 3
    assert len(exc_info.value.results) == 4
    assert not isinstance(exc_info.value, AllConnectionsFailedError)
    assert all(p.close_count == 1 for p in browser_context.pages)


@pytest.mark.asyncio
async def test_all_connections_failing_is_terminal(fast_vars):
    browser_context = FakeContext(page_snapshots=[CONNECTING_SNAPSHOT] * 3)
    primary = browser_context.primary_page(snapshot=CONNECTING_SNAPSHOT)
    controller = FanoutController(make_context(fast_vars))

    with pytest.raises(AllConnectionsFailedError) as exc_info:
        await establish(controller, browser_context, primary)
    await controller.close()

    assert exc_info.value.connected == 0
    assert exc_info.value.desired == 4


@pytest.mark.asyncio
async def test_isolated_contexts_are_owned_and_closed(fast_vars):
    browser_context = FakeContext()
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars, ISOLATE_CONTEXTS='true'))

    results = await establish(controller, browser_context, primary, desired=3)
    await controller.close()

    assert all(r.connected for r in results)
    isolated = browser_context.browser.contexts
    assert len(isolated) == 2
    assert all(c.close_count == 1 for c in isolated)
    assert all(c.pages[0].close_count == 1 for c in isolated)
    assert isolated[0].new_context_kwargs['storage_state']['cookies']


# ============================================================================
# SAME-PAGE STRATEGY
# ============================================================================

@pytest.mark.asyncio
async def test_same_page_primary_is_not_renavigated(fast_vars):
    browser_context = FakeContext(page_snapshots=[CONNECTED_SNAPSHOT, CONNECTING_SNAPSHOT, CONNECTED_SNAPSHOT])
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars, FANOUT_STRATEGY='same-page'))

    results = await establish(controller, browser_context, primary)
    await controller.close()

    assert primary.visited == []
    assert [r.connected for r in results] == [True, True, False, True]
    for page in browser_context.pages:
        assert page.visited == [TARGET]
        # No per-page routing, so the HTTP cache stays warm
        assert page.routes == []
        assert page.close_count == 1


@pytest.mark.asyncio
async def test_same_page_primary_timeout_is_fatal(fast_vars):
    browser_context = FakeContext()
    primary = browser_context.primary_page(snapshot=CONNECTING_SNAPSHOT)
    controller = FanoutController(make_context(fast_vars, FANOUT_STRATEGY='same-page'))

    with pytest.raises(ConnectionTimeoutError) as exc_info:
        await establish(controller, browser_context, primary)
    await controller.close()

    assert exc_info.value.index == 0
    assert browser_context.pages == []
    assert [r.connected for r in controller.results] == [False]


@pytest.mark.asyncio
async def test_desired_count_one_opens_no_secondary_pages(fast_vars):
    browser_context = FakeContext()
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars))

    results = await establish(controller, browser_context, primary, desired=1)
    await controller.close()

    assert len(results) == 1 and results[0].connected
    assert browser_context.pages == []


# ============================================================================
# TEARDOWN
# ============================================================================

@pytest.mark.asyncio
async def test_close_all_twice_is_a_no_op():
    browser_context = FakeContext()
    pages = SecondaryPages()
    for _ in range(3):
        pages.add_page(await browser_context.new_page())

    assert await pages.close_all() == 3
    assert await pages.close_all() == 0
    assert [p.close_count for p in browser_context.pages] == [1, 1, 1]


@pytest.mark.asyncio
async def test_close_errors_are_swallowed():
    browser_context = FakeContext()
    pages = SecondaryPages()
    broken = await browser_context.new_page()
    broken.close_error = RuntimeError("Target page, context or browser has been closed")
    healthy = await browser_context.new_page()
    pages.add_page(broken)
    pages.add_page(healthy)

    await pages.close_all()

    assert broken.close_count == 1
    assert healthy.close_count == 1


def test_track_header_name():
    assert TRACK_HEADER == 'x-loadtest-track'


@pytest.mark.asyncio
async def test_connection_logs_carry_the_page_label(fast_vars, caplog):
    browser_context = FakeContext(page_snapshots=[CONNECTED_SNAPSHOT, CONNECTING_SNAPSHOT, CONNECTED_SNAPSHOT])
    primary = browser_context.primary_page()
    controller = FanoutController(make_context(fast_vars), vu_id="VU7")

    with caplog.at_level(logging.INFO, logger="realtime_load"):
        await establish(controller, browser_context, primary)
    await controller.close()

    failures = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert len(failures) == 1
    assert failures[0].startswith("[CAT:WEBSOCKET] [SRC:FANOUT] [VU:VU7] [TAB:Page 3/4]")
