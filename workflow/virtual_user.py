"""
Virtual user workflow: authenticate, load the target page, fan out realtime
connections, hold them for the think time, tear down.
"""
import asyncio
import time
import uuid
from datetime import datetime
from urllib.parse import urljoin

from browser.browser_utils import USER_AGENT_HEADERS, goto_step
from browser.page_monitoring import setup_page_error_logging, setup_websocket_monitoring
from browser.request_classifier import install_request_tracking
from reporting.csv_reporter import log_session_event
from utils.structured_logger import get_logger, log_error, LogCategory, LogSource
from workflow.authenticator import SessionAuthenticator
from workflow.context import VirtualUserContext
from workflow.errors import AuthExhaustedError, NavigationError, WorkflowError
from workflow.fanout import FanoutController
from workflow.outcome import RunOutcome


def target_url(vu_context):
    if vu_context.base_url:
        return urljoin(vu_context.base_url, vu_context.personal_path)
    return vu_context.personal_path


def _build_outcome(vu_id, vu_context, connections, start, diagnostics=None, error=None):
    return RunOutcome(
        vu_id=vu_id,
        strategy=vu_context.strategy,
        desired=vu_context.connections_per_instance,
        connections=tuple(sorted(connections, key=lambda c: c.index)),
        elapsed_s=time.monotonic() - start,
        diagnostics=diagnostics,
        error=error,
        completed_at=datetime.now().isoformat(),
    )


async def run_virtual_user(page, vu_context_bag, vu_id=None):
    """Run one scripted virtual user on ``page``.

    Args:
        page: Primary Playwright page. Owned by the caller and left open.
        vu_context_bag: ``{"vars": {...}, "config": {"target": base_url}}``
        vu_id: Optional identifier used in logs and reports

    Returns:
        RunOutcome for a completed run (possibly with a recorded shortfall)

    Raises:
        WorkflowError: terminal failure, with the partial RunOutcome on ``.outcome``
    """
    vu_id = vu_id or f"vu-{uuid.uuid4().hex[:8]}"
    start = time.monotonic()
    vu_context = VirtualUserContext.from_vu_context(vu_context_bag)
    desired = vu_context.connections_per_instance
    logger = get_logger(vu_id=vu_id, category=LogCategory.SESSION, source=LogSource.WORKFLOW)

    logger.info("Virtual user started", extra_data={
        'strategy': vu_context.strategy,
        'connections': desired,
        'auth_url': vu_context.auth_url,
    })
    log_session_event(vu_id, 'SESSION_START', 'Virtual user started', stage='start')

    # Routing on the page rather than the context keeps the HTTP cache alive
    # for secondary pages in same-page mode.
    await install_request_tracking(page, vu_context.tracked_fragments)
    await page.context.set_extra_http_headers(USER_AGENT_HEADERS)
    setup_page_error_logging(page, f"Page 1/{desired}", vu_id=vu_id)
    setup_websocket_monitoring(page, f"Page 1/{desired}", vu_id=vu_id)

    controller = FanoutController(vu_context, vu_id=vu_id)
    try:
        await SessionAuthenticator(page, vu_context, vu_id=vu_id).authenticate()

        target = target_url(vu_context)
        if vu_context.strategy == 'same-page':
            # Load the page once; the realtime socket stays open so "networkidle" never comes.
            navigation = await goto_step(page, target, 'primary_navigation', vu_context.primary_nav_timeout_ms)
            if not navigation.ok:
                raise NavigationError(f"Could not load {target}: {navigation.fault}")

        connections = await controller.establish(page, page.context, target, desired,
                                                 vu_context.echo_timeout_ms)
        connected = sum(1 for c in connections if c.connected)
        if connected < desired:
            logger.warning(f"Connection shortfall: {connected}/{desired}", category=LogCategory.FANOUT)

        logger.info(f"Holding {connected} connection(s) for {vu_context.think_time_ms}ms")
        await asyncio.sleep(vu_context.think_time_ms / 1000)
    except WorkflowError as e:
        diagnostics = e.diagnostics if isinstance(e, AuthExhaustedError) else None
        e.outcome = _build_outcome(vu_id, vu_context, controller.results, start,
                                   diagnostics=diagnostics, error=str(e))
        log_error(f"Virtual user failed: {e}", vu_id=vu_id, source=LogSource.WORKFLOW,
                  category=LogCategory.AUTH if diagnostics else LogCategory.FANOUT)
        log_session_event(vu_id, 'SESSION_END', 'Virtual user failed', error=str(e), stage='end',
                          successes=e.outcome.successes, failures=e.outcome.failures,
                          elapsed_s=round(e.outcome.elapsed_s, 3))
        raise
    finally:
        await controller.close()

    outcome = _build_outcome(vu_id, vu_context, connections, start)
    logger.info("Virtual user finished", extra_data={
        'successes': outcome.successes,
        'failures': outcome.failures,
        'elapsed_s': round(outcome.elapsed_s, 2),
    })
    log_session_event(vu_id, 'SESSION_END', 'Virtual user finished', stage='end',
                      successes=outcome.successes, failures=outcome.failures,
                      elapsed_s=round(outcome.elapsed_s, 3))
    return outcome
