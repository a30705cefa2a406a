"""
Connection fan-out: drive one virtual user to N concurrent realtime connections.

Two strategies:

* ``same-page``: the primary page (already on the target path) must connect,
  otherwise the run fails. Secondary pages are then opened one at a time so
  they hit a warm asset cache; their failures are recorded and skipped.
* ``parallel-tab``: all secondary pages are opened up front and every page,
  primary included, navigates and polls concurrently. Each attempt settles on
  its own; the shortfall is judged only after all of them are done.

Secondary pages belong to the controller's ``SecondaryPages`` list and nothing
else. ``close()`` must run on every path.
"""
import time

from browser.browser_utils import USER_AGENT_HEADERS, close_quietly
from browser.connection_probe import describe_state, probe_page, wait_for_connected
from browser.page_monitoring import setup_page_error_logging, setup_websocket_monitoring
from browser.request_classifier import install_request_tracking
from utils.helpers import run_concurrent_with_timeout
from utils.structured_logger import get_logger, LogCategory, LogSource
from workflow.errors import (
    AllConnectionsFailedError,
    ConnectionShortfallError,
    ConnectionTimeoutError,
)
from workflow.outcome import ConnectionResult


class SecondaryPages:
    """Ownership list for pages (and contexts) opened during fan-out."""

    def __init__(self):
        self._pages = []
        self._contexts = []

    def add_page(self, page):
        self._pages.append(page)

    def add_context(self, context):
        self._contexts.append(context)

    def __len__(self):
        return len(self._pages)

    def __iter__(self):
        return iter(list(self._pages))

    async def close_all(self):
        """Close every owned page, then every owned context.

        Errors are swallowed. Calling it again is a no-op because the lists are
        emptied before anything is closed.

        Returns:
            int: number of pages handed to close()
        """
        pages, self._pages = self._pages, []
        contexts, self._contexts = self._contexts, []
        for page in pages:
            await close_quietly(page, "secondary page")
        for context in contexts:
            await close_quietly(context, "secondary browser context")
        return len(pages)


class FanoutController:
    """Establishes and tears down the realtime connections of one virtual user."""

    def __init__(self, vu_context, vu_id=None):
        self.vu_context = vu_context
        self.vu_id = vu_id
        self.pages = SecondaryPages()
        self.results = []
        self.logger = get_logger(vu_id=vu_id, category=LogCategory.FANOUT, source=LogSource.FANOUT)

    async def establish(self, primary_page, context, target_path, desired_count, poll_timeout_ms):
        """Drive ``desired_count`` pages to a connected realtime client.

        Returns:
            tuple of ConnectionResult ordered by page index

        Raises:
            ConnectionTimeoutError: same-page primary did not connect
            AllConnectionsFailedError: no page connected
            ConnectionShortfallError: partial shortfall under the strict policy
        """
        self.results = []
        if self.vu_context.strategy == 'same-page':
            await self._same_page(primary_page, context, target_path, desired_count, poll_timeout_ms)
        else:
            await self._parallel_tabs(primary_page, context, target_path, desired_count, poll_timeout_ms)

        self.results.sort(key=lambda r: r.index)
        results = tuple(self.results)
        connected = sum(1 for r in results if r.connected)
        self.logger.info(f"🎯 Successfully established {connected}/{desired_count} realtime connections",
                         category=LogCategory.METRICS,
                         extra_data={'strategy': self.vu_context.strategy})
        self._apply_partial_policy(results, desired_count)
        return results

    async def close(self):
        closed = await self.pages.close_all()
        if closed:
            self.logger.info(f"Closed {closed} secondary page(s)", category=LogCategory.TEARDOWN)
        return closed

    def _apply_partial_policy(self, results, desired_count):
        connected = sum(1 for r in results if r.connected)
        if connected == 0:
            raise AllConnectionsFailedError(
                f"No realtime connection established (0/{desired_count})",
                results=results, desired=desired_count,
            )
        if connected < desired_count and self.vu_context.partial_policy == 'strict':
            raise ConnectionShortfallError(
                f"Only {connected}/{desired_count} realtime connections established",
                results=results, desired=desired_count,
            )

    async def _same_page(self, primary_page, context, target_path, desired_count, poll_timeout_ms):
        primary = await self._connect_page(primary_page, 0, desired_count, target_path,
                                           poll_timeout_ms, nav_timeout_ms=None)
        self.results.append(primary)
        if not primary.connected:
            raise ConnectionTimeoutError(
                f"Main realtime connection failed: {primary.error}",
                index=0, state=primary.state,
            )

        for index in range(1, desired_count):
            try:
                page = await self._open_secondary_page(context, index, desired_count)
            except Exception as e:
                self.results.append(self._open_failure(index, desired_count, e))
                continue
            result = await self._connect_page(page, index, desired_count, target_path, poll_timeout_ms,
                                              nav_timeout_ms=self.vu_context.secondary_nav_timeout_ms)
            self.results.append(result)

    async def _parallel_tabs(self, primary_page, context, target_path, desired_count, poll_timeout_ms):
        attempts = [(0, primary_page)]
        for index in range(1, desired_count):
            try:
                page = await self._open_secondary_page(context, index, desired_count)
                await install_request_tracking(page, self.vu_context.tracked_fragments)
                await page.set_extra_http_headers(USER_AGENT_HEADERS)
            except Exception as e:
                self.results.append(self._open_failure(index, desired_count, e))
                continue
            attempts.append((index, page))

        coroutines = [
            self._connect_page(
                page, index, desired_count, target_path, poll_timeout_ms,
                nav_timeout_ms=(self.vu_context.primary_nav_timeout_ms if index == 0
                                else self.vu_context.secondary_nav_timeout_ms),
            )
            for index, page in attempts
        ]
        settled = await run_concurrent_with_timeout(coroutines, return_exceptions=True)

        for (index, _page), result in zip(attempts, settled):
            if isinstance(result, BaseException):
                result = ConnectionResult(index=index, connected=False, error=str(result))
            self.results.append(result)

    async def _open_secondary_page(self, context, index, desired_count):
        if self.vu_context.isolate_contexts:
            storage_state = await context.storage_state()
            isolated = await context.browser.new_context(
                storage_state=storage_state,
                base_url=self.vu_context.base_url,
                extra_http_headers=USER_AGENT_HEADERS,
            )
            self.pages.add_context(isolated)
            page = await isolated.new_page()
        else:
            page = await context.new_page()
        self.pages.add_page(page)

        tab_name = f"Page {index + 1}/{desired_count}"
        setup_page_error_logging(page, tab_name, vu_id=self.vu_id)
        setup_websocket_monitoring(page, tab_name, vu_id=self.vu_id)
        return page

    def _open_failure(self, index, desired_count, error):
        self.logger.error(f"❌ Could not open page {index + 1}/{desired_count}: {error}")
        return ConnectionResult(index=index, connected=False, error=f"could not open page: {error}")

    async def _connect_page(self, page, index, desired_count, target_path, poll_timeout_ms, nav_timeout_ms):
        """Navigate (unless ``nav_timeout_ms`` is None) and poll one page. Never raises."""
        label = f"{index + 1}/{desired_count}"
        logger = self.logger.with_context(tab_name=f"Page {label}", category=LogCategory.WEBSOCKET)
        start = time.monotonic()
        try:
            if nav_timeout_ms is not None:
                await page.goto(target_path, wait_until="domcontentloaded", timeout=nav_timeout_ms)
            await wait_for_connected(page, poll_timeout_ms, self.vu_context.poll_interval_ms, index=index)
        except ConnectionTimeoutError as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(f"❌ Realtime connection failed: {e}")
            return ConnectionResult(index=index, connected=False, elapsed_ms=elapsed_ms,
                                    error=str(e), state=e.state)
        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            state = describe_state(await probe_page(page))
            logger.warning(f"❌ Realtime connection failed: {e}. Echo state: {state}")
            return ConnectionResult(index=index, connected=False, elapsed_ms=elapsed_ms,
                                    error=str(e), state=state)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info("✅ Realtime connection connected",
                    extra_data={'elapsed_ms': round(elapsed_ms, 1)})
        return ConnectionResult(index=index, connected=True, elapsed_ms=elapsed_ms, state="connected")
