"""
Shared pytest fixtures and browser fakes for the workflow tests.

The fakes implement only the slice of the Playwright Page / BrowserContext
API the workflow touches, and record what happened to them (navigations,
closes, screenshots) so tests can assert on it without a real browser.
"""
import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import shared_state

CONNECTED_SNAPSHOT = {'pusher': {'connection': {'state': 'connected'}}, 'connector': True}
CONNECTING_SNAPSHOT = {'pusher': {'connection': {'state': 'connecting'}}, 'connector': True}

SESSION_COOKIE = {'name': 'laravel_session', 'domain': '.example.test', 'sameSite': 'Lax', 'secure': True}
XSRF_COOKIE = {'name': 'XSRF-TOKEN', 'domain': '.example.test', 'sameSite': 'Lax', 'secure': True}


class FakePage:
    def __init__(self, context, snapshot=CONNECTED_SNAPSHOT, goto_error=None, close_error=None):
        self.context = context
        self.snapshot = snapshot
        self.goto_error = goto_error
        self.close_error = close_error
        self.visited = []
        self.routes = []
        self.extra_headers = {}
        self.listeners = {}
        self.close_count = 0

    async def goto(self, url, wait_until=None, timeout=None):
        self.context.navigations.append(url)
        self.visited.append(url)
        error = self.context.goto_errors.get(len(self.context.navigations)) or self.goto_error
        if error:
            raise error

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def evaluate(self, script):
        if isinstance(self.snapshot, Exception):
            raise self.snapshot
        return self.snapshot

    async def screenshot(self, path=None, full_page=False):
        self.context.screenshots.append(path)
        return b""

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def set_extra_http_headers(self, headers):
        self.extra_headers.update(headers)

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    async def close(self):
        self.close_count += 1
        if self.close_error:
            raise self.close_error


class FakeBrowser:
    def __init__(self, parent):
        self.parent = parent
        self.contexts = []

    async def new_context(self, **kwargs):
        context = FakeContext(
            cookie_after_navigation=self.parent.cookie_after_navigation,
            page_snapshots=self.parent.page_snapshots,
        )
        context.navigations = self.parent.navigations
        context.new_context_kwargs = kwargs
        self.contexts.append(context)
        return context


class FakeContext:
    """Cookie jar yields a session cookie once ``cookie_after_navigation`` navigations happened."""

    def __init__(self, cookie_after_navigation=1, page_snapshots=None, goto_errors=None,
                 new_page_errors=None):
        self.cookie_after_navigation = cookie_after_navigation
        self.page_snapshots = list(page_snapshots or [])
        self.goto_errors = dict(goto_errors or {})
        self.new_page_errors = set(new_page_errors or ())
        self.navigations = []
        self.screenshots = []
        self.pages = []
        self.extra_headers = {}
        self.routes = []
        self.close_count = 0
        self.browser = FakeBrowser(self)

    async def cookies(self):
        if (self.cookie_after_navigation is not None
                and len(self.navigations) >= self.cookie_after_navigation):
            return [XSRF_COOKIE, SESSION_COOKIE]
        return [XSRF_COOKIE]

    async def new_page(self):
        page_number = len(self.pages) + 1
        if page_number in self.new_page_errors:
            self.pages.append(None)
            raise RuntimeError("Target page, context or browser has been closed")
        snapshot = self.page_snapshots.pop(0) if self.page_snapshots else CONNECTED_SNAPSHOT
        page = FakePage(self, snapshot=snapshot)
        self.pages.append(page)
        return page

    def primary_page(self, snapshot=CONNECTED_SNAPSHOT):
        return FakePage(self, snapshot=snapshot)

    async def set_extra_http_headers(self, headers):
        self.extra_headers.update(headers)

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def storage_state(self):
        return {'cookies': await self.cookies(), 'origins': []}

    async def close(self):
        self.close_count += 1


def timeout_error(message="Timeout 60000ms exceeded."):
    return PlaywrightTimeoutError(message)


@pytest.fixture(autouse=True)
def clear_shared_state():
    """Keep module-level report lists from leaking between tests."""
    shared_state.RUN_OUTCOMES.clear()
    shared_state.PAGE_ERRORS.clear()
    shared_state.SESSION_LOGS.clear()
    yield
    shared_state.RUN_OUTCOMES.clear()
    shared_state.PAGE_ERRORS.clear()
    shared_state.SESSION_LOGS.clear()


@pytest.fixture
def fast_vars(tmp_path):
    """Workflow vars with short timeouts so polling tests finish quickly."""
    return {
        'ECHO_TIMEOUT_MS': '60',
        'POLL_INTERVAL_MS': '5',
        'THINK_TIME_MS': '0',
        'SCREENSHOT_DIR': str(tmp_path / 'screenshots'),
    }
