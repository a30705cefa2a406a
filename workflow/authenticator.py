"""
Session authentication ladder.

Session establishment is flaky because the session cookie can take a moment
to propagate across same-site boundaries. The ladder spends extra navigations
before declaring failure:

    Attempt1 -> SameSiteHop (only with a base URL) -> Attempt2 (refresh) -> Failed

The first rung after which a session cookie is present ends the ladder.
Navigation faults on any rung are recorded, never raised.
"""
import os
import time

from config import PRIMARY_NAV_TIMEOUT_MS, HOP_NAV_TIMEOUT_MS, LOAD_STATE_TIMEOUT_MS
from browser.browser_utils import goto_step, wait_for_load_step
from utils.structured_logger import get_logger, LogCategory, LogSource
from workflow.errors import AuthExhaustedError
from workflow.outcome import AuthDiagnostics

SCREENSHOT_PREFIX = "auth-failed-"


def format_cookie(cookie):
    return (f"{cookie.get('name')}@{cookie.get('domain')}; "
            f"samesite={cookie.get('sameSite')}; secure={cookie.get('secure')}")


class SessionAuthenticator:
    """Runs the authentication ladder for one virtual user's primary page."""

    def __init__(self, page, vu_context, vu_id=None):
        self.page = page
        self.vu_context = vu_context
        self.logger = get_logger(vu_id=vu_id, category=LogCategory.AUTH,
                                 source=LogSource.AUTHENTICATOR)

    def _rungs(self):
        rungs = [('attempt_1', self._auth_attempt)]
        if self.vu_context.base_url:
            rungs.append(('same_site_hop', self._same_site_hop))
        rungs.append(('attempt_2_refresh', self._auth_attempt))
        return rungs

    async def authenticate(self):
        """Walk the ladder until a session cookie appears.

        Returns:
            tuple of StepResult, one per rung taken

        Raises:
            AuthExhaustedError: no rung produced a session cookie
        """
        attempts = []
        for name, rung in self._rungs():
            result = await rung(name)
            attempts.append(result)
            if await self.has_session_cookie():
                self.logger.info(f"Session cookie present after {name}",
                                 extra_data={'rungs': len(attempts)})
                return tuple(attempts)
            self.logger.warning(f"No session cookie after {name}",
                                extra_data={'ok': result.ok, 'fault': result.fault})

        await self._fail(tuple(attempts))

    async def _auth_attempt(self, name):
        result = await goto_step(self.page, self.vu_context.auth_url, name, PRIMARY_NAV_TIMEOUT_MS)
        if result.ok:
            # Not reaching "load" in time is tolerated; the cookie check decides.
            await wait_for_load_step(self.page, name, LOAD_STATE_TIMEOUT_MS)
        return result

    async def _same_site_hop(self, name):
        return await goto_step(self.page, self.vu_context.base_url, name, HOP_NAV_TIMEOUT_MS)

    async def session_cookies(self):
        return await self.page.context.cookies()

    async def has_session_cookie(self):
        """False when the jar cannot be read, so the ladder moves on."""
        fragment = self.vu_context.cookie_name
        try:
            cookies = await self.session_cookies()
        except Exception as e:
            self.logger.warning(f"Could not read cookies: {e}")
            return False
        for cookie in cookies:
            name = (cookie.get('name') or '').lower()
            if fragment in name or 'session' in name:
                return True
        return False

    async def capture_screenshot(self):
        os.makedirs(self.vu_context.screenshot_dir, exist_ok=True)
        path = os.path.join(self.vu_context.screenshot_dir,
                            f"{SCREENSHOT_PREFIX}{int(time.time() * 1000)}.png")
        try:
            await self.page.screenshot(path=path, full_page=True)
            return path
        except Exception as e:
            self.logger.warning(f"Could not capture auth failure screenshot: {e}")
            return None

    async def _fail(self, attempts):
        screenshot_path = await self.capture_screenshot()
        try:
            cookies = tuple(format_cookie(c) for c in await self.session_cookies())
        except Exception as e:
            cookies = ()
            self.logger.warning(f"Could not read cookies for diagnostics: {e}")

        self.logger.error("Auth cookies after retry", extra_data={
            'cookies': list(cookies),
            'screenshot': screenshot_path,
        })
        diagnostics = AuthDiagnostics(
            screenshot_path=screenshot_path,
            cookies=cookies,
            attempts=attempts,
        )
        raise AuthExhaustedError(
            "Auth failed even after refresh fallback (no session cookie found).",
            diagnostics=diagnostics,
        )
