"""
Navigation helpers that turn page steps into results instead of exceptions.
"""
from dataclasses import dataclass
from typing import Optional

from config import USER_AGENT
from utils.structured_logger import get_logger, LogCategory, LogSource

USER_AGENT_HEADERS = {"User-Agent": USER_AGENT}

_logger = get_logger(category=LogCategory.NAVIGATION, source=LogSource.UTILS)


@dataclass(frozen=True)
class StepResult:
    """Outcome of one navigation step; a failed step is a transient fault."""
    step: str
    ok: bool
    fault: Optional[str] = None

    @classmethod
    def success(cls, step):
        return cls(step=step, ok=True)

    @classmethod
    def failure(cls, step, fault):
        return cls(step=step, ok=False, fault=str(fault))


async def goto_step(page, url, step, timeout_ms, wait_until="domcontentloaded"):
    """Navigate ``page`` to ``url`` and report the outcome as a ``StepResult``."""
    try:
        await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        return StepResult.success(step)
    except Exception as e:
        _logger.warning(f"{step}: navigation to {url} failed: {e}")
        return StepResult.failure(step, e)


async def wait_for_load_step(page, step, timeout_ms, state="load"):
    """Wait for a load milestone; not reaching it is a tolerated fault."""
    try:
        await page.wait_for_load_state(state, timeout=timeout_ms)
        return StepResult.success(step)
    except Exception as e:
        _logger.debug(f"{step}: '{state}' not reached within {timeout_ms}ms: {e}")
        return StepResult.failure(step, e)


async def close_quietly(closeable, label="page"):
    """Best-effort close of a Page or BrowserContext. Errors are logged and dropped.

    Returns:
        bool: True if close() completed without error
    """
    try:
        await closeable.close()
        return True
    except Exception as e:
        _logger.debug(f"Ignoring error while closing {label}: {e}", category=LogCategory.TEARDOWN)
        return False
