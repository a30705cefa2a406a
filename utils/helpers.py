"""
Helper utility functions for the realtime connection load test.
"""
import asyncio


_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off', ''}


def parse_int(value, name):
    """Coerce a config value (int or numeric string) to int.

    Raises:
        ValueError: if the value is not an integer
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip(), 10)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def parse_bool(value, name):
    """Coerce a config value ("true", "0", True...) to bool."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


async def run_concurrent_with_timeout(coroutines, timeout=None, return_exceptions=True):
    """Run multiple coroutines concurrently with optional timeout.

    Tasks are created up front so every coroutine starts immediately. With
    ``return_exceptions`` one failure never cancels its siblings.

    Args:
        coroutines: List of coroutines to run
        timeout: Optional timeout in seconds for the whole group
        return_exceptions: If True, exceptions are returned as results

    Returns:
        List of results in the same order as ``coroutines``
    """
    tasks = [asyncio.create_task(coro) for coro in coroutines]

    if timeout:
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=return_exceptions),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            # Cancel all tasks on timeout
            for task in tasks:
                if not task.done():
                    task.cancel()
            raise
    else:
        results = await asyncio.gather(*tasks, return_exceptions=return_exceptions)

    return results
