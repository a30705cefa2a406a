"""
Page monitoring utilities for realtime sockets and page errors.
"""
from datetime import datetime

from shared_state import PAGE_ERRORS
from utils.structured_logger import get_logger, LogCategory, LogSource


def _timestamp():
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]


def setup_websocket_monitoring(page, tab_name, vu_id=None):
    """Log WebSocket lifecycle events seen by a page.

    Args:
        page: Page object to monitor
        tab_name: Name of the page for logging
        vu_id: Optional virtual user identifier for logging

    Returns:
        dict: live counters ``opened``, ``closed``, ``errors``
    """
    logger = get_logger(vu_id=vu_id, tab_name=tab_name,
                        category=LogCategory.WEBSOCKET, source=LogSource.PAGE_MONITOR)
    counters = {'opened': 0, 'closed': 0, 'errors': 0}

    def handle_websocket(ws):
        counters['opened'] += 1
        logger.info(f"WebSocket opened: {ws.url}")

        def handle_close(_ws):
            counters['closed'] += 1
            logger.info(f"WebSocket closed: {ws.url}")

        def handle_socket_error(error):
            counters['errors'] += 1
            logger.warning(f"WebSocket error on {ws.url}: {error}")

        ws.on('close', handle_close)
        ws.on('socketerror', handle_socket_error)

    try:
        page.on('websocket', handle_websocket)
    except Exception as e:
        logger.warning(f"Failed to setup WebSocket monitoring: {e}")

    return counters


def setup_page_error_logging(page, tab_name, vu_id=None):
    """Setup error and console logging for a page.

    Args:
        page: Page object to monitor
        tab_name: Name of the page for logging
        vu_id: Optional virtual user identifier for logging
    """
    logger = get_logger(vu_id=vu_id, tab_name=tab_name,
                        category=LogCategory.ERROR, source=LogSource.PAGE_MONITOR)

    def record(error_type, message, **extra):
        PAGE_ERRORS.append({
            'type': error_type,
            'message': message,
            'tab_name': tab_name,
            'vu_id': vu_id or '',
            'timestamp': _timestamp(),
            **extra
        })

    def handle_console(msg):
        if msg.type == 'error':
            logger.error(f"[CONSOLE ERROR] {msg.text}")
            record('CONSOLE_ERROR', msg.text)
        elif msg.type == 'warning':
            logger.warning(f"[CONSOLE WARNING] {msg.text}")
            record('CONSOLE_WARNING', msg.text)

    def handle_page_error(error):
        logger.error(f"[PAGE ERROR] {error}")
        record('PAGE_ERROR', str(error))

    def handle_request_failed(request):
        failure = request.failure
        error_text = str(failure) if failure else 'Unknown failure'
        logger.warning(f"[REQUEST FAILED] {request.method} {request.url}: {error_text}")
        record('REQUEST_FAILED', f"{request.method} {request.url} - {error_text}",
               url=request.url, method=request.method)

    try:
        page.on('console', handle_console)
        page.on('pageerror', handle_page_error)
        page.on('requestfailed', handle_request_failed)
        logger.debug("Page error logging setup completed")
    except Exception as e:
        logger.warning(f"Failed to setup page error logging: {e}")
