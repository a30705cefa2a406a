"""
Structured logging utility with categories, sources, virtual user, and page context.
"""
import logging
import json
from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum


class LogCategory(Enum):
    """Log categories for better organization."""
    AUTH = "auth"
    NAVIGATION = "navigation"
    WEBSOCKET = "websocket"
    FANOUT = "fanout"
    TEARDOWN = "teardown"
    REQUEST = "request"
    SESSION = "session"
    ERROR = "error"
    SYSTEM = "system"
    CONFIG = "config"
    METRICS = "metrics"


class LogSource(Enum):
    """Source of the log entry."""
    RUNNER = "runner"
    WORKFLOW = "workflow"
    AUTHENTICATOR = "authenticator"
    FANOUT = "fanout"
    PROBER = "prober"
    CLASSIFIER = "classifier"
    PAGE_MONITOR = "page_monitor"
    TRACKER = "tracker"
    API = "api"
    UTILS = "utils"


class StructuredLogger:
    """Structured logger with context information."""

    def __init__(
        self,
        logger_name: str = "realtime_load",
        vu_id: Optional[str] = None,
        session_id: Optional[str] = None,
        tab_name: Optional[str] = None,
        category: Optional[LogCategory] = None,
        source: Optional[LogSource] = None
    ):
        """
        Initialize structured logger with context.

        Args:
            logger_name: Name of the logger
            vu_id: Virtual user identifier for context
            session_id: Session ID for context
            tab_name: Page name for context (e.g. "Page 2/4")
            category: Log category
            source: Log source
        """
        self.logger = logging.getLogger(logger_name)
        self.vu_id = vu_id
        self.session_id = session_id
        self.tab_name = tab_name
        self.category = category
        self.source = source

    def _format_message(
        self,
        message: str,
        category: Optional[LogCategory] = None,
        source: Optional[LogSource] = None,
        extra_data: Optional[Dict[str, Any]] = None
    ) -> str:
        """Format message with structured context."""
        category = category or self.category
        source = source or self.source

        context_parts = []
        if category:
            context_parts.append(f"[CAT:{category.value.upper()}]")
        if source:
            context_parts.append(f"[SRC:{source.value.upper()}]")
        if self.vu_id:
            context_parts.append(f"[VU:{self.vu_id}]")
        if self.session_id:
            context_parts.append(f"[SESSION:{self.session_id}]")
        if self.tab_name:
            context_parts.append(f"[TAB:{self.tab_name}]")

        context_str = " ".join(context_parts)
        formatted_message = f"{context_str} {message}" if context_str else message

        if extra_data:
            try:
                data_str = json.dumps(extra_data, default=str)
            except (TypeError, ValueError):
                data_str = str(extra_data)
            formatted_message += f" | DATA: {data_str}"

        return formatted_message

    def info(self, message: str, category: Optional[LogCategory] = None,
             source: Optional[LogSource] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log info message with context."""
        self.logger.info(self._format_message(message, category, source, extra_data))

    def warning(self, message: str, category: Optional[LogCategory] = None,
                source: Optional[LogSource] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log warning message with context."""
        self.logger.warning(self._format_message(message, category, source, extra_data))

    def debug(self, message: str, category: Optional[LogCategory] = None,
              source: Optional[LogSource] = None, extra_data: Optional[Dict[str, Any]] = None):
        """Log debug message with context."""
        self.logger.debug(self._format_message(message, category, source, extra_data))

    def error(self, message: str, category: Optional[LogCategory] = None,
              source: Optional[LogSource] = None, extra_data: Optional[Dict[str, Any]] = None,
              exc_info: bool = False):
        """Log error message with context."""
        self.logger.error(self._format_message(message, category, source, extra_data), exc_info=exc_info)

    def with_context(
        self,
        vu_id: Optional[str] = None,
        session_id: Optional[str] = None,
        tab_name: Optional[str] = None,
        category: Optional[LogCategory] = None,
        source: Optional[LogSource] = None
    ) -> 'StructuredLogger':
        """
        Create a new logger instance with updated context.

        Returns:
            New StructuredLogger instance with updated context
        """
        return StructuredLogger(
            logger_name=self.logger.name,
            vu_id=vu_id or self.vu_id,
            session_id=session_id or self.session_id,
            tab_name=tab_name or self.tab_name,
            category=category or self.category,
            source=source or self.source
        )


def setup_structured_logging(log_file: Optional[str] = None, level: int = logging.INFO):
    """
    Setup structured logging with console and file handlers.

    Args:
        log_file: Optional log file path (auto-generated if None)
        level: Root log level

    Returns:
        The log file path in use
    """
    if log_file is None:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        log_file = f"load_test_{timestamp}.log"

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    try:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"[CAT:SYSTEM] [SRC:UTILS] Logging initialized | DATA: {json.dumps({'log_file': log_file})}")
    except OSError as e:
        logger.warning(f"[CAT:SYSTEM] [SRC:UTILS] Could not setup file logging: {e}")

    return log_file


def get_logger(
    vu_id: Optional[str] = None,
    session_id: Optional[str] = None,
    tab_name: Optional[str] = None,
    category: Optional[LogCategory] = None,
    source: Optional[LogSource] = None
) -> StructuredLogger:
    """
    Get a structured logger with context.

    Args:
        vu_id: Virtual user identifier for context
        session_id: Session ID for context
        tab_name: Page name for context
        category: Log category
        source: Log source

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(
        vu_id=vu_id,
        session_id=session_id,
        tab_name=tab_name,
        category=category,
        source=source
    )


def log_error(
    message: str,
    vu_id: Optional[str] = None,
    tab_name: Optional[str] = None,
    category: Optional[LogCategory] = None,
    source: Optional[LogSource] = None,
    extra_data: Optional[Dict[str, Any]] = None,
    exc_info: bool = False
):
    """Log error message with full context and record it as a session event."""
    logger = get_logger(
        vu_id=vu_id,
        tab_name=tab_name,
        category=category or LogCategory.ERROR,
        source=source
    )
    logger.error(message, extra_data=extra_data, exc_info=exc_info)

    from reporting.csv_reporter import log_session_event
    log_session_event(
        vu_id or '',
        'ERROR',
        message,
        error=message,
        stage=(category or LogCategory.ERROR).value,
        tab_name=tab_name or '',
    )
