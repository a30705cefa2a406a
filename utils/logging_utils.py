"""
Logging utilities for the realtime connection load test.
"""
import logging
import os
from datetime import datetime

from utils.structured_logger import setup_structured_logging

# Global logging configuration
LOG_FILENAME = None  # Will be set on first setup
LOG_DIR = "logs"


def setup_logging(verbose=False):
    """Setup logging to both console and file.

    Safe to call more than once; the log file name is fixed on the first call
    so a run never spreads over several files.
    """
    global LOG_FILENAME

    if LOG_FILENAME is None:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        os.makedirs(LOG_DIR, exist_ok=True)
        LOG_FILENAME = os.path.join(LOG_DIR, f"load_test_{timestamp}.log")

    level = logging.DEBUG if verbose else logging.INFO
    setup_structured_logging(LOG_FILENAME, level=level)
    logging.info(f"📝 Logging to file: {LOG_FILENAME}")
    return LOG_FILENAME
