"""
Shared state module for data collected across virtual users for reporting.
Browser pages are never stored here; each workflow run owns its own pages.
"""

# Global list of RunOutcome objects recorded by the load runner
RUN_OUTCOMES = []

# Global list to store page errors and warnings for CSV
PAGE_ERRORS = []

# Global list to store session-level logs and errors for CSV
SESSION_LOGS = []
