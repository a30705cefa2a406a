"""
Exceptions raised by the virtual user workflow.

Only terminal outcomes are raised to the caller. Transient navigation faults
are carried as ``StepResult`` values and never show up here.
"""


class WorkflowError(Exception):
    """Base class for terminal workflow failures.

    ``outcome`` is filled in by the workflow with the partial ``RunOutcome``
    before the error leaves ``run_virtual_user``.
    """

    def __init__(self, message, outcome=None):
        super().__init__(message)
        self.outcome = outcome


class ConfigurationError(WorkflowError):
    """A per-run configuration value is missing or malformed."""


class AuthExhaustedError(WorkflowError):
    """Every rung of the authentication ladder ran without a session cookie."""

    def __init__(self, message, diagnostics=None, outcome=None):
        super().__init__(message, outcome=outcome)
        self.diagnostics = diagnostics


class NavigationError(WorkflowError):
    """The primary page could not reach the target content path."""


class ConnectionTimeoutError(WorkflowError):
    """A page did not report a connected realtime client in time."""

    def __init__(self, message, index=0, state=None, outcome=None):
        super().__init__(message, outcome=outcome)
        self.index = index
        self.state = state


class ConnectionShortfallError(WorkflowError):
    """Fewer realtime connections than desired, raised after all attempts settled."""

    def __init__(self, message, results=(), desired=0, outcome=None):
        super().__init__(message, outcome=outcome)
        self.results = tuple(results)
        self.desired = desired

    @property
    def connected(self):
        return sum(1 for r in self.results if r.connected)


class AllConnectionsFailedError(ConnectionShortfallError):
    """Not a single realtime connection could be established."""
