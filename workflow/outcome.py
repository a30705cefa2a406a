"""
Result records produced by a virtual user run.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple, Dict, Any


@dataclass(frozen=True)
class ConnectionResult:
    """Outcome of one page's navigate + poll attempt."""
    index: int
    connected: bool
    elapsed_ms: float = 0.0
    error: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class AuthDiagnostics:
    """Forensic evidence captured when the authentication ladder is exhausted."""
    screenshot_path: Optional[str]
    cookies: Tuple[str, ...] = ()
    attempts: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class RunOutcome:
    """Immutable result of one virtual user run, handed to reporting."""
    vu_id: str
    strategy: str
    desired: int
    connections: Tuple[ConnectionResult, ...] = ()
    elapsed_s: float = 0.0
    diagnostics: Optional[AuthDiagnostics] = None
    error: Optional[str] = None
    completed_at: Optional[str] = field(default=None, compare=False)

    @property
    def successes(self) -> int:
        return sum(1 for c in self.connections if c.connected)

    @property
    def failures(self) -> int:
        return sum(1 for c in self.connections if not c.connected)

    @property
    def shortfall(self) -> int:
        return max(0, self.desired - self.successes)

    @property
    def ok(self) -> bool:
        """True when the run finished without a terminal error."""
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vu_id': self.vu_id,
            'strategy': self.strategy,
            'desired': self.desired,
            'successes': self.successes,
            'failures': self.failures,
            'shortfall': self.shortfall,
            'elapsed_s': round(self.elapsed_s, 3),
            'ok': self.ok,
            'error': self.error,
            'completed_at': self.completed_at,
            'connections': [
                {
                    'index': c.index,
                    'connected': c.connected,
                    'elapsed_ms': round(c.elapsed_ms, 1),
                    'error': c.error,
                    'state': c.state,
                }
                for c in self.connections
            ],
            'diagnostics': None if self.diagnostics is None else {
                'screenshot_path': self.diagnostics.screenshot_path,
                'cookies': list(self.diagnostics.cookies),
                'attempts': [
                    {'step': a.step, 'ok': a.ok, 'fault': a.fault}
                    for a in self.diagnostics.attempts
                ],
            },
        }
