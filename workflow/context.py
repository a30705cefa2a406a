"""
Per-run configuration for one virtual user.
"""
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

from config import (
    WORKFLOW_DEFAULTS,
    FANOUT_STRATEGIES,
    PARTIAL_POLICIES,
    PRIMARY_NAV_TIMEOUT_MS,
    SECONDARY_NAV_TIMEOUT_MS,
)
from utils.helpers import parse_bool, parse_int
from workflow.errors import ConfigurationError


@dataclass(frozen=True)
class VirtualUserContext:
    """Immutable configuration bag owned by a single workflow run."""
    base_url: Optional[str]
    auth_url: str
    personal_path: str
    cookie_name: str
    echo_timeout_ms: int
    connections_per_instance: int
    think_time_ms: int
    strategy: str
    partial_policy: str
    isolate_contexts: bool
    screenshot_dir: str
    poll_interval_ms: int
    primary_nav_timeout_ms: int = PRIMARY_NAV_TIMEOUT_MS
    secondary_nav_timeout_ms: int = SECONDARY_NAV_TIMEOUT_MS

    @property
    def auth_path(self) -> str:
        """Path of the auth URL without query string, used to spot auth requests."""
        path = urlparse(self.auth_url).path or self.auth_url
        # "/auth/magic-login" -> "/auth" so every auth endpoint is tracked
        segments = [s for s in path.split('/') if s]
        return f"/{segments[0]}" if segments else path

    @property
    def tracked_fragments(self) -> Tuple[str, ...]:
        return (self.personal_path, self.auth_path)

    @classmethod
    def from_vu_context(cls, vu_context):
        """Build from a ``{"vars": {...}, "config": {"target": ...}}`` bag.

        Missing or blank keys fall back to ``WORKFLOW_DEFAULTS``.

        Raises:
            ConfigurationError: if a value cannot be coerced
        """
        vu_context = vu_context or {}
        run_vars = dict(WORKFLOW_DEFAULTS)
        # Blank values (e.g. "KEY=" in an env file) mean "use the default"
        run_vars.update({
            k: v for k, v in (vu_context.get('vars') or {}).items()
            if v is not None and str(v).strip() != ''
        })
        base_url = (vu_context.get('config') or {}).get('target') or None

        try:
            connections = parse_int(run_vars['CONNECTIONS_PER_INSTANCE'], 'CONNECTIONS_PER_INSTANCE')
            echo_timeout_ms = parse_int(run_vars['ECHO_TIMEOUT_MS'], 'ECHO_TIMEOUT_MS')
            think_time_ms = parse_int(run_vars['THINK_TIME_MS'], 'THINK_TIME_MS')
            poll_interval_ms = parse_int(run_vars['POLL_INTERVAL_MS'], 'POLL_INTERVAL_MS')
            isolate_contexts = parse_bool(run_vars['ISOLATE_CONTEXTS'], 'ISOLATE_CONTEXTS')
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if connections < 1:
            raise ConfigurationError(f"CONNECTIONS_PER_INSTANCE must be >= 1, got {connections}")
        if echo_timeout_ms <= 0 or poll_interval_ms <= 0:
            raise ConfigurationError("ECHO_TIMEOUT_MS and POLL_INTERVAL_MS must be positive")
        if think_time_ms < 0:
            raise ConfigurationError(f"THINK_TIME_MS must be >= 0, got {think_time_ms}")

        strategy = str(run_vars['FANOUT_STRATEGY']).strip().lower()
        if strategy not in FANOUT_STRATEGIES:
            raise ConfigurationError(
                f"FANOUT_STRATEGY must be one of {', '.join(FANOUT_STRATEGIES)}, got {strategy!r}"
            )
        partial_policy = str(run_vars['PARTIAL_POLICY']).strip().lower()
        if partial_policy not in PARTIAL_POLICIES:
            raise ConfigurationError(
                f"PARTIAL_POLICY must be one of {', '.join(PARTIAL_POLICIES)}, got {partial_policy!r}"
            )

        auth_url = run_vars.get('AUTH_URL')
        if not auth_url:
            auth_path = run_vars['AUTH_PATH']
            auth_url = urljoin(base_url, auth_path) if base_url else auth_path

        return cls(
            base_url=base_url,
            auth_url=auth_url,
            personal_path=run_vars['PERSONAL_PATH'],
            cookie_name=str(run_vars['COOKIE_NAME']).lower(),
            echo_timeout_ms=echo_timeout_ms,
            connections_per_instance=connections,
            think_time_ms=think_time_ms,
            strategy=strategy,
            partial_policy=partial_policy,
            isolate_contexts=isolate_contexts,
            screenshot_dir=run_vars['SCREENSHOT_DIR'],
            poll_interval_ms=poll_interval_ms,
        )
