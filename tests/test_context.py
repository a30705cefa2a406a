"""Tests for per-run configuration parsing (workflow/context.py, utils/helpers.py)"""
import pytest

from config import WORKFLOW_DEFAULTS
from utils.helpers import parse_bool, parse_int
from workflow.context import VirtualUserContext
from workflow.errors import ConfigurationError


def build(run_vars=None, target="https://app.test"):
    return VirtualUserContext.from_vu_context({'vars': run_vars or {}, 'config': {'target': target}})


def test_defaults_apply_when_vars_are_empty():
    ctx = build()
    assert ctx.personal_path == WORKFLOW_DEFAULTS['PERSONAL_PATH']
    assert ctx.connections_per_instance == 4
    assert ctx.echo_timeout_ms == 20000
    assert ctx.think_time_ms == 30000
    assert ctx.strategy == 'parallel-tab'
    assert ctx.partial_policy == 'degraded'
    assert ctx.isolate_contexts is False


def test_string_values_are_coerced():
    ctx = build({
        'CONNECTIONS_PER_INSTANCE': '6',
        'ECHO_TIMEOUT_MS': ' 1500 ',
        'THINK_TIME_MS': '0',
        'ISOLATE_CONTEXTS': 'yes',
        'FANOUT_STRATEGY': 'Same-Page',
        'PARTIAL_POLICY': 'STRICT',
    })
    assert ctx.connections_per_instance == 6
    assert ctx.echo_timeout_ms == 1500
    assert ctx.think_time_ms == 0
    assert ctx.isolate_contexts is True
    assert ctx.strategy == 'same-page'
    assert ctx.partial_policy == 'strict'


def test_none_values_fall_back_to_defaults():
    assert build({'CONNECTIONS_PER_INSTANCE': None}).connections_per_instance == 4


def test_blank_values_fall_back_to_defaults():
    ctx = build({
        'COOKIE_NAME': '',
        'ECHO_TIMEOUT_MS': '',
        'CONNECTIONS_PER_INSTANCE': '  ',
        'FANOUT_STRATEGY': '',
        'AUTH_URL': '',
    })
    assert ctx.cookie_name == 'laravel_session'
    assert ctx.echo_timeout_ms == 20000
    assert ctx.connections_per_instance == 4
    assert ctx.strategy == 'parallel-tab'
    assert ctx.auth_url == "https://app.test/auth/magic-login?token=dev"


def test_auth_url_derived_from_base():
    assert build().auth_url == "https://app.test/auth/magic-login?token=dev"


def test_explicit_auth_url_wins():
    ctx = build({'AUTH_URL': "https://sso.test/login"})
    assert ctx.auth_url == "https://sso.test/login"
    assert ctx.auth_path == "/login"


def test_auth_url_without_base_is_relative():
    ctx = build(target=None)
    assert ctx.base_url is None
    assert ctx.auth_url == "/auth/magic-login?token=dev"


def test_tracked_fragments_are_content_and_auth_paths():
    assert build().tracked_fragments == ('/personal-designs', '/auth')


def test_missing_bag_uses_defaults():
    ctx = VirtualUserContext.from_vu_context(None)
    assert ctx.base_url is None
    assert ctx.connections_per_instance == 4


@pytest.mark.parametrize("run_vars", [
    {'CONNECTIONS_PER_INSTANCE': 'four'},
    {'CONNECTIONS_PER_INSTANCE': '0'},
    {'CONNECTIONS_PER_INSTANCE': True},
    {'ECHO_TIMEOUT_MS': '-5'},
    {'POLL_INTERVAL_MS': '0'},
    {'THINK_TIME_MS': '-1'},
    {'ISOLATE_CONTEXTS': 'maybe'},
    {'FANOUT_STRATEGY': 'threads'},
    {'PARTIAL_POLICY': 'lenient'},
])
def test_invalid_values_raise_configuration_error(run_vars):
    with pytest.raises(ConfigurationError):
        build(run_vars)


def test_context_is_immutable():
    ctx = build()
    with pytest.raises(AttributeError):
        ctx.connections_per_instance = 9


@pytest.mark.parametrize("value, expected", [(3, 3), ("12", 12), (" 7", 7)])
def test_parse_int(value, expected):
    assert parse_int(value, "X") == expected


@pytest.mark.parametrize("value, expected", [
    (True, True), ("1", True), ("On", True), ("false", False), ("", False), (False, False),
])
def test_parse_bool(value, expected):
    assert parse_bool(value, "X") is expected
