"""Tests for the realtime connection state prober (browser/connection_probe.py)"""
import pytest

from browser.connection_probe import (
    ConnectionShape,
    describe_state,
    is_connected,
    read_connection_state,
    wait_for_connected,
)
from workflow.errors import ConnectionTimeoutError
from conftest import FakeContext, CONNECTED_SNAPSHOT, CONNECTING_SNAPSHOT


# ============================================================================
# SHAPE REDUCTION
# ============================================================================

class TestIsConnected:
    """Each known client shape maps to one boolean"""

    @pytest.mark.parametrize("state, expected", [
        ("connected", True),
        ("connecting", False),
        ("unavailable", False),
        ("disconnected", False),
    ])
    def test_pusher_shape(self, state, expected):
        snapshot = {'pusher': {'connection': {'state': state}}, 'connector': True}
        assert is_connected(snapshot) is expected

    @pytest.mark.parametrize("connected, expected", [(True, True), (False, False)])
    def test_socket_shape(self, connected, expected):
        snapshot = {'socket': {'connected': connected}, 'connector': True}
        assert is_connected(snapshot) is expected

    @pytest.mark.parametrize("state, expected", [("connected", True), ("closed", False)])
    def test_generic_shape(self, state, expected):
        snapshot = {'connection': {'state': state}, 'connector': True}
        assert is_connected(snapshot) is expected

    @pytest.mark.parametrize("snapshot", [
        None,
        {},
        {'connector': True},
        {'socket': {'connected': 'yes'}, 'connector': True},
        {'connection': {'state': 7}, 'connector': True},
        "garbage",
        42,
        {'pusher': None, 'socket': None, 'connector': True},
    ])
    def test_missing_or_unknown_is_not_connected(self, snapshot):
        assert is_connected(snapshot) is False

    def test_pusher_checked_before_socket(self):
        """A disconnected pusher wins over a connected socket flag"""
        snapshot = {
            'pusher': {'connection': {'state': 'connecting'}},
            'socket': {'connected': True},
            'connector': True,
        }
        assert read_connection_state(snapshot).shape is ConnectionShape.PUSHER
        assert is_connected(snapshot) is False

    def test_empty_pusher_state_falls_through_to_socket(self):
        snapshot = {'pusher': {'connection': {'state': ''}}, 'socket': {'connected': True}, 'connector': True}
        assert read_connection_state(snapshot).shape is ConnectionShape.SOCKET
        assert is_connected(snapshot) is True


class TestReadConnectionState:
    def test_missing_client(self):
        assert read_connection_state(None).shape is ConnectionShape.MISSING_CLIENT

    def test_missing_connector(self):
        assert read_connection_state({}).shape is ConnectionShape.MISSING_CONNECTOR

    def test_unknown_shape(self):
        assert read_connection_state({'connector': True}).shape is ConnectionShape.UNKNOWN


class TestDescribeState:
    @pytest.mark.parametrize("snapshot, text", [
        (None, "Echo not loaded"),
        ({}, "Echo connector not initialized"),
        (CONNECTING_SNAPSHOT, "Pusher state: connecting"),
        ({'socket': {'connected': False}, 'connector': True}, "Socket connected: false"),
        ({'connection': {'state': 'closed'}, 'connector': True}, "Connection state: closed"),
        ({'connector': True}, "Unknown Echo state"),
    ])
    def test_descriptions(self, snapshot, text):
        assert describe_state(snapshot) == text


# ============================================================================
# POLLING
# ============================================================================

@pytest.mark.asyncio
async def test_wait_for_connected_returns_when_connected():
    page = FakeContext().primary_page(snapshot=CONNECTED_SNAPSHOT)
    elapsed_ms = await wait_for_connected(page, timeout_ms=100, poll_interval_ms=5)
    assert elapsed_ms >= 0


@pytest.mark.asyncio
async def test_wait_for_connected_sees_late_connection():
    page = FakeContext().primary_page(snapshot=CONNECTING_SNAPSHOT)
    snapshots = iter([None, {}, CONNECTING_SNAPSHOT, CONNECTED_SNAPSHOT])

    async def evaluate(script):
        return next(snapshots, CONNECTED_SNAPSHOT)

    page.evaluate = evaluate
    await wait_for_connected(page, timeout_ms=500, poll_interval_ms=1)


@pytest.mark.asyncio
async def test_wait_for_connected_times_out_with_state():
    page = FakeContext().primary_page(snapshot=CONNECTING_SNAPSHOT)
    with pytest.raises(ConnectionTimeoutError) as exc_info:
        await wait_for_connected(page, timeout_ms=30, poll_interval_ms=5, index=2)
    assert exc_info.value.index == 2
    assert exc_info.value.state == "Pusher state: connecting"


@pytest.mark.asyncio
async def test_evaluate_errors_read_as_not_connected():
    """A page mid-navigation throws on evaluate; that is not a fault"""
    page = FakeContext().primary_page(snapshot=RuntimeError("Execution context was destroyed"))
    with pytest.raises(ConnectionTimeoutError) as exc_info:
        await wait_for_connected(page, timeout_ms=20, poll_interval_ms=5)
    assert exc_info.value.state == "Echo not loaded"
