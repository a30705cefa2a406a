"""
Connection state prober for the page's realtime client (Laravel Echo).

The browser-held client is opaque. ``SNAPSHOT_SCRIPT`` copies just the state
fields out of ``window.Echo.connector`` and everything else happens in Python
on that plain dict, so the evaluation order lives in one place.
"""
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from workflow.errors import ConnectionTimeoutError

CONNECTED = "connected"

# Never throws in the page. Returns null when Echo is absent, {} when the
# connector is absent, otherwise only the fields the prober reads.
SNAPSHOT_SCRIPT = """
() => {
  const Echo = window.Echo;
  if (!Echo) return null;
  const c = Echo.connector;
  if (!c) return {};
  const snap = {};
  try {
    if (c.pusher && c.pusher.connection) {
      snap.pusher = {connection: {state: c.pusher.connection.state}};
    }
  } catch (e) {}
  try {
    if (c.socket) snap.socket = {connected: c.socket.connected};
  } catch (e) {}
  try {
    if (c.connection) snap.connection = {state: c.connection.state};
  } catch (e) {}
  snap.connector = true;
  return snap;
}
"""


class ConnectionShape(Enum):
    """Known internal representations of the realtime client."""
    PUSHER = "pusher"  # connector.pusher.connection.state == "connected"
    SOCKET = "socket"  # connector.socket.connected is a boolean
    GENERIC = "generic"  # connector.connection.state is a string
    MISSING_CLIENT = "missing_client"
    MISSING_CONNECTOR = "missing_connector"
    # Connector present but none of the shapes above. Treated as not connected.
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConnectionState:
    shape: ConnectionShape
    state: object = None

    @property
    def connected(self) -> bool:
        if self.shape is ConnectionShape.SOCKET:
            return self.state is True
        if self.shape in (ConnectionShape.PUSHER, ConnectionShape.GENERIC):
            return self.state == CONNECTED
        return False


def _nested(snapshot, *keys):
    value = snapshot
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def read_connection_state(snapshot) -> ConnectionState:
    """Reduce a client snapshot to one ``ConnectionState``.

    Shapes are checked pusher first, then socket, then generic.
    """
    if snapshot is None or not isinstance(snapshot, dict):
        return ConnectionState(ConnectionShape.MISSING_CLIENT)
    if not snapshot:
        return ConnectionState(ConnectionShape.MISSING_CONNECTOR)

    pusher_state = _nested(snapshot, 'pusher', 'connection', 'state')
    if pusher_state:
        return ConnectionState(ConnectionShape.PUSHER, pusher_state)

    socket_connected = _nested(snapshot, 'socket', 'connected')
    if isinstance(socket_connected, bool):
        return ConnectionState(ConnectionShape.SOCKET, socket_connected)

    generic_state = _nested(snapshot, 'connection', 'state')
    if isinstance(generic_state, str):
        return ConnectionState(ConnectionShape.GENERIC, generic_state)

    return ConnectionState(ConnectionShape.UNKNOWN)


def is_connected(snapshot) -> bool:
    """True iff the snapshot shows a connected realtime client. Never raises."""
    return read_connection_state(snapshot).connected


def describe_state(snapshot) -> str:
    """Human readable state for log lines."""
    state = read_connection_state(snapshot)
    if state.shape is ConnectionShape.MISSING_CLIENT:
        return "Echo not loaded"
    if state.shape is ConnectionShape.MISSING_CONNECTOR:
        return "Echo connector not initialized"
    if state.shape is ConnectionShape.PUSHER:
        return f"Pusher state: {state.state}"
    if state.shape is ConnectionShape.SOCKET:
        return f"Socket connected: {str(state.state).lower()}"
    if state.shape is ConnectionShape.GENERIC:
        return f"Connection state: {state.state}"
    return "Unknown Echo state"


async def probe_page(page) -> Optional[dict]:
    """Snapshot the page's realtime client.

    Evaluation can fail while a navigation is in flight or after the page
    closed; that reads as "no client yet".
    """
    try:
        return await page.evaluate(SNAPSHOT_SCRIPT)
    except Exception:
        return None


async def wait_for_connected(page, timeout_ms, poll_interval_ms=250, index=0):
    """Poll the page until its realtime client reports connected.

    Returns:
        Elapsed milliseconds until the connected state was observed

    Raises:
        ConnectionTimeoutError: if ``timeout_ms`` elapses first. Only this
            wait fails; sibling waits keep running.
    """
    start = time.monotonic()
    deadline = start + timeout_ms / 1000
    snapshot = None

    while True:
        snapshot = await probe_page(page)
        if is_connected(snapshot):
            return (time.monotonic() - start) * 1000
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(poll_interval_ms / 1000, remaining))

    state = describe_state(snapshot)
    raise ConnectionTimeoutError(
        f"Timeout {timeout_ms}ms exceeded waiting for realtime connection ({state})",
        index=index,
        state=state,
    )
