"""
Wire protocol between the orchestrator and diagram sessions.

Commands arrive as ``{"__event": ..., "__request_id": ..., <payload>}``.
Replies go back as ``{"__event": "<event>.<request_id>", "success": ...}``;
the reply key is the only correlation state. The orchestrator, not this
package, tracks which requests are outstanding.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

EVENT_KEY = "__event"
REQUEST_ID_KEY = "__request_id"
CONTROL_PREFIX = "__"
PING_EVENT = "__ping"


class MalformedCommand(Exception):
    """Raised when an inbound message cannot be decoded into a command."""


class EventName(str, Enum):
    """Command kinds understood by the mutation engine."""
    RENDER_SUBGRAPH = "render_subgraph"
    MODIFY_SUBGRAPH = "modify_subgraph"
    GET_DIAGRAM_STATE = "get_diagram_state"
    EXPORT_DIAGRAM = "export_diagram"

    @classmethod
    def parse(cls, name: str) -> Optional[EventName]:
        """Return the matching member, or None for an unrecognized name."""
        try:
            return cls(name)
        except ValueError:
            return None


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class Command:
    event: str
    request_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_control(self) -> bool:
        """Transport-level messages (heartbeats) that never reach a session."""
        return self.event.startswith(CONTROL_PREFIX)

    @property
    def reply_key(self) -> str:
        return make_reply_key(self.event, self.request_id)

    def copy(self) -> Command:
        """Deep copy, so no payload object is shared between sessions."""
        return Command(self.event, self.request_id, copy.deepcopy(self.payload))

    def to_message(self) -> dict[str, Any]:
        return {EVENT_KEY: self.event, REQUEST_ID_KEY: self.request_id, **self.payload}


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------

def make_reply_key(event: str, request_id: str) -> str:
    return f"{event}.{request_id}"


def split_reply_key(key: str) -> tuple[str, str]:
    """Inverse of :func:`make_reply_key` (event names never contain dots)."""
    event, sep, request_id = key.partition(".")
    if not sep:
        raise ValueError(f"'{key}' is not a reply key.")
    return event, request_id


def build_reply(command: Command, result: Mapping[str, Any]) -> dict[str, Any]:
    """Wrap a result with the reply key of the command it answers."""
    return {EVENT_KEY: command.reply_key, **result}


def status_message(status: ConnectionStatus) -> dict[str, str]:
    return {"status": status.value}


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def parse_command(raw: str | bytes | Mapping[str, Any]) -> Command:
    """Decode an inbound message.

    Accepts JSON text/bytes or an already-decoded mapping. Raises
    :class:`MalformedCommand` when the message is not an object or has no
    string ``__event``. A missing request id becomes ``""``.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedCommand(f"Undecodable message: {exc}") from exc
    else:
        data = raw
    if not isinstance(data, Mapping):
        raise MalformedCommand(f"Message must be a JSON object, got {type(data).__name__}.")
    event = data.get(EVENT_KEY)
    if not isinstance(event, str) or not event:
        raise MalformedCommand(f"Message has no '{EVENT_KEY}' string.")
    request_id = data.get(REQUEST_ID_KEY, "")
    if request_id is None:
        request_id = ""
    payload = {k: v for k, v in data.items() if k not in (EVENT_KEY, REQUEST_ID_KEY)}
    return Command(event=event, request_id=str(request_id), payload=payload)
