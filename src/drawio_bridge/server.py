"""
Draw.io Bridge MCP Server: drive a live diagram session via Model Context Protocol.

Exposes the bridge commands as MCP tools. Each tool call becomes a
command with a fresh request id, travels through the relay to the
in-process diagram session, and the reply is matched back by its reply key,
exactly as a remote orchestrator would do over the WebSocket link.

Tools:
  1. render_subgraph: bulk insert nodes + edges, optional clear / layout / SVG
  2. modify_subgraph: remove, add, update and relayout in one step
  3. get_diagram_state: read-only snapshot of nodes and edges
  4. export_diagram: SVG as text or base64
  5. bridge_status: connection status and open sessions
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from mcp.server.fastmcp import FastMCP

from drawio_bridge.config import load_config
from drawio_bridge.engine import DEFAULT_LAYOUTS
from drawio_bridge.host import InMemoryGraphHost
from drawio_bridge.protocol import EVENT_KEY, Command, ConnectionStatus, EventName
from drawio_bridge.relay import Relay

# ---------------------------------------------------------------------------
# Logging: suppress routine FastMCP INFO messages that VS Code shows
# as warnings (they go to stderr which VS Code labels [warning]).
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("drawio-bridge")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "drawio-bridge",
    instructions=(
        "MCP server that edits a live draw.io diagram session.\n\n"
        "=== TOOLS ===\n"
        "1. render_subgraph(nodes, edges?, clear_first?, layout?, return_svg?)\n"
        "   nodes: [{id, label?, style?, parent?, attributes?}]\n"
        "   edges: [{source, target, id?, label?, style?}]\n"
        "2. modify_subgraph(remove_node_ids?, remove_edge_ids?, add_nodes?,\n"
        "   add_edges?, update_nodes?, relayout?, return_svg?)\n"
        "   update_nodes: [{id, label?, style?}]\n"
        "3. get_diagram_state(): nodes with geometry, edges with endpoints.\n"
        "4. export_diagram(format): 'svg_text' or base64 SVG.\n"
        "5. bridge_status(): connection state and sessions.\n\n"
        "=== RULES ===\n"
        "- No coordinates needed: shapes auto-size to their label and a layout\n"
        "  (hierarchical, organic, circle, tree) positions them.\n"
        "- Edges whose source/target id does not exist are skipped; check\n"
        "  'skipped_edges' in the result.\n"
        "- Removing a node also removes its connectors.\n"
    ),
)


class LoopbackOrchestrator:
    """In-process orchestrator: issues commands and awaits their replies.

    Acts as the relay's outbound connection; every reply is matched to the
    pending request with the same reply key. When a command reaches more
    than one session, the first reply wins.
    """

    def __init__(self, relay: Relay, timeout: float = 30.0) -> None:
        self.relay = relay
        self.timeout = timeout
        self.loop = asyncio.get_running_loop()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        relay.attach(self)
        relay.publish_status(ConnectionStatus.CONNECTED)

    @property
    def is_connected(self) -> bool:
        return True

    async def send(self, message: dict[str, Any]) -> None:
        key = message.get(EVENT_KEY, "")
        future = self._pending.pop(key, None)
        if future is None or future.done():
            logger.debug("No pending request for reply %s", key)
            return
        future.set_result(message)

    async def request(self, event: EventName, payload: dict[str, Any]) -> dict[str, Any]:
        command = Command(event.value, uuid.uuid4().hex[:12], payload)
        future: asyncio.Future[dict[str, Any]] = self.loop.create_future()
        self._pending[command.reply_key] = future
        try:
            if self.relay.dispatch(command) == 0:
                return {"success": False, "error": "No diagram session available."}
            reply = await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            return {"success": False, "error": f"Timed out waiting for {command.reply_key}."}
        finally:
            self._pending.pop(command.reply_key, None)
        return {k: v for k, v in reply.items() if k != EVENT_KEY}


# One relay + session per event loop; the session task is bound to its loop.
_bridge: LoopbackOrchestrator | None = None


def _get_bridge() -> LoopbackOrchestrator:
    global _bridge
    loop = asyncio.get_running_loop()
    if _bridge is None or _bridge.loop is not loop:
        config = load_config()
        relay = Relay(config.session_selector)
        relay.open_session(InMemoryGraphHost(), url="memory://default")
        _bridge = LoopbackOrchestrator(relay, timeout=config.request_timeout)
    return _bridge


async def _request(event: EventName, payload: dict[str, Any]) -> str:
    reply = await _get_bridge().request(event, payload)
    return json.dumps(reply, indent=2)


# ===================================================================
# RESOURCES
# ===================================================================

@mcp.resource("drawio://layouts")
def layout_catalog() -> str:
    """Return the available layout strategies and their default parameters."""
    entries: list[str] = []
    for name, params in DEFAULT_LAYOUTS.items():
        described = ", ".join(f"{k}={v}" for k, v in params.items()) or "no parameters"
        entries.append(f"  {name}: {described}")
    return "Available layouts (override via layout_options):\n" + "\n".join(entries)


# ===================================================================
# TOOLS
# ===================================================================

@mcp.tool()
async def render_subgraph(
    nodes: list[dict[str, Any]],
    edges: list[dict[str, Any]] | None = None,
    clear_first: bool = False,
    layout: str = "none",
    layout_options: dict[str, float] | None = None,
    return_svg: bool = False,
) -> str:
    """Insert a batch of nodes and edges into the live diagram.

    Args:
        nodes: List of {id, label?, style?, parent?, attributes?}.
        edges: List of {source, target, id?, label?, style?}; inserted after
               all nodes, skipped when an endpoint does not exist.
        clear_first: Remove everything on the page before inserting.
        layout: hierarchical, organic, circle, tree or none.
        layout_options: Override layout spacing, e.g. {"level_distance": 60}.
        return_svg: Include a base64 SVG snapshot in the result.

    Returns:
        JSON result with node_count, edge_count and skipped_edges.
    """
    payload: dict[str, Any] = {
        "nodes": nodes,
        "edges": edges or [],
        "clear_first": clear_first,
        "layout": layout,
        "return_svg": return_svg,
    }
    if layout_options:
        payload["layout_options"] = layout_options
    return await _request(EventName.RENDER_SUBGRAPH, payload)


@mcp.tool()
async def modify_subgraph(
    remove_node_ids: list[str] | None = None,
    remove_edge_ids: list[str] | None = None,
    add_nodes: list[dict[str, Any]] | None = None,
    add_edges: list[dict[str, Any]] | None = None,
    update_nodes: list[dict[str, Any]] | None = None,
    relayout: str = "none",
    layout_options: dict[str, float] | None = None,
    return_svg: bool = False,
) -> str:
    """Change the live diagram incrementally.

    Applied in order: remove nodes, remove edges, add nodes, add edges,
    update nodes ({id, label?, style?}), relayout. Unknown ids are ignored.

    Returns:
        JSON result with skipped_edges (and svg_base64 when requested).
    """
    payload: dict[str, Any] = {
        "remove_node_ids": remove_node_ids or [],
        "remove_edge_ids": remove_edge_ids or [],
        "add_nodes": add_nodes or [],
        "add_edges": add_edges or [],
        "update_nodes": update_nodes or [],
        "relayout": relayout,
        "return_svg": return_svg,
    }
    if layout_options:
        payload["layout_options"] = layout_options
    return await _request(EventName.MODIFY_SUBGRAPH, payload)


@mcp.tool()
async def get_diagram_state() -> str:
    """Return every node (id, label, style, geometry) and edge
    (id, source, target, label, style) currently in the diagram."""
    return await _request(EventName.GET_DIAGRAM_STATE, {})


@mcp.tool()
async def export_diagram(format: str = "svg_base64") -> str:
    """Export the diagram as SVG.

    Args:
        format: "svg_text" for raw markup, anything else for base64.
    """
    return await _request(EventName.EXPORT_DIAGRAM, {"format": format})


@mcp.tool()
async def bridge_status() -> str:
    """Connection status and the diagram sessions the bridge serves."""
    relay = _get_bridge().relay
    return json.dumps({
        "status": relay.status.value,
        "sessions": [
            {"id": s.id, "url": s.url, "ready": s.ready} for s in relay.sessions
        ],
    }, indent=2)


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
