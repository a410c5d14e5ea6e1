"""
Graph mutation engine.

Interprets one command against the diagram bound to a session, using only
the primitives of a :class:`~drawio_bridge.host.GraphHost`. Each command is
validated up front, applied inside a single host update block and
optionally followed by an SVG export. Nothing raises out of
:meth:`GraphMutationEngine.handle`: faults become ``success: false``
results.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from drawio_bridge.host import GraphHost
from drawio_bridge.protocol import Command, EventName
from drawio_bridge.styles import DEFAULT_EDGE_STYLE, DEFAULT_VERTEX_STYLE
from drawio_bridge.svg import svg_to_base64
from drawio_bridge.validation import (
    ValidationError,
    validate_attributes,
    validate_bool,
    validate_edge_dict,
    validate_id_list,
    validate_layout_name,
    validate_layout_options,
    validate_list,
    validate_node_dict,
    validate_update_dict,
)

logger = logging.getLogger("drawio-bridge")

# Placeholder geometry; the auto-size pass fits width/height to the label
PLACEHOLDER_GEOMETRY = (0.0, 0.0, 120.0, 60.0)

# Layout name -> default parameters
DEFAULT_LAYOUTS: dict[str, dict[str, float]] = {
    "hierarchical": {"inter_rank_spacing": 120, "intra_cell_spacing": 80},
    "organic": {"force_constant": 150},
    "circle": {},
    "tree": {"level_distance": 40, "node_distance": 20},
}

Result = dict[str, Any]


def _optional_bool(payload: Mapping[str, Any], key: str) -> bool:
    value = payload.get(key)
    return False if value is None else validate_bool(value, key)


def _optional_list(payload: Mapping[str, Any], key: str) -> list:
    value = payload.get(key)
    return [] if value is None else validate_list(value, key)


class GraphMutationEngine:
    """Applies commands to the document of one session."""

    def __init__(
        self,
        host: GraphHost,
        layouts: Optional[Mapping[str, Mapping[str, float]]] = None,
    ) -> None:
        self.host = host
        self.layouts = {
            name: dict(params)
            for name, params in (DEFAULT_LAYOUTS if layouts is None else layouts).items()
        }
        self._handlers: dict[EventName, Callable[[Mapping[str, Any]], Result]] = {
            EventName.RENDER_SUBGRAPH: self.render_subgraph,
            EventName.MODIFY_SUBGRAPH: self.modify_subgraph,
            EventName.GET_DIAGRAM_STATE: self.get_diagram_state,
            EventName.EXPORT_DIAGRAM: self.export_diagram,
        }

    def handle(self, command: Command) -> Result:
        """Run *command* and return its result; never raises."""
        kind = EventName.parse(command.event)
        if kind is None:
            logger.warning("Unknown event '%s' (request %s)", command.event, command.request_id)
            return {"success": False, "error": f"Unknown event: {command.event}"}
        logger.info("Handling event: %s", command.event)
        try:
            return self._handlers[kind](command.payload)
        except ValidationError as exc:
            logger.warning("Rejected %s: %s", command.event, exc.message)
            return {"success": False, "error": exc.message}
        except Exception as exc:
            logger.exception("Error handling %s", command.event)
            return {"success": False, "error": str(exc) or type(exc).__name__}

    # ===================================================================
    # Handlers
    # ===================================================================

    def render_subgraph(self, payload: Mapping[str, Any]) -> Result:
        """Bulk insert nodes then edges, optionally clearing and laying out.

        ``node_count`` / ``edge_count`` echo the request; edges whose
        endpoints did not resolve are reported in ``skipped_edges``.
        """
        nodes = validate_list(payload.get("nodes"), "nodes")
        edges = _optional_list(payload, "edges")
        for i, n in enumerate(nodes):
            validate_node_dict(n, i, "nodes")
        for i, e in enumerate(edges):
            validate_edge_dict(e, i, "edges")
        clear_first = _optional_bool(payload, "clear_first")
        layout = validate_layout_name(payload.get("layout"), "layout")
        options = validate_layout_options(payload.get("layout_options"))
        return_svg = _optional_bool(payload, "return_svg")

        host = self.host
        with host.update():
            parent = host.default_parent()
            if clear_first:
                host.remove_cells(host.child_cells(parent))
            node_map: dict[str, Any] = {}
            self._insert_nodes(nodes, node_map)
            skipped = self._insert_edges(edges, node_map)
            if layout:
                self._apply_layout(layout, options)

        result: Result = {
            "success": True,
            "node_count": len(nodes),
            "edge_count": len(edges),
            "skipped_edges": skipped,
        }
        if return_svg:
            result["svg_base64"] = self._export_svg_base64()
        return result

    def modify_subgraph(self, payload: Mapping[str, Any]) -> Result:
        """Incremental change, applied in a fixed order inside one update:
        remove nodes, remove edges, add nodes, add edges, update nodes,
        relayout. Unknown ids are ignored."""
        remove_node_ids = validate_id_list(payload.get("remove_node_ids"), "remove_node_ids")
        remove_edge_ids = validate_id_list(payload.get("remove_edge_ids"), "remove_edge_ids")
        add_nodes = _optional_list(payload, "add_nodes")
        add_edges = _optional_list(payload, "add_edges")
        update_nodes = _optional_list(payload, "update_nodes")
        for i, n in enumerate(add_nodes):
            validate_node_dict(n, i, "add_nodes")
        for i, e in enumerate(add_edges):
            validate_edge_dict(e, i, "add_edges")
        for i, u in enumerate(update_nodes):
            validate_update_dict(u, i)
        relayout = payload.get("relayout")
        if relayout is True:
            relayout = "hierarchical"
        elif relayout is False:
            relayout = None
        relayout = validate_layout_name(relayout, "relayout")
        options = validate_layout_options(payload.get("layout_options"))
        return_svg = _optional_bool(payload, "return_svg")

        host = self.host
        with host.update():
            for ids in (remove_node_ids, remove_edge_ids):
                for cid in ids:
                    cell = host.get_cell(cid)
                    if cell is not None:
                        # The host drops connectors left dangling
                        host.remove_cells([cell])

            node_map: dict[str, Any] = {}
            self._insert_nodes(add_nodes, node_map)
            skipped = self._insert_edges(add_edges, node_map)

            for update in update_nodes:
                cell = host.get_cell(update["id"])
                if cell is None:
                    continue
                if "label" in update:
                    host.set_label(cell, update["label"])
                if "style" in update:
                    host.set_style(cell, update["style"])
                host.update_cell_size(cell)

            if relayout:
                self._apply_layout(relayout, options)

        result: Result = {"success": True, "skipped_edges": skipped}
        if return_svg:
            result["svg_base64"] = self._export_svg_base64()
        return result

    def get_diagram_state(self, payload: Mapping[str, Any]) -> Result:
        """Read-only snapshot of every vertex and edge below the root."""
        host = self.host
        nodes: list[dict[str, Any]] = []
        edges: list[dict[str, Any]] = []
        stack = list(reversed(host.child_cells(host.default_parent())))
        while stack:
            cell = stack.pop()
            if host.is_vertex(cell):
                nodes.append({
                    "id": host.cell_id(cell),
                    "label": host.get_label(cell),
                    "style": host.get_style(cell),
                    "geometry": host.get_geometry(cell),
                })
            elif host.is_edge(cell):
                source = host.get_terminal(cell, True)
                target = host.get_terminal(cell, False)
                edges.append({
                    "id": host.cell_id(cell),
                    "source": host.cell_id(source) if source is not None else None,
                    "target": host.cell_id(target) if target is not None else None,
                    "label": host.get_label(cell),
                    "style": host.get_style(cell),
                })
            stack.extend(reversed(host.child_cells(cell)))
        return {"success": True, "nodes": nodes, "edges": edges}

    def export_diagram(self, payload: Mapping[str, Any]) -> Result:
        if payload.get("format") == "svg_text":
            return {"success": True, "svg_text": self.host.get_svg()}
        return {"success": True, "svg_base64": self._export_svg_base64()}

    # ===================================================================
    # Internal helpers
    # ===================================================================

    def _resolve(self, ref: str, node_map: Mapping[str, Any]) -> Any | None:
        """Cells created earlier in this command win over document lookup."""
        cell = node_map.get(ref)
        if cell is None:
            cell = self.host.get_cell(ref)
        return cell

    def _insert_nodes(self, items: list[dict[str, Any]], node_map: dict[str, Any]) -> None:
        host = self.host
        root = host.default_parent()
        for item in items:
            parent = root
            if item.get("parent"):
                parent = self._resolve(item["parent"], node_map) or root
            x, y, w, h = PLACEHOLDER_GEOMETRY
            cell = host.insert_vertex(
                parent, item["id"], item.get("label") or "",
                x, y, w, h, item.get("style") or DEFAULT_VERTEX_STYLE,
            )
            node_map[item["id"]] = cell
            host.update_cell_size(cell)
            # "data" is what older orchestrators send
            attributes = item.get("attributes")
            if attributes is None:
                attributes = item.get("data")
            for key, value in validate_attributes(attributes, "attributes").items():
                host.set_cell_attribute(cell, key, value)

    def _insert_edges(self, items: list[dict[str, Any]], node_map: Mapping[str, Any]) -> int:
        """Insert edges whose endpoints resolve; return how many were skipped."""
        host = self.host
        root = host.default_parent()
        skipped = 0
        for item in items:
            source = self._resolve(item["source"], node_map)
            target = self._resolve(item["target"], node_map)
            if source is None or target is None:
                logger.debug(
                    "Skipping edge %s -> %s: endpoint not found", item["source"], item["target"],
                )
                skipped += 1
                continue
            host.insert_edge(
                root, item.get("id") or None, item.get("label") or "",
                source, target, item.get("style") or DEFAULT_EDGE_STYLE,
            )
        return skipped

    def _apply_layout(self, name: str, options: Mapping[str, float]) -> bool:
        defaults = self.layouts.get(name)
        if defaults is None:
            logger.warning("Unknown layout '%s', leaving geometry unchanged", name)
            return False
        return self.host.execute_layout(name, self.host.default_parent(), {**defaults, **options})

    def _export_svg_base64(self) -> str | None:
        try:
            return svg_to_base64(self.host.get_svg())
        except Exception:
            logger.exception("SVG export failed")
            return None
