"""
Host rendering surface.

:class:`GraphHost` is the capability interface the mutation engine drives:
cell primitives, auto-size, atomic update blocks, layout execution and SVG
serialization. Cells are opaque to the engine; it only hands them back to
the host.

:class:`InMemoryGraphHost` implements the interface over a
:class:`~drawio_bridge.models.DiagramDocument`.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Optional, Protocol

from drawio_bridge.layouts import run_layout
from drawio_bridge.models import DEFAULT_PARENT_ID, DiagramDocument, Geometry, MxCell
from drawio_bridge.svg import label_lines, render_svg

logger = logging.getLogger("drawio-bridge")


class GraphHost(Protocol):
    """Primitive operations offered by a diagram editing surface."""

    def default_parent(self) -> Any: ...

    def get_cell(self, cell_id: str) -> Any | None: ...

    def cell_id(self, cell: Any) -> str: ...

    def child_cells(self, parent: Any) -> list[Any]: ...

    def is_vertex(self, cell: Any) -> bool: ...

    def is_edge(self, cell: Any) -> bool: ...

    def get_label(self, cell: Any) -> str: ...

    def get_style(self, cell: Any) -> str: ...

    def get_geometry(self, cell: Any) -> dict[str, float] | None: ...

    def get_terminal(self, edge: Any, source: bool) -> Any | None: ...

    def insert_vertex(
        self, parent: Any, cell_id: Optional[str], label: str,
        x: float, y: float, width: float, height: float, style: str,
    ) -> Any: ...

    def insert_edge(
        self, parent: Any, cell_id: Optional[str], label: str,
        source: Any, target: Any, style: str,
    ) -> Any: ...

    def remove_cells(self, cells: list[Any]) -> None: ...

    def update_cell_size(self, cell: Any) -> None: ...

    def set_cell_attribute(self, cell: Any, key: str, value: str) -> None: ...

    def set_label(self, cell: Any, label: str) -> None: ...

    def set_style(self, cell: Any, style: str) -> None: ...

    def update(self) -> AbstractContextManager[Any]: ...

    def execute_layout(self, name: str, parent: Any, options: dict[str, float]) -> bool: ...

    def get_svg(self) -> str: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

def estimate_size(label: str) -> tuple[float, float]:
    """Width/height that fit a label's text (120x50 minimum)."""
    lines = label_lines(label) or ["X"]
    max_chars = max(len(line) for line in lines)
    w = max(120, min(280, max_chars * 8 + 20))
    h = max(50, min(200, len(lines) * 22 + 16))
    return float(w), float(h)


class InMemoryGraphHost:
    """A :class:`GraphHost` backed by an in-process document."""

    def __init__(self, document: DiagramDocument | None = None) -> None:
        self.document = document or DiagramDocument()

    # -- lookup --

    def default_parent(self) -> MxCell:
        return self.document.cells[DEFAULT_PARENT_ID]

    def get_cell(self, cell_id: str) -> MxCell | None:
        return self.document.get(cell_id)

    def cell_id(self, cell: MxCell) -> str:
        return cell.id

    def child_cells(self, parent: MxCell) -> list[MxCell]:
        return self.document.children(parent.id)

    def is_vertex(self, cell: MxCell) -> bool:
        return cell.vertex

    def is_edge(self, cell: MxCell) -> bool:
        return cell.edge

    def get_label(self, cell: MxCell) -> str:
        return cell.value or ""

    def get_style(self, cell: MxCell) -> str:
        return cell.style or ""

    def get_geometry(self, cell: MxCell) -> dict[str, float] | None:
        if cell.geometry is None or cell.geometry.relative:
            return None
        return cell.geometry.to_dict()

    def get_terminal(self, edge: MxCell, source: bool) -> MxCell | None:
        return self.document.get(edge.source if source else edge.target)

    # -- mutation --

    def insert_vertex(
        self, parent: MxCell, cell_id: Optional[str], label: str,
        x: float, y: float, width: float, height: float, style: str,
    ) -> MxCell:
        return self.document.add_vertex(label, x, y, width, height, style, parent.id, cell_id)

    def insert_edge(
        self, parent: MxCell, cell_id: Optional[str], label: str,
        source: MxCell, target: MxCell, style: str,
    ) -> MxCell:
        return self.document.add_edge(source.id, target.id, label, style, parent.id, cell_id)

    def remove_cells(self, cells: list[MxCell]) -> None:
        removed = self.document.remove_cells([c.id for c in cells])
        logger.debug("Removed %d cell(s)", len(removed))

    def update_cell_size(self, cell: MxCell) -> None:
        if not cell.vertex or cell.geometry is None:
            return
        w, h = estimate_size(cell.value)
        geo = cell.geometry
        self.document.set_geometry(cell, Geometry(x=geo.x, y=geo.y, width=w, height=h))

    def set_cell_attribute(self, cell: MxCell, key: str, value: str) -> None:
        self.document.set_attribute(cell, key, value)

    def set_label(self, cell: MxCell, label: str) -> None:
        self.document.set_value(cell, label)

    def set_style(self, cell: MxCell, style: str) -> None:
        self.document.set_style(cell, style)

    def update(self) -> AbstractContextManager[DiagramDocument]:
        return self.document.update()

    # -- layout / export --

    def execute_layout(self, name: str, parent: MxCell, options: dict[str, float]) -> bool:
        return run_layout(self.document, name, parent.id, options) is not None

    def get_svg(self) -> str:
        return render_svg(self.document)
