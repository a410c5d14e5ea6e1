"""
Core cell model for live draw.io diagram documents.

Mirrors the mxGraphModel structure: a model root (``"0"``), a default
parent layer (``"1"``) and vertex / edge cells hanging below it. Changes
are grouped into update blocks so listeners observe one notification per
block, the way mxGraph batches redraw and undo events.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

logger = logging.getLogger("drawio-bridge")

ROOT_ID = "0"
DEFAULT_PARENT_ID = "1"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Geometry:
    """Position and size of a vertex (edges carry relative geometry)."""
    x: float = 0
    y: float = 0
    width: float = 120
    height: float = 60
    relative: bool = False

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class MxCell:
    """A single cell: vertex, edge or structural cell."""
    id: str
    value: str = ""
    style: str = ""
    parent: str = DEFAULT_PARENT_ID
    vertex: bool = False
    edge: bool = False
    source: Optional[str] = None
    target: Optional[str] = None
    geometry: Optional[Geometry] = None
    # Custom key/value data, rendered by draw.io through an <object> wrapper
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class CellChange:
    """One primitive change recorded inside an update block."""
    kind: str  # add, remove, value, style, geometry, attribute
    cell_id: str


@dataclass
class DiagramDocument:
    """The live graph owned by one rendering session."""
    name: str = "Page-1"
    cells: dict[str, MxCell] = field(default_factory=dict)
    grid_size: int = 10

    _next_id: int = field(default=2, init=False, repr=False)
    _update_level: int = field(default=0, init=False, repr=False)
    _pending: list[CellChange] = field(default_factory=list, init=False, repr=False)
    _listeners: list[Callable[[list[CellChange]], None]] = field(
        default_factory=list, init=False, repr=False,
    )
    # parent id -> child ids in document order
    _child_ids: dict[str, list[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        # Structural cells 0 and 1 always exist
        if ROOT_ID not in self.cells:
            self.cells[ROOT_ID] = MxCell(id=ROOT_ID, parent="")
        if DEFAULT_PARENT_ID not in self.cells:
            self.cells[DEFAULT_PARENT_ID] = MxCell(id=DEFAULT_PARENT_ID, parent=ROOT_ID)
        for cell in self.cells.values():
            self._child_ids.setdefault(cell.parent, []).append(cell.id)

    # ----- ids -----

    def next_id(self) -> str:
        """Generate a sequential cell ID not yet used in the document."""
        while str(self._next_id) in self.cells:
            self._next_id += 1
        cid = str(self._next_id)
        self._next_id += 1
        return cid

    def get(self, cell_id: Optional[str]) -> MxCell | None:
        if not cell_id:
            return None
        return self.cells.get(cell_id)

    # ----- update blocks -----

    def add_listener(self, listener: Callable[[list[CellChange]], None]) -> None:
        """Register a callback fired once per completed outermost update block."""
        self._listeners.append(listener)

    def begin_update(self) -> None:
        self._update_level += 1

    def end_update(self) -> None:
        self._update_level -= 1
        if self._update_level == 0 and self._pending:
            changes, self._pending = self._pending, []
            for listener in list(self._listeners):
                listener(changes)

    @contextmanager
    def update(self) -> Iterator[DiagramDocument]:
        """Group changes into one observable update.

        There is no rollback: if the body raises, whatever was applied so
        far stays in the document and listeners still fire.
        """
        self.begin_update()
        try:
            yield self
        finally:
            self.end_update()

    def _record(self, kind: str, cell_id: str) -> None:
        self.begin_update()
        self._pending.append(CellChange(kind, cell_id))
        self.end_update()

    # ----- structure -----

    def children(self, parent_id: str) -> list[MxCell]:
        """Direct vertex and edge children of *parent_id* in document order."""
        kids = (self.cells[cid] for cid in self._child_ids.get(parent_id, ()))
        return [c for c in kids if c.vertex or c.edge]

    def vertices(self) -> list[MxCell]:
        return [c for c in self.cells.values() if c.vertex]

    def edges(self) -> list[MxCell]:
        return [c for c in self.cells.values() if c.edge]

    # ----- builder helpers -----

    def add_cell(self, cell: MxCell) -> MxCell:
        """Add *cell*, assigning a fresh id if its id is missing or taken."""
        if not cell.id or cell.id in self.cells:
            requested = cell.id
            cell.id = self.next_id()
            if requested:
                logger.debug("Cell id '%s' already in use, assigned '%s'", requested, cell.id)
        self.cells[cell.id] = cell
        self._child_ids.setdefault(cell.parent, []).append(cell.id)
        self._record("add", cell.id)
        return cell

    def add_vertex(
        self,
        value: str,
        x: float,
        y: float,
        width: float = 120,
        height: float = 60,
        style: str = "rounded=1;whiteSpace=wrap;html=1;",
        parent: str = DEFAULT_PARENT_ID,
        cell_id: Optional[str] = None,
    ) -> MxCell:
        return self.add_cell(MxCell(
            id=cell_id or "",
            value=value,
            style=style,
            parent=parent,
            vertex=True,
            geometry=Geometry(x=x, y=y, width=width, height=height),
        ))

    def add_edge(
        self,
        source: str,
        target: str,
        value: str = "",
        style: str = "endArrow=classic;html=1;",
        parent: str = DEFAULT_PARENT_ID,
        cell_id: Optional[str] = None,
    ) -> MxCell:
        return self.add_cell(MxCell(
            id=cell_id or "",
            value=value,
            style=style,
            parent=parent,
            edge=True,
            source=source,
            target=target,
            geometry=Geometry(relative=True),
        ))

    def remove_cells(self, cell_ids: list[str]) -> list[str]:
        """Remove cells, cascading to their children and connected edges.

        Structural cells are never removed. Returns the removed IDs in
        document order.
        """
        connected: dict[str, list[str]] = {}
        for cell in self.cells.values():
            if cell.edge:
                for terminal in (cell.source, cell.target):
                    if terminal:
                        connected.setdefault(terminal, []).append(cell.id)

        protected = {ROOT_ID, DEFAULT_PARENT_ID}
        to_delete: set[str] = set()
        stack = [cid for cid in cell_ids if cid in self.cells]
        while stack:
            cid = stack.pop()
            if cid in to_delete or cid in protected:
                continue
            to_delete.add(cid)
            stack.extend(self._child_ids.get(cid, ()))
            stack.extend(connected.get(cid, ()))

        removed = [cid for cid in self.cells if cid in to_delete]
        parents: set[str] = set()
        with self.update():
            for cid in removed:
                parents.add(self.cells.pop(cid).parent)
                self._child_ids.pop(cid, None)
                self._record("remove", cid)
        for parent in parents & set(self._child_ids):
            self._child_ids[parent] = [c for c in self._child_ids[parent] if c not in to_delete]
        return removed

    # ----- cell mutation -----

    def set_value(self, cell: MxCell, value: str) -> None:
        cell.value = value
        self._record("value", cell.id)

    def set_style(self, cell: MxCell, style: str) -> None:
        cell.style = style
        self._record("style", cell.id)

    def set_geometry(self, cell: MxCell, geometry: Geometry) -> None:
        cell.geometry = geometry
        self._record("geometry", cell.id)

    def set_attribute(self, cell: MxCell, key: str, value: str) -> None:
        cell.attributes[key] = value
        self._record("attribute", cell.id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def snap_to_grid(value: float, grid_size: int = 10) -> float:
    """Snap a coordinate to the nearest grid point."""
    return round(value / grid_size) * grid_size


@dataclass
class CellBounds:
    """Page-space box of a vertex."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def cx(self) -> float:
        return self.x + self.width / 2

    @property
    def cy(self) -> float:
        return self.y + self.height / 2


def vertex_bounds(document: DiagramDocument) -> dict[str, CellBounds]:
    """Page-space boxes of every vertex below the default parent.

    A vertex nested in another vertex (a group member) is positioned
    relative to its container, so offsets accumulate down the tree.
    """
    bounds: dict[str, CellBounds] = {}
    stack = [(cell, 0.0, 0.0) for cell in reversed(document.children(DEFAULT_PARENT_ID))]
    while stack:
        cell, ox, oy = stack.pop()
        geo = cell.geometry
        if not cell.vertex or geo is None or geo.relative:
            continue
        box = CellBounds(ox + geo.x, oy + geo.y, geo.width, geo.height)
        bounds[cell.id] = box
        stack.extend((child, box.x, box.y) for child in reversed(document.children(cell.id)))
    return bounds
