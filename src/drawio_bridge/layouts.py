"""
Layout algorithms executed by the in-memory host surface.

Each algorithm repositions the vertex children of one parent cell and
never touches the cell set, edge endpoints or ids:

- ``hierarchical``: Sugiyama-style layered layout (cycle removal, longest
  path ranking, barycenter crossing minimization, centered ranks)
- ``organic``: Fruchterman-Reingold force-directed placement
- ``circle``: vertices evenly spaced on a circle perimeter
- ``tree``: compact top-down tree, parents centered over children
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict, deque
from dataclasses import dataclass, fields
from typing import Any, Callable

from drawio_bridge.models import DEFAULT_PARENT_ID, DiagramDocument, Geometry, MxCell, snap_to_grid

logger = logging.getLogger("drawio-bridge")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class HierarchicalConfig:
    inter_rank_spacing: float = 120   # Vertical space between ranks
    intra_cell_spacing: float = 80    # Horizontal space between cells in a rank
    barycenter_iterations: int = 4    # Crossing minimization sweeps
    start_x: float = 20
    start_y: float = 20


@dataclass
class OrganicConfig:
    force_constant: float = 150       # Ideal edge length / repulsion scale
    max_iterations: int = 100
    initial_temp: float = 200         # Max displacement in the first iteration
    min_distance: float = 2           # Clamp for coincident vertices
    start_x: float = 20
    start_y: float = 20


@dataclass
class CircleConfig:
    radius: float = 100               # Minimum radius
    start_x: float = 20
    start_y: float = 20


@dataclass
class TreeConfig:
    level_distance: float = 40        # Vertical gap between tree levels
    node_distance: float = 20         # Horizontal gap between siblings
    start_x: float = 20
    start_y: float = 20


# Per-request loop counts are clamped to these
ITERATION_LIMITS = {"barycenter_iterations": 32, "max_iterations": 1000}


def _make_config(cls: type, options: dict[str, Any]) -> Any:
    # Annotations are strings under postponed evaluation
    kinds = {f.name: f.type for f in fields(cls)}
    unknown = sorted(set(options) - set(kinds))
    if unknown:
        logger.warning("Ignoring unknown %s option(s): %s", cls.__name__, ", ".join(unknown))
    values: dict[str, Any] = {}
    for k, v in options.items():
        if k not in kinds:
            continue
        if kinds[k] not in ("int", int):
            values[k] = float(v)
            continue
        limit = ITERATION_LIMITS.get(k)
        if limit is not None and v > limit:
            logger.warning("Clamping %s.%s from %s to %d", cls.__name__, k, v, limit)
            v = limit
        values[k] = int(v)
    return cls(**values)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

@dataclass
class _Node:
    """Internal node representation for layout algorithms."""
    id: str
    width: float
    height: float
    rank: int = 0       # Layer assignment
    order: float = 0    # Position within layer
    x: float = 0
    y: float = 0


def _collect(
    document: DiagramDocument, parent_id: str,
) -> tuple[dict[str, MxCell], list[tuple[str, str]]]:
    """Vertex children of *parent_id* plus the edges that join two of them."""
    vertices: dict[str, MxCell] = {}
    for cell in document.children(parent_id):
        if cell.vertex and cell.geometry and not cell.geometry.relative:
            vertices[cell.id] = cell
    edges: list[tuple[str, str]] = []
    for cell in document.edges():
        if cell.source in vertices and cell.target in vertices and cell.source != cell.target:
            edges.append((cell.source, cell.target))
    return vertices, edges


def _apply_positions(
    document: DiagramDocument,
    vertices: dict[str, MxCell],
    positions: dict[str, tuple[float, float]],
) -> dict[str, tuple[float, float]]:
    moved: dict[str, tuple[float, float]] = {}
    with document.update():
        for cid, (x, y) in positions.items():
            cell = vertices[cid]
            geo = cell.geometry
            nx = snap_to_grid(x, document.grid_size)
            ny = snap_to_grid(y, document.grid_size)
            document.set_geometry(cell, Geometry(x=nx, y=ny, width=geo.width, height=geo.height))
            moved[cid] = (nx, ny)
    return moved


# ---------------------------------------------------------------------------
# Hierarchical (Sugiyama) layout
# ---------------------------------------------------------------------------

def hierarchical_layout(
    document: DiagramDocument,
    parent_id: str = DEFAULT_PARENT_ID,
    config: HierarchicalConfig | None = None,
) -> dict[str, tuple[float, float]]:
    """Arrange the children of *parent_id* in ranks, top to bottom.

    Steps:
    1. Cycle removal (reverse back-edges)
    2. Layer assignment (longest path)
    3. Crossing minimization (barycenter heuristic, multi-pass)
    4. Coordinate assignment, each rank centered on the widest one

    Returns:
        Dict mapping cell_id → (new_x, new_y).
    """
    cfg = config or HierarchicalConfig()
    vertices, edges = _collect(document, parent_id)
    if not vertices:
        return {}

    nodes: dict[str, _Node] = {
        cid: _Node(id=cid, width=c.geometry.width, height=c.geometry.height)
        for cid, c in vertices.items()
    }
    adj: dict[str, list[str]] = defaultdict(list)
    for src, tgt in edges:
        adj[src].append(tgt)

    back_edges = _find_back_edges(list(nodes), adj)
    effective_adj: dict[str, list[str]] = defaultdict(list)
    effective_rev: dict[str, list[str]] = defaultdict(list)
    for src in adj:
        for tgt in adj[src]:
            if (src, tgt) in back_edges:
                effective_adj[tgt].append(src)
                effective_rev[src].append(tgt)
            else:
                effective_adj[src].append(tgt)
                effective_rev[tgt].append(src)

    ranks = _assign_ranks_longest_path(list(nodes), effective_adj, effective_rev)
    by_rank: dict[int, list[str]] = defaultdict(list)
    for cid in nodes:
        nodes[cid].rank = ranks[cid]
        by_rank[ranks[cid]].append(cid)
    max_rank = max(by_rank)

    for rank_nodes in by_rank.values():
        for i, cid in enumerate(rank_nodes):
            nodes[cid].order = float(i)

    for _ in range(cfg.barycenter_iterations):
        for r in range(1, max_rank + 1):
            _barycenter_sort(by_rank[r], nodes, effective_rev)
        for r in range(max_rank - 1, -1, -1):
            _barycenter_sort(by_rank[r], nodes, effective_adj)

    _assign_coordinates(by_rank, nodes, cfg)
    return _apply_positions(
        document, vertices, {cid: (n.x, n.y) for cid, n in nodes.items()},
    )


def _find_back_edges(
    all_nodes: list[str],
    adj: dict[str, list[str]],
) -> set[tuple[str, str]]:
    """Find back-edges in a directed graph using iterative DFS."""
    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {n: WHITE for n in all_nodes}
    back_edges: set[tuple[str, str]] = set()

    for start in all_nodes:
        if color[start] != WHITE:
            continue
        # Each frame is (node, index of next neighbor to visit)
        color[start] = GRAY
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            u, idx = stack[-1]
            neighbors = adj.get(u, [])
            if idx < len(neighbors):
                stack[-1] = (u, idx + 1)
                v = neighbors[idx]
                if v not in color:
                    continue
                if color[v] == GRAY:
                    back_edges.add((u, v))
                elif color[v] == WHITE:
                    color[v] = GRAY
                    stack.append((v, 0))
            else:
                color[u] = BLACK
                stack.pop()

    return back_edges


def _assign_ranks_longest_path(
    all_nodes: list[str],
    adj: dict[str, list[str]],
    rev_adj: dict[str, list[str]],
) -> dict[str, int]:
    """Assign ranks using longest path from sources (graph must be acyclic)."""
    ranks: dict[str, int] = {}
    indegree = {n: len(rev_adj.get(n, [])) for n in all_nodes}
    queue = deque(n for n in all_nodes if indegree[n] == 0)
    for n in queue:
        ranks[n] = 0

    # Kahn's order guarantees every parent is final before its children
    while queue:
        node = queue.popleft()
        for child in adj.get(node, []):
            ranks[child] = max(ranks.get(child, 0), ranks[node] + 1)
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    for n in all_nodes:
        ranks.setdefault(n, 0)
    return ranks


def _barycenter_sort(
    rank_nodes: list[str],
    nodes: dict[str, _Node],
    neighbor_adj: dict[str, list[str]],
) -> None:
    """Sort nodes in a rank by barycenter of their neighbors."""
    barycenters: dict[str, float] = {}
    for cid in rank_nodes:
        neighbor_orders = [nodes[n].order for n in neighbor_adj.get(cid, []) if n in nodes]
        if neighbor_orders:
            barycenters[cid] = sum(neighbor_orders) / len(neighbor_orders)
        else:
            barycenters[cid] = nodes[cid].order

    rank_nodes.sort(key=lambda n: barycenters.get(n, 0))
    for i, cid in enumerate(rank_nodes):
        nodes[cid].order = float(i)


def _assign_coordinates(
    by_rank: dict[int, list[str]],
    nodes: dict[str, _Node],
    cfg: HierarchicalConfig,
) -> None:
    """Assign x, y coordinates based on rank and order."""
    rank_widths: dict[int, float] = {}
    for rank, rank_nodes in by_rank.items():
        total_w = sum(nodes[n].width for n in rank_nodes)
        rank_widths[rank] = total_w + (len(rank_nodes) - 1) * cfg.intra_cell_spacing
    max_rank_width = max(rank_widths.values())

    # All nodes in a rank share the same baseline
    y_cursor = cfg.start_y
    for rank in sorted(by_rank):
        rank_nodes = by_rank[rank]
        x_cursor = cfg.start_x + (max_rank_width - rank_widths[rank]) / 2
        for cid in rank_nodes:
            node = nodes[cid]
            node.x = x_cursor
            node.y = y_cursor
            x_cursor += node.width + cfg.intra_cell_spacing
        y_cursor += max(nodes[n].height for n in rank_nodes) + cfg.inter_rank_spacing


# ---------------------------------------------------------------------------
# Organic (force-directed) layout
# ---------------------------------------------------------------------------

def organic_layout(
    document: DiagramDocument,
    parent_id: str = DEFAULT_PARENT_ID,
    config: OrganicConfig | None = None,
) -> dict[str, tuple[float, float]]:
    """Fruchterman-Reingold placement.

    Connected vertices attract (d² / k), every pair repels (k² / d), and
    the per-iteration displacement is capped by a linearly cooling
    temperature. Starting positions come from the current geometry;
    coincident vertices are spread deterministically on a ring first.
    """
    cfg = config or OrganicConfig()
    vertices, edges = _collect(document, parent_id)
    if not vertices:
        return {}

    k = cfg.force_constant
    ids = list(vertices)
    pos: dict[str, list[float]] = {}
    seen: set[tuple[float, float]] = set()
    for i, cid in enumerate(ids):
        geo = vertices[cid].geometry
        cx, cy = geo.x + geo.width / 2, geo.y + geo.height / 2
        if (cx, cy) in seen:
            angle = 2 * math.pi * i / len(ids)
            cx += k * math.cos(angle)
            cy += k * math.sin(angle)
        seen.add((cx, cy))
        pos[cid] = [cx, cy]

    temperature = cfg.initial_temp
    for iteration in range(cfg.max_iterations):
        disp: dict[str, list[float]] = {cid: [0.0, 0.0] for cid in ids}
        for i, a in enumerate(ids):
            for b in ids[i + 1:]:
                dx = pos[a][0] - pos[b][0]
                dy = pos[a][1] - pos[b][1]
                dist = max(math.hypot(dx, dy), cfg.min_distance)
                force = k * k / dist
                disp[a][0] += dx / dist * force
                disp[a][1] += dy / dist * force
                disp[b][0] -= dx / dist * force
                disp[b][1] -= dy / dist * force
        for src, tgt in edges:
            dx = pos[src][0] - pos[tgt][0]
            dy = pos[src][1] - pos[tgt][1]
            dist = max(math.hypot(dx, dy), cfg.min_distance)
            force = dist * dist / k
            disp[src][0] -= dx / dist * force
            disp[src][1] -= dy / dist * force
            disp[tgt][0] += dx / dist * force
            disp[tgt][1] += dy / dist * force
        for cid in ids:
            dx, dy = disp[cid]
            length = math.hypot(dx, dy)
            if length > 0:
                step = min(length, temperature)
                pos[cid][0] += dx / length * step
                pos[cid][1] += dy / length * step
        temperature = cfg.initial_temp * (1 - (iteration + 1) / cfg.max_iterations)

    # Translate so the bounding box starts at (start_x, start_y)
    min_x = min(pos[c][0] - vertices[c].geometry.width / 2 for c in ids)
    min_y = min(pos[c][1] - vertices[c].geometry.height / 2 for c in ids)
    positions = {
        cid: (
            pos[cid][0] - vertices[cid].geometry.width / 2 - min_x + cfg.start_x,
            pos[cid][1] - vertices[cid].geometry.height / 2 - min_y + cfg.start_y,
        )
        for cid in ids
    }
    return _apply_positions(document, vertices, positions)


# ---------------------------------------------------------------------------
# Circle layout
# ---------------------------------------------------------------------------

def circle_layout(
    document: DiagramDocument,
    parent_id: str = DEFAULT_PARENT_ID,
    config: CircleConfig | None = None,
) -> dict[str, tuple[float, float]]:
    """Place vertices clockwise on a circle, the first one at the top."""
    cfg = config or CircleConfig()
    vertices, _ = _collect(document, parent_id)
    if not vertices:
        return {}

    n = len(vertices)
    max_dim = max(max(c.geometry.width, c.geometry.height) for c in vertices.values())
    r = max(n * max_dim / math.pi, cfg.radius)
    phi = 2 * math.pi / n
    center_x = cfg.start_x + max_dim / 2 + r
    center_y = cfg.start_y + max_dim / 2 + r

    positions: dict[str, tuple[float, float]] = {}
    for i, (cid, cell) in enumerate(vertices.items()):
        cx = center_x + r * math.sin(i * phi)
        cy = center_y - r * math.cos(i * phi)
        positions[cid] = (cx - cell.geometry.width / 2, cy - cell.geometry.height / 2)
    return _apply_positions(document, vertices, positions)


# ---------------------------------------------------------------------------
# Compact tree layout
# ---------------------------------------------------------------------------

def tree_layout(
    document: DiagramDocument,
    parent_id: str = DEFAULT_PARENT_ID,
    config: TreeConfig | None = None,
) -> dict[str, tuple[float, float]]:
    """Lay out a top-down tree (forest) following edge direction.

    Roots are vertices with no incoming edge; if every vertex has one
    (a cycle), the first vertex is the root. Vertices not reached from any
    root start trees of their own. Each subtree gets exactly the width it
    needs, and parents are centered over their children.
    """
    cfg = config or TreeConfig()
    vertices, edges = _collect(document, parent_id)
    if not vertices:
        return {}

    out: dict[str, list[str]] = defaultdict(list)
    has_incoming: set[str] = set()
    for src, tgt in edges:
        out[src].append(tgt)
        has_incoming.add(tgt)

    roots = [cid for cid in vertices if cid not in has_incoming] or [next(iter(vertices))]

    # Spanning forest by BFS so every vertex belongs to exactly one tree
    tree_children: dict[str, list[str]] = defaultdict(list)
    depth: dict[str, int] = {}
    forest: list[str] = []
    for candidate in roots + list(vertices):
        if candidate in depth:
            continue
        forest.append(candidate)
        depth[candidate] = 0
        queue = deque([candidate])
        while queue:
            node = queue.popleft()
            for child in out.get(node, []):
                if child not in depth:
                    depth[child] = depth[node] + 1
                    tree_children[node].append(child)
                    queue.append(child)

    level_height: dict[int, float] = defaultdict(float)
    for cid, d in depth.items():
        level_height[d] = max(level_height[d], vertices[cid].geometry.height)
    level_y: dict[int, float] = {}
    y = cfg.start_y
    for d in range(max(level_height) + 1):
        level_y[d] = y
        y += level_height[d] + cfg.level_distance

    def kids_width(cid: str) -> float:
        kids = tree_children.get(cid, [])
        return sum(subtree_width[k] for k in kids) + cfg.node_distance * max(len(kids) - 1, 0)

    # BFS order puts every child after its parent, so the reverse is post-order
    subtree_width: dict[str, float] = {}
    for cid in reversed(list(depth)):
        subtree_width[cid] = max(vertices[cid].geometry.width, kids_width(cid))

    positions: dict[str, tuple[float, float]] = {}
    left = cfg.start_x
    for root in forest:
        stack = [(root, left)]
        while stack:
            cid, cell_left = stack.pop()
            width = subtree_width[cid]
            positions[cid] = (
                cell_left + (width - vertices[cid].geometry.width) / 2,
                level_y[depth[cid]],
            )
            cursor = cell_left + (width - kids_width(cid)) / 2
            for k in tree_children.get(cid, []):
                stack.append((k, cursor))
                cursor += subtree_width[k] + cfg.node_distance
        left += subtree_width[root] + cfg.node_distance

    return _apply_positions(document, vertices, positions)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_ALGORITHMS: dict[str, tuple[Callable[..., dict[str, tuple[float, float]]], type]] = {
    "hierarchical": (hierarchical_layout, HierarchicalConfig),
    "organic": (organic_layout, OrganicConfig),
    "circle": (circle_layout, CircleConfig),
    "tree": (tree_layout, TreeConfig),
}

LAYOUT_NAMES = frozenset(_ALGORITHMS)


def run_layout(
    document: DiagramDocument,
    name: str,
    parent_id: str = DEFAULT_PARENT_ID,
    options: dict[str, Any] | None = None,
) -> dict[str, tuple[float, float]] | None:
    """Run the named layout; returns None (and changes nothing) for unknown names."""
    entry = _ALGORITHMS.get(name)
    if entry is None:
        logger.warning("Unknown layout '%s', skipping", name)
        return None
    func, config_cls = entry
    return func(document, parent_id, _make_config(config_cls, options or {}))
