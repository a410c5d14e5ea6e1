"""Tests for the graph mutation engine."""

import base64
from typing import Any

import pytest

from drawio_bridge.engine import GraphMutationEngine
from drawio_bridge.host import InMemoryGraphHost
from drawio_bridge.models import DiagramDocument
from drawio_bridge.protocol import Command


def _engine() -> GraphMutationEngine:
    return GraphMutationEngine(InMemoryGraphHost())


def _run(engine: GraphMutationEngine, event: str, **payload: Any) -> dict[str, Any]:
    return engine.handle(Command(event, "req-1", payload))


def _state(engine: GraphMutationEngine) -> dict[str, Any]:
    return _run(engine, "get_diagram_state")


def _node(state: dict[str, Any], cid: str) -> dict[str, Any]:
    return next(n for n in state["nodes"] if n["id"] == cid)


# ===================================================================
# render_subgraph
# ===================================================================

class TestRenderSubgraph:

    def test_start_end_tree(self) -> None:
        engine = _engine()
        result = _run(
            engine, "render_subgraph",
            nodes=[{"id": "a", "label": "Start"}, {"id": "b", "label": "End"}],
            edges=[{"source": "a", "target": "b"}],
            layout="tree",
        )
        assert result == {"success": True, "node_count": 2, "edge_count": 1, "skipped_edges": 0}

        state = _state(engine)
        assert state["success"] is True
        assert [n["id"] for n in state["nodes"]] == ["a", "b"]
        assert len(state["edges"]) == 1
        edge = state["edges"][0]
        assert (edge["source"], edge["target"]) == ("a", "b")
        assert edge["id"]
        a, b = _node(state, "a")["geometry"], _node(state, "b")["geometry"]
        assert a["y"] < b["y"]
        assert a["x"] <= b["x"]

    def test_counts_match_request(self) -> None:
        engine = _engine()
        nodes = [{"id": f"n{i}", "label": f"Node {i}"} for i in range(5)]
        edges = [{"source": f"n{i}", "target": f"n{i + 1}"} for i in range(4)]
        result = _run(engine, "render_subgraph", nodes=nodes, edges=edges)
        assert (result["node_count"], result["edge_count"]) == (5, 4)
        state = _state(engine)
        assert len(state["nodes"]) == 5
        assert len(state["edges"]) == 4

    def test_unresolved_edge_is_skipped_but_counted(self) -> None:
        engine = _engine()
        result = _run(
            engine, "render_subgraph",
            nodes=[{"id": "a"}],
            edges=[{"source": "a", "target": "ghost"}],
        )
        assert result["success"] is True
        assert result["edge_count"] == 1
        assert result["skipped_edges"] == 1
        assert _state(engine)["edges"] == []

    def test_edges_resolve_against_existing_cells(self) -> None:
        engine = _engine()
        _run(engine, "render_subgraph", nodes=[{"id": "a"}])
        _run(engine, "render_subgraph", nodes=[{"id": "b"}], edges=[{"source": "a", "target": "b"}])
        assert len(_state(engine)["edges"]) == 1

    def test_defaults_and_autosize(self) -> None:
        engine = _engine()
        _run(engine, "render_subgraph", nodes=[{"id": "a", "label": "Hi"}])
        node = _node(_state(engine), "a")
        assert node["style"] == "rounded=1;whiteSpace=wrap;html=1;autosize=1;"
        assert node["geometry"] == {"x": 0.0, "y": 0.0, "width": 120.0, "height": 50.0}

    def test_clear_first(self) -> None:
        engine = _engine()
        _run(engine, "render_subgraph", nodes=[{"id": "old"}, {"id": "older"}],
             edges=[{"source": "old", "target": "older"}])
        _run(engine, "render_subgraph", nodes=[{"id": "new"}], clear_first=True)
        state = _state(engine)
        assert [n["id"] for n in state["nodes"]] == ["new"]
        assert state["edges"] == []

    def test_colliding_id_maps_to_new_cell(self) -> None:
        engine = _engine()
        _run(engine, "render_subgraph", nodes=[{"id": "a", "label": "First"}])
        _run(
            engine, "render_subgraph",
            nodes=[{"id": "a", "label": "Second"}, {"id": "b"}],
            edges=[{"source": "a", "target": "b"}],
        )
        state = _state(engine)
        assert _node(state, "a")["label"] == "First"
        second = next(n for n in state["nodes"] if n["label"] == "Second")
        assert second["id"] != "a"
        assert state["edges"][0]["source"] == second["id"]

    def test_parent_and_depth_first_state(self) -> None:
        engine = _engine()
        _run(
            engine, "render_subgraph",
            nodes=[{"id": "group"}, {"id": "inner", "parent": "group"}, {"id": "after"}],
        )
        assert [n["id"] for n in _state(engine)["nodes"]] == ["group", "inner", "after"]
        assert engine.host.get_cell("inner").parent == "group"

    def test_unknown_parent_falls_back_to_root(self) -> None:
        engine = _engine()
        _run(engine, "render_subgraph", nodes=[{"id": "a", "parent": "missing"}])
        assert engine.host.get_cell("a").parent == "1"

    def test_attributes_and_data_alias(self) -> None:
        engine = _engine()
        _run(
            engine, "render_subgraph",
            nodes=[
                {"id": "a", "attributes": {"owner": "ops", "tier": 2}},
                {"id": "b", "data": {"legacy": True}},
            ],
        )
        assert engine.host.get_cell("a").attributes == {"owner": "ops", "tier": "2"}
        assert engine.host.get_cell("b").attributes == {"legacy": "1"}

    def test_layout_options_override_defaults(self) -> None:
        engine = _engine()
        _run(
            engine, "render_subgraph",
            nodes=[{"id": "a"}, {"id": "b"}],
            edges=[{"source": "a", "target": "b"}],
            layout="tree",
            layout_options={"level_distance": 100},
        )
        state = _state(engine)
        assert _node(state, "b")["geometry"]["y"] - _node(state, "a")["geometry"]["y"] == 150

    def test_long_chain_with_tree_layout(self) -> None:
        engine = _engine()
        nodes = [{"id": f"n{i}"} for i in range(1200)]
        edges = [{"source": f"n{i}", "target": f"n{i + 1}"} for i in range(1199)]
        result = _run(engine, "render_subgraph", nodes=nodes, edges=edges, layout="tree")
        assert result == {"success": True, "node_count": 1200, "edge_count": 1199, "skipped_edges": 0}
        state = _state(engine)
        assert len(state["nodes"]) == 1200
        assert _node(state, "n1199")["geometry"]["y"] > _node(state, "n0")["geometry"]["y"]

    def test_iteration_options_are_clamped(self) -> None:
        engine = _engine()
        result = _run(
            engine, "render_subgraph",
            nodes=[{"id": "a"}, {"id": "b"}],
            edges=[{"source": "a", "target": "b"}],
            layout="organic",
            layout_options={"max_iterations": 1e12},
        )
        assert result["success"] is True

    def test_unknown_layout_leaves_geometry(self) -> None:
        engine = _engine()
        result = _run(engine, "render_subgraph", nodes=[{"id": "a"}], layout="spiral")
        assert result["success"] is True
        assert _node(_state(engine), "a")["geometry"]["x"] == 0

    def test_single_update_notification(self) -> None:
        doc = DiagramDocument()
        batches: list = []
        doc.add_listener(batches.append)
        engine = GraphMutationEngine(InMemoryGraphHost(doc))
        _run(
            engine, "render_subgraph",
            nodes=[{"id": "a"}, {"id": "b"}],
            edges=[{"source": "a", "target": "b"}],
            clear_first=True,
            layout="hierarchical",
        )
        assert len(batches) == 1

    def test_return_svg(self) -> None:
        engine = _engine()
        result = _run(engine, "render_subgraph", nodes=[{"id": "a", "label": "Alpha"}], return_svg=True)
        svg = base64.b64decode(result["svg_base64"]).decode("utf-8")
        assert svg.startswith("<svg")
        assert "Alpha" in svg

    def test_no_svg_unless_requested(self) -> None:
        result = _run(_engine(), "render_subgraph", nodes=[{"id": "a"}])
        assert "svg_base64" not in result

    @pytest.mark.parametrize("payload,message", [
        ({}, "'nodes' must be a list"),
        ({"nodes": [{"label": "x"}]}, "missing required key 'id'"),
        ({"nodes": [], "edges": [{"source": "a"}]}, "'target'"),
        ({"nodes": [], "clear_first": "yes"}, "'clear_first' must be a boolean"),
    ])
    def test_invalid_payload(self, payload: dict, message: str) -> None:
        engine = _engine()
        result = engine.handle(Command("render_subgraph", "r", payload))
        assert result["success"] is False
        assert message in result["error"]
        assert _state(engine)["nodes"] == []

    def test_invalid_payload_changes_nothing(self) -> None:
        engine = _engine()
        result = _run(engine, "render_subgraph", nodes=[{"id": "a"}, {"id": 5}])
        assert result["success"] is False
        assert _state(engine)["nodes"] == []


# ===================================================================
# modify_subgraph
# ===================================================================

def _abc() -> GraphMutationEngine:
    """Chain a -> b -> c with edge ids ab and bc."""
    engine = _engine()
    _run(
        engine, "render_subgraph",
        nodes=[{"id": "a", "label": "A"}, {"id": "b", "label": "B"}, {"id": "c", "label": "C"}],
        edges=[
            {"id": "ab", "source": "a", "target": "b"},
            {"id": "bc", "source": "b", "target": "c"},
        ],
    )
    return engine


class TestModifySubgraph:

    def test_remove_node_cascades_to_edges(self) -> None:
        engine = _abc()
        result = _run(engine, "modify_subgraph", remove_node_ids=["a"])
        assert result == {"success": True, "skipped_edges": 0}
        state = _state(engine)
        assert [n["id"] for n in state["nodes"]] == ["b", "c"]
        assert [e["id"] for e in state["edges"]] == ["bc"]

    def test_remove_edge(self) -> None:
        engine = _abc()
        _run(engine, "modify_subgraph", remove_edge_ids=["bc"])
        assert [e["id"] for e in _state(engine)["edges"]] == ["ab"]

    def test_unknown_ids_are_ignored(self) -> None:
        engine = _abc()
        result = _run(
            engine, "modify_subgraph",
            remove_node_ids=["nope"], remove_edge_ids=["nada"],
            update_nodes=[{"id": "ghost", "label": "Boo"}],
        )
        assert result["success"] is True
        assert len(_state(engine)["nodes"]) == 3

    def test_add_nodes_and_edges(self) -> None:
        engine = _abc()
        result = _run(
            engine, "modify_subgraph",
            add_nodes=[{"id": "d", "label": "D"}],
            add_edges=[{"source": "c", "target": "d"}, {"source": "d", "target": "zzz"}],
        )
        assert result["skipped_edges"] == 1
        state = _state(engine)
        assert _node(state, "d")["label"] == "D"
        assert len(state["edges"]) == 3

    def test_removal_runs_before_insertion(self) -> None:
        engine = _abc()
        _run(
            engine, "modify_subgraph",
            remove_node_ids=["a"],
            add_nodes=[{"id": "a", "label": "A2"}],
            add_edges=[{"source": "a", "target": "c"}],
        )
        state = _state(engine)
        assert _node(state, "a")["label"] == "A2"
        assert {(e["source"], e["target"]) for e in state["edges"]} == {("b", "c"), ("a", "c")}

    def test_update_label_resizes(self) -> None:
        engine = _abc()
        _run(
            engine, "modify_subgraph",
            update_nodes=[{"id": "a", "label": "A much longer label than before", "style": "ellipse;"}],
        )
        node = _node(_state(engine), "a")
        assert node["label"] == "A much longer label than before"
        assert node["style"] == "ellipse;"
        assert node["geometry"]["width"] > 120

    def test_relayout(self) -> None:
        engine = _abc()
        _run(engine, "modify_subgraph", relayout="hierarchical")
        state = _state(engine)
        ys = [_node(state, c)["geometry"]["y"] for c in "abc"]
        assert ys == sorted(ys)
        assert len(set(ys)) == 3

    def test_relayout_true_means_hierarchical(self) -> None:
        engine = _abc()
        _run(engine, "modify_subgraph", relayout=True)
        state = _state(engine)
        assert _node(state, "a")["geometry"]["y"] == 20
        assert _node(state, "b")["geometry"]["y"] == 190

    def test_return_svg(self) -> None:
        engine = _abc()
        result = _run(engine, "modify_subgraph", return_svg=True)
        assert base64.b64decode(result["svg_base64"]).startswith(b"<svg")

    def test_single_update_notification(self) -> None:
        engine = _abc()
        batches: list = []
        engine.host.document.add_listener(batches.append)
        _run(
            engine, "modify_subgraph",
            remove_node_ids=["c"], add_nodes=[{"id": "d"}],
            update_nodes=[{"id": "a", "label": "Z"}], relayout="circle",
        )
        assert len(batches) == 1

    def test_invalid_update(self) -> None:
        engine = _abc()
        result = _run(engine, "modify_subgraph", remove_node_ids=["a"], update_nodes=[{"label": "x"}])
        assert result["success"] is False
        assert "Update at index 0" in result["error"]
        assert len(_state(engine)["nodes"]) == 3


# ===================================================================
# get_diagram_state / export_diagram
# ===================================================================

def test_state_of_empty_document() -> None:
    assert _state(_engine()) == {"success": True, "nodes": [], "edges": []}


def test_state_is_stable() -> None:
    engine = _abc()
    assert _state(engine) == _state(engine)


def test_state_edge_fields() -> None:
    engine = _engine()
    _run(
        engine, "render_subgraph",
        nodes=[{"id": "a"}, {"id": "b"}],
        edges=[{"id": "e1", "source": "a", "target": "b", "label": "go", "style": "dashed=1;"}],
    )
    assert _state(engine)["edges"] == [
        {"id": "e1", "source": "a", "target": "b", "label": "go", "style": "dashed=1;"},
    ]


def test_export_svg_text() -> None:
    engine = _engine()
    _run(engine, "render_subgraph", nodes=[{"id": "a", "label": "Alpha"}])
    result = _run(engine, "export_diagram", format="svg_text")
    assert result["success"] is True
    assert result["svg_text"].startswith("<svg")


def test_export_defaults_to_base64() -> None:
    engine = _engine()
    result = _run(engine, "export_diagram")
    assert base64.b64decode(result["svg_base64"]).startswith(b"<svg")
    assert "svg_text" not in result


# ===================================================================
# Failure handling
# ===================================================================

class _ExplodingHost(InMemoryGraphHost):

    def insert_vertex(self, *args: Any, **kwargs: Any) -> Any:
        raise RuntimeError("host exploded")

    def get_svg(self) -> str:
        raise RuntimeError("no renderer")


def test_unknown_event() -> None:
    engine = _engine()
    assert _run(engine, "bogus_event") == {"success": False, "error": "Unknown event: bogus_event"}


def test_host_exception_becomes_failure() -> None:
    engine = GraphMutationEngine(_ExplodingHost())
    result = _run(engine, "render_subgraph", nodes=[{"id": "a"}])
    assert result == {"success": False, "error": "host exploded"}


def test_svg_failure_yields_none() -> None:
    engine = GraphMutationEngine(_ExplodingHost())
    result = _run(engine, "export_diagram")
    assert result == {"success": True, "svg_base64": None}


def test_custom_layout_table() -> None:
    engine = GraphMutationEngine(InMemoryGraphHost(), layouts={"tree": {"level_distance": 10}})
    _run(
        engine, "render_subgraph",
        nodes=[{"id": "a"}, {"id": "b"}],
        edges=[{"source": "a", "target": "b"}],
        layout="hierarchical",
    )
    state = _state(engine)
    # Not in the table, so no layout ran
    assert _node(state, "b")["geometry"]["y"] == 0
    _run(engine, "modify_subgraph", relayout="tree")
    state = _state(engine)
    assert _node(state, "b")["geometry"]["y"] - _node(state, "a")["geometry"]["y"] == 60
