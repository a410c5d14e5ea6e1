"""Tests for SVG serialization."""

import base64
import xml.etree.ElementTree as ET

from drawio_bridge.models import DiagramDocument
from drawio_bridge.svg import SVG_NS, label_lines, render_svg, svg_to_base64

NS = {"svg": SVG_NS}


def _two_boxes() -> DiagramDocument:
    doc = DiagramDocument()
    doc.add_vertex("Start", 100, 100, 120, 60, "rounded=1;", cell_id="a")
    doc.add_vertex("End", 100, 300, 120, 60, "ellipse;", cell_id="b")
    doc.add_edge("a", "b", "next", cell_id="ab")
    return doc


def test_label_lines() -> None:
    assert label_lines("One<br>Two<BR/>Three") == ["One", "Two", "Three"]
    assert label_lines("<b>Bold</b> &amp; more") == ["Bold & more"]
    assert label_lines("") == []


def test_empty_document_is_valid_svg() -> None:
    root = ET.fromstring(render_svg(DiagramDocument()))
    assert root.tag == f"{{{SVG_NS}}}svg"


def test_viewbox_is_cropped_to_content() -> None:
    root = ET.fromstring(render_svg(_two_boxes(), border=10))
    assert root.get("viewBox") == "90 90 140 280"
    assert root.get("width") == "140px"


def test_shapes_follow_style() -> None:
    root = ET.fromstring(render_svg(_two_boxes()))
    groups = {g.get("data-cell-id"): g for g in root.iter(f"{{{SVG_NS}}}g") if g.get("data-cell-id")}
    assert set(groups) == {"a", "b", "ab"}
    rect = groups["a"].find("svg:rect", NS)
    assert rect is not None and rect.get("rx") is not None
    assert groups["b"].find("svg:ellipse", NS) is not None


def test_edge_is_clipped_to_borders() -> None:
    root = ET.fromstring(render_svg(_two_boxes()))
    path = root.find(".//svg:g[@data-cell-id='ab']/svg:path", NS)
    assert path.get("d") == "M 160 160 L 160 300"
    assert path.get("marker-end") == "url(#arrow)"


def test_labels_are_rendered() -> None:
    svg = render_svg(_two_boxes())
    assert "Start" in svg
    assert "End" in svg
    assert "next" in svg


def test_edge_without_terminal_is_skipped() -> None:
    doc = _two_boxes()
    doc.add_edge("a", "gone", cell_id="dangling")
    root = ET.fromstring(render_svg(doc))
    assert root.find(".//svg:g[@data-cell-id='dangling']", NS) is None
    assert root.find(".//svg:g[@data-cell-id='ab']", NS) is not None


def test_base64_round_trip() -> None:
    svg = render_svg(_two_boxes())
    assert base64.b64decode(svg_to_base64(svg)).decode("utf-8") == svg
