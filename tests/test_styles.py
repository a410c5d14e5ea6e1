"""Tests for style string parsing and the default styles."""

from drawio_bridge.styles import DEFAULT_EDGE_STYLE, DEFAULT_VERTEX_STYLE, StyleBuilder


def test_default_styles() -> None:
    assert DEFAULT_VERTEX_STYLE == "rounded=1;whiteSpace=wrap;html=1;autosize=1;"
    assert DEFAULT_EDGE_STYLE == "edgeStyle=orthogonalEdgeStyle;rounded=1;"


def test_parse_keys_and_prefix() -> None:
    s = StyleBuilder("ellipse;whiteSpace=wrap;fillColor=#dae8fc;")
    assert s.shape_name == "ellipse"
    assert s.get("fillColor") == "#dae8fc"
    assert s.get("strokeColor", "#000000") == "#000000"


def test_explicit_shape_wins() -> None:
    assert StyleBuilder("ellipse;shape=rhombus;").shape_name == "rhombus"
    assert StyleBuilder("").shape_name == "rectangle"


def test_get_float() -> None:
    s = StyleBuilder("fontSize=14;strokeWidth=abc;")
    assert s.get_float("fontSize", 12) == 14.0
    assert s.get_float("strokeWidth", 1) == 1
    assert s.get_float("missing", 3) == 3


def test_flag() -> None:
    s = StyleBuilder("rounded=1;dashed=0;")
    assert s.flag("rounded")
    assert not s.flag("dashed")
    assert not s.flag("html")


def test_build_keeps_base() -> None:
    s = StyleBuilder("rhombus;fillColor=#fff;").rounded(False).build()
    assert s == "rhombus;fillColor=#fff;rounded=0;"


def test_value_with_equals_sign() -> None:
    s = StyleBuilder("image=data:image/png,a=b;")
    assert s.get("image") == "data:image/png,a=b"
