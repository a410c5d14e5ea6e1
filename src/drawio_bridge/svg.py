"""
SVG serialization of a diagram document.

Produces a cropped, self-contained SVG image: edges are drawn as straight
lines clipped to the shape borders with an arrow marker, vertices as
rectangles, ellipses or rhombi depending on their style.
"""

from __future__ import annotations

import base64
import html as _html
import re
import xml.etree.ElementTree as ET

from drawio_bridge.models import CellBounds, DiagramDocument, vertex_bounds
from drawio_bridge.styles import StyleBuilder

SVG_NS = "http://www.w3.org/2000/svg"

_LINE_HEIGHT = 1.2


def label_lines(label: str) -> list[str]:
    """Plain-text lines of an (optionally HTML) label."""
    text = re.sub(r"<br\s*/?>", "\n", label or "", flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = _html.unescape(text)
    return [line.strip() for line in text.split("\n") if line.strip()]


def _fmt(value: float) -> str:
    return f"{value:g}"


def _border_point(b: CellBounds, tx: float, ty: float) -> tuple[float, float]:
    """Point where the ray from the center of *b* towards (tx, ty) leaves it."""
    dx, dy = tx - b.cx, ty - b.cy
    if dx == 0 and dy == 0:
        return b.cx, b.cy
    scale_x = (b.width / 2) / abs(dx) if dx else float("inf")
    scale_y = (b.height / 2) / abs(dy) if dy else float("inf")
    scale = min(scale_x, scale_y, 1.0)
    return b.cx + dx * scale, b.cy + dy * scale


def _add_text(
    parent: ET.Element, lines: list[str], x: float, y: float, style: StyleBuilder,
) -> None:
    if not lines:
        return
    font_size = style.get_float("fontSize", 12)
    text_el = ET.SubElement(parent, "text", attrib={
        "x": _fmt(x),
        "y": _fmt(y - (len(lines) - 1) * font_size * _LINE_HEIGHT / 2),
        "fill": style.get("fontColor", "#000000"),
        "font-family": style.get("fontFamily", "Helvetica"),
        "font-size": _fmt(font_size),
        "text-anchor": "middle",
        "dominant-baseline": "central",
    })
    for i, line in enumerate(lines):
        tspan = ET.SubElement(text_el, "tspan", attrib={"x": _fmt(x)})
        if i:
            tspan.set("dy", _fmt(font_size * _LINE_HEIGHT))
        tspan.text = line


def render_svg(document: DiagramDocument, border: float = 0) -> str:
    """Serialize *document* to SVG markup, cropped to its content."""
    bounds = vertex_bounds(document)
    if bounds:
        min_x = min(b.x for b in bounds.values()) - border
        min_y = min(b.y for b in bounds.values()) - border
        max_x = max(b.right for b in bounds.values()) + border
        max_y = max(b.bottom for b in bounds.values()) + border
    else:
        min_x = min_y = 0
        max_x = max_y = 1
    width, height = max_x - min_x, max_y - min_y

    svg = ET.Element("svg", attrib={
        "xmlns": SVG_NS,
        "version": "1.1",
        "width": f"{_fmt(width)}px",
        "height": f"{_fmt(height)}px",
        "viewBox": f"{_fmt(min_x)} {_fmt(min_y)} {_fmt(width)} {_fmt(height)}",
    })
    defs = ET.SubElement(svg, "defs")
    marker = ET.SubElement(defs, "marker", attrib={
        "id": "arrow", "viewBox": "0 0 10 10", "refX": "10", "refY": "5",
        "markerWidth": "8", "markerHeight": "8", "orient": "auto-start-reverse",
    })
    ET.SubElement(marker, "path", attrib={"d": "M 0 0 L 10 5 L 0 10 z", "fill": "context-stroke"})

    root_group = ET.SubElement(svg, "g")

    for cell in document.edges():
        src = bounds.get(cell.source or "")
        tgt = bounds.get(cell.target or "")
        if src is None or tgt is None:
            continue
        style = StyleBuilder(cell.style)
        x1, y1 = _border_point(src, tgt.cx, tgt.cy)
        x2, y2 = _border_point(tgt, src.cx, src.cy)
        group = ET.SubElement(root_group, "g", attrib={"data-cell-id": cell.id})
        line = ET.SubElement(group, "path", attrib={
            "d": f"M {_fmt(x1)} {_fmt(y1)} L {_fmt(x2)} {_fmt(y2)}",
            "fill": "none",
            "stroke": style.get("strokeColor", "#000000"),
            "stroke-width": style.get("strokeWidth", "1"),
        })
        if style.get("endArrow", "classic") != "none":
            line.set("marker-end", "url(#arrow)")
        if style.flag("dashed"):
            line.set("stroke-dasharray", "3 3")
        _add_text(group, label_lines(cell.value), (x1 + x2) / 2, (y1 + y2) / 2, style)

    for cell in document.vertices():
        b = bounds.get(cell.id)
        if b is None:
            continue
        style = StyleBuilder(cell.style)
        paint = {
            "fill": style.get("fillColor", "#ffffff"),
            "stroke": style.get("strokeColor", "#000000"),
            "stroke-width": style.get("strokeWidth", "1"),
        }
        group = ET.SubElement(root_group, "g", attrib={"data-cell-id": cell.id})
        shape = style.shape_name
        if shape in ("ellipse", "doubleEllipse"):
            ET.SubElement(group, "ellipse", attrib={
                "cx": _fmt(b.cx), "cy": _fmt(b.cy),
                "rx": _fmt(b.width / 2), "ry": _fmt(b.height / 2), **paint,
            })
        elif shape == "rhombus":
            points = [(b.cx, b.y), (b.right, b.cy), (b.cx, b.bottom), (b.x, b.cy)]
            ET.SubElement(group, "polygon", attrib={
                "points": " ".join(f"{_fmt(px)},{_fmt(py)}" for px, py in points), **paint,
            })
        elif shape != "text":
            rect = ET.SubElement(group, "rect", attrib={
                "x": _fmt(b.x), "y": _fmt(b.y),
                "width": _fmt(b.width), "height": _fmt(b.height), **paint,
            })
            if style.flag("rounded"):
                arc = min(b.width, b.height) * 0.15
                rect.set("rx", _fmt(arc))
                rect.set("ry", _fmt(arc))
        _add_text(group, label_lines(cell.value), b.cx, b.cy, style)

    return ET.tostring(svg, encoding="unicode")


def svg_to_base64(svg_text: str) -> str:
    """Encode SVG markup as base64 of its UTF-8 bytes."""
    return base64.b64encode(svg_text.encode("utf-8")).decode("ascii")
