"""
Style strings for draw.io cells.

Provides a small fluent API to read and compose semicolon-delimited style
strings, plus the default vertex and edge styles applied when a command
does not specify one.
"""

from __future__ import annotations

from typing import Optional


# ---------------------------------------------------------------------------
# Style builder
# ---------------------------------------------------------------------------

class StyleBuilder:
    """Fluent reader/writer for semicolon-delimited draw.io style strings."""

    def __init__(self, base: str = "") -> None:
        self._parts: dict[str, str] = {}
        self._prefix: str = ""
        if base:
            self._parse(base)

    def _parse(self, raw: str) -> None:
        for tok in (t.strip() for t in raw.split(";")):
            if not tok:
                continue
            if "=" in tok:
                k, v = tok.split("=", 1)
                self._parts[k] = v
            else:
                # Bare shape token such as "ellipse" or "rhombus"
                self._prefix = tok

    # -- reading --

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._parts.get(key, default)

    def get_float(self, key: str, default: float = 0.0) -> float:
        raw = self._parts.get(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            return default

    def flag(self, key: str) -> bool:
        """True when *key* is set to ``1``."""
        return self._parts.get(key) == "1"

    @property
    def shape_name(self) -> str:
        """Effective shape: explicit ``shape=`` wins over a bare prefix token."""
        return self._parts.get("shape") or self._prefix or "rectangle"

    # -- writing --

    def rounded(self, on: bool = True) -> StyleBuilder:
        self._parts["rounded"] = "1" if on else "0"
        return self

    def white_space_wrap(self) -> StyleBuilder:
        self._parts["whiteSpace"] = "wrap"
        return self

    def html(self) -> StyleBuilder:
        self._parts["html"] = "1"
        return self

    def autosize(self, on: bool = True) -> StyleBuilder:
        self._parts["autosize"] = "1" if on else "0"
        return self

    def edge_style(self, style: str) -> StyleBuilder:
        self._parts["edgeStyle"] = style
        return self

    def build(self) -> str:
        parts: list[str] = []
        if self._prefix:
            parts.append(self._prefix)
        parts.extend(f"{k}={v}" for k, v in self._parts.items())
        return ";".join(parts) + ";"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

# Rounded, wrapping, auto-sized box
DEFAULT_VERTEX_STYLE = StyleBuilder().rounded().white_space_wrap().html().autosize().build()
DEFAULT_EDGE_STYLE = StyleBuilder().edge_style("orthogonalEdgeStyle").rounded().build()
