"""
Input validation for drawio-bridge command payloads.

Provides reusable validators that produce clear error messages for every
field an orchestrator can send. Validators raise :class:`ValidationError`;
the mutation engine turns it into a ``success: false`` result.
"""

from __future__ import annotations

from typing import Any


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def _wrong_type(field_name: str, expected: str, value: Any) -> ValidationError:
    return ValidationError(f"'{field_name}' must be {expected}, got {type(value).__name__}.")


def _in_range(value: Any, field_name: str, min_val: Any, max_val: Any) -> Any:
    if min_val is not None and value < min_val:
        raise ValidationError(f"'{field_name}' must be >= {min_val}, got {value}.")
    if max_val is not None and value > max_val:
        raise ValidationError(f"'{field_name}' must be <= {max_val}, got {value}.")
    return value


def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Return *value* stripped; blank or non-string input is rejected."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValidationError(f"'{field_name}' must be a non-empty string.")


def validate_string(value: Any, field_name: str, *, allow_empty: bool = True) -> str:
    if not isinstance(value, str):
        raise _wrong_type(field_name, "a string", value)
    if not (allow_empty or value.strip()):
        raise ValidationError(f"'{field_name}' must not be empty.")
    return value


def validate_number(
    value: Any,
    field_name: str,
    *,
    min_val: float | None = None,
    max_val: float | None = None,
) -> float:
    """Accept int or float (never bool) within the optional bounds."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _wrong_type(field_name, "a number", value)
    return _in_range(float(value), field_name, min_val, max_val)


def validate_int(
    value: Any,
    field_name: str,
    *,
    min_val: int | None = None,
    max_val: int | None = None,
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _wrong_type(field_name, "an integer", value)
    return _in_range(value, field_name, min_val, max_val)


def validate_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise _wrong_type(field_name, "a boolean", value)


def validate_list(value: Any, field_name: str, *, min_length: int = 0) -> list:
    if not isinstance(value, list):
        raise _wrong_type(field_name, "a list", value)
    if len(value) < min_length:
        raise ValidationError(
            f"'{field_name}' must have at least {min_length} item(s), got {len(value)}."
        )
    return value


def validate_dict(value: Any, field_name: str) -> dict:
    if isinstance(value, dict):
        return value
    raise _wrong_type(field_name, "an object", value)


# ---------------------------------------------------------------------------
# Configuration validators
# ---------------------------------------------------------------------------

def validate_port(value: Any) -> int:
    """Validate a TCP port number (1..65535).

    Numeric strings are accepted, as the settings form sends text.
    """
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    return validate_int(value, "port", min_val=1, max_val=65535)


# ---------------------------------------------------------------------------
# Node / edge / update dict validators
# ---------------------------------------------------------------------------

def validate_attributes(value: Any, field_name: str) -> dict[str, str]:
    """Validate a custom attribute mapping and stringify its values."""
    if value is None:
        return {}
    validate_dict(value, field_name)
    result: dict[str, str] = {}
    for k, v in value.items():
        if not isinstance(k, str) or not k.strip():
            raise ValidationError(f"'{field_name}' keys must be non-empty strings.")
        if isinstance(v, bool):
            result[k] = "1" if v else "0"
        elif isinstance(v, (str, int, float)):
            result[k] = str(v)
        else:
            raise ValidationError(
                f"'{field_name}' value for '{k}' must be a string or number, "
                f"got {type(v).__name__}."
            )
    return result


def validate_node_dict(n: Any, index: int, field_name: str = "nodes") -> None:
    """Validate a single node dict from a nodes / add_nodes list."""
    if not isinstance(n, dict):
        raise ValidationError(f"Node at {field_name}[{index}] must be an object.")
    if "id" not in n:
        raise ValidationError(f"Node at {field_name}[{index}] missing required key 'id'.")
    if not isinstance(n["id"], str) or not n["id"].strip():
        raise ValidationError(f"Node at {field_name}[{index}]: 'id' must be a non-empty string.")
    if "label" in n and n["label"] is not None and not isinstance(n["label"], str):
        raise ValidationError(f"Node at {field_name}[{index}]: 'label' must be a string.")
    if "style" in n and n["style"] is not None and not isinstance(n["style"], str):
        raise ValidationError(f"Node at {field_name}[{index}]: 'style' must be a string.")
    if "parent" in n and n["parent"] is not None and not isinstance(n["parent"], str):
        raise ValidationError(f"Node at {field_name}[{index}]: 'parent' must be a string.")
    for key in ("attributes", "data"):
        if n.get(key) is not None:
            validate_attributes(n[key], f"{field_name}[{index}].{key}")


def validate_edge_dict(e: Any, index: int, field_name: str = "edges") -> None:
    """Validate a single edge dict. Endpoints are checked for shape only;
    resolving them against the document happens at insertion time."""
    if not isinstance(e, dict):
        raise ValidationError(f"Edge at {field_name}[{index}] must be an object.")
    for key in ("source", "target"):
        if key not in e:
            raise ValidationError(f"Edge at {field_name}[{index}] missing required key '{key}'.")
        if not isinstance(e[key], str) or not e[key].strip():
            raise ValidationError(f"Edge at {field_name}[{index}]: '{key}' must be a non-empty string.")
    if e.get("id") is not None and not isinstance(e["id"], str):
        raise ValidationError(f"Edge at {field_name}[{index}]: 'id' must be a string.")
    if e.get("label") is not None and not isinstance(e["label"], str):
        raise ValidationError(f"Edge at {field_name}[{index}]: 'label' must be a string.")
    if e.get("style") is not None and not isinstance(e["style"], str):
        raise ValidationError(f"Edge at {field_name}[{index}]: 'style' must be a string.")


def validate_update_dict(u: Any, index: int) -> None:
    """Validate a single update dict from the update_nodes list."""
    if not isinstance(u, dict):
        raise ValidationError(f"Update at index {index} must be an object.")
    if "id" not in u:
        raise ValidationError(f"Update at index {index} missing required key 'id'.")
    if not isinstance(u["id"], str) or not u["id"].strip():
        raise ValidationError(f"Update at index {index}: 'id' must be a non-empty string.")
    if "label" in u and not isinstance(u["label"], str):
        raise ValidationError(f"Update at index {index}: 'label' must be a string.")
    if "style" in u and not isinstance(u["style"], str):
        raise ValidationError(f"Update at index {index}: 'style' must be a string.")


def validate_id_list(value: Any, field_name: str) -> list[str]:
    """Validate a list of cell IDs (None counts as empty)."""
    if value is None:
        return []
    validate_list(value, field_name)
    for i, cid in enumerate(value):
        if not isinstance(cid, str):
            raise ValidationError(
                f"'{field_name}[{i}]' must be a string, got {type(cid).__name__}."
            )
    return value


def validate_layout_name(value: Any, field_name: str = "layout") -> str | None:
    """Normalize a layout selector; None / "" / "none" mean no layout."""
    if value is None:
        return None
    name = validate_string(value, field_name).strip().lower()
    if not name or name == "none":
        return None
    return name


def validate_layout_options(value: Any) -> dict[str, float]:
    """Validate per-request layout parameters (all must be > 0)."""
    if value is None:
        return {}
    validate_dict(value, "layout_options")
    return {
        k: validate_number(v, f"layout_options.{k}", min_val=0.001)
        for k, v in value.items()
    }
