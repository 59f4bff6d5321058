"""Shared sanitization utilities for the MCP layer.

Validators turn raw MCP arguments into clean keyword arguments for the
tools. They raise ValueError; the server reports it as invalid input.
"""

from typing import Any, Dict, List, Optional

from helixmem.validation import sanitize_string  # noqa: F401 - re-exported


def validate_enum(
    value: Any,
    field_name: str,
    valid_values: List[str],
    default: Optional[str] = None,
    required: bool = False,
) -> Optional[str]:
    """Return ``value`` if it is one of ``valid_values``, else ``default`` when absent."""
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return default
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")

    if value not in valid_values:
        raise ValueError(f"{field_name} must be one of {valid_values}, got '{value}'")
    return value


def sanitize_ref(value: Any, field_name: str, max_length: int = 200) -> Optional[Any]:
    """Pass through an id or name reference (``12``, ``"#12"``, ``"Project Notes"``)."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a string or integer")
    if isinstance(value, int):
        return value
    return sanitize_string(value, field_name, max_length, required=False)


def sanitize_id_list(value: Any, field_name: str, max_items: int = 50) -> Optional[Any]:
    """Accept a comma separated string or a list of ids; parsing happens in the tool."""
    if value is None:
        return None
    if isinstance(value, list):
        if len(value) > max_items:
            raise ValueError(f"{field_name} too many items (max {max_items}, got {len(value)})")
        return [sanitize_ref(item, f"{field_name}[{i}]") for i, item in enumerate(value)]
    return sanitize_string(value, field_name, 1000, required=False)


def pick_present(arguments: Dict[str, Any], sanitized: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys the caller did not send, so tools can tell omitted from empty."""
    return {k: v for k, v in sanitized.items() if k in arguments}
