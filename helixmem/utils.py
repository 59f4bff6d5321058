"""Small shared helpers."""

import os
from pathlib import Path


def get_helix_home() -> Path:
    """Directory for the default database and logs."""
    override = os.environ.get("HELIXMEM_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".helixmem"


def parse_id(value, field_name: str = "id") -> int:
    """Accept ``12``, ``"12"`` or ``"#12"`` and return the integer id.

    Raises:
        ValueError: If the value is not a positive integer reference
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer id")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip().lstrip("#")
        if not text.isdigit():
            raise ValueError(f"{field_name} must be an integer id, got {value!r}")
        result = int(text)
    else:
        raise ValueError(f"{field_name} must be an integer id, got {type(value).__name__}")
    if result <= 0:
        raise ValueError(f"{field_name} must be positive, got {result}")
    return result


def parse_id_list(value, field_name: str = "ids") -> list:
    """Parse a list of ids or a comma separated string, preserving order and dropping repeats."""
    if isinstance(value, str):
        parts = [p for p in value.split(",") if p.strip()]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    elif isinstance(value, int) and not isinstance(value, bool):
        parts = [value]
    else:
        raise ValueError(f"{field_name} must be a list of ids or a comma separated string")
    seen = []
    for part in parts:
        memory_id = parse_id(part, field_name)
        if memory_id not in seen:
            seen.append(memory_id)
    return seen
