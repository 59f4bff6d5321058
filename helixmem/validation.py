"""Input validation helpers shared by stores, tools, CLI and MCP layers.

- ``sanitize_string`` validates a string and strips control characters
- ``sanitize_number`` validates a number and rejects NaN and Infinity
- ``coerce_float`` accepts numeric strings as well (agent tool input)
- ``coerce_int`` accepts integer strings but nothing fractional

All failures raise :class:`helixmem.protocols.ValidationError`, which is
also a ``ValueError``.
"""

import math
import re
from typing import Any, Optional

from helixmem.protocols import ValidationError

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_string(
    value: Any, field_name: str, max_length: int = 1000, required: bool = True
) -> str:
    """Sanitize and validate string inputs.

    Args:
        value: The value to sanitize.
        field_name: Name of the field for error messages.
        max_length: Maximum allowed string length.
        required: If True, strings that are empty once control characters
            are removed are rejected.

    Returns:
        Sanitized string.

    Raises:
        ValidationError: With ``code`` ``required``, ``blank``, ``too_long`` or ``invalid``.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field_name} is required", field=field_name, code="required")
        return ""

    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be a string, got {type(value).__name__}",
            field=field_name,
            code="invalid",
        )

    # Remove null bytes and control characters except newlines and tabs
    value = _CONTROL_CHARS.sub("", value)

    if required and not value.strip():
        raise ValidationError(f"{field_name} cannot be blank", field=field_name, code="blank")

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} too long (max {max_length} characters, got {len(value)})",
            field=field_name,
            code="too_long",
        )

    return value


def sanitize_number(
    value: Any,
    field_name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    default: Optional[float] = None,
) -> float:
    """Validate numeric inputs, rejecting NaN and Infinity."""
    if value is None:
        if default is not None:
            return default
        raise ValidationError(f"{field_name} is required", field=field_name, code="required")

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"{field_name} must be a number, got {type(value).__name__}",
            field=field_name,
            code="invalid",
        )

    if math.isnan(value) or math.isinf(value):
        raise ValidationError(
            f"{field_name} must be a finite number, got {value}", field=field_name, code="invalid"
        )

    if min_val is not None and value < min_val:
        raise ValidationError(
            f"{field_name} must be >= {min_val}, got {value}", field=field_name, code="out_of_range"
        )

    if max_val is not None and value > max_val:
        raise ValidationError(
            f"{field_name} must be <= {max_val}, got {value}", field=field_name, code="out_of_range"
        )

    return float(value)


def coerce_float(
    value: Any,
    field_name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> float:
    """Like sanitize_number but accepts numeric strings such as ``"0.8"``."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValidationError(f"{field_name} is required", field=field_name, code="required")
        try:
            value = float(text)
        except ValueError:
            raise ValidationError(
                f"{field_name} must be a number, got {text!r}", field=field_name, code="invalid"
            ) from None
    return sanitize_number(value, field_name, min_val=min_val, max_val=max_val)


def coerce_int(value: Any, field_name: str, min_val: Optional[int] = None) -> int:
    """Parse an exact integer from an int, an integral float or a digit string.

    ``"1.9"`` and ``1.9`` are rejected rather than truncated.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name, code="invalid")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field_name} is required", field=field_name, code="required")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(
                f"{field_name} must be an integer, got {value!r}", field=field_name, code="invalid"
            ) from None
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(
                f"{field_name} must be an integer, got {value}", field=field_name, code="invalid"
            )
        value = int(value)
    elif not isinstance(value, int):
        raise ValidationError(
            f"{field_name} must be an integer, got {type(value).__name__}",
            field=field_name,
            code="invalid",
        )

    if min_val is not None and value < min_val:
        raise ValidationError(
            f"{field_name} must be >= {min_val}, got {value}", field=field_name, code="out_of_range"
        )
    return value
