"""Helper functions for OpenTelemetry id and attribute compatibility."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

_SCALAR_TYPES = (bool, str, bytes, int, float)


def format_trace_id(trace_id: int) -> str:
    """
    Format OTel trace_id (int) to hex string.

    Args:
        trace_id: OTel trace_id as 128-bit int

    Returns:
        32-character lowercase hex string
    """
    return format(trace_id, '032x')


def format_span_id(span_id: int) -> str:
    """
    Format OTel span_id (int) to hex string.

    Args:
        span_id: OTel span_id as 64-bit int

    Returns:
        16-character lowercase hex string
    """
    return format(span_id, '016x')


def parse_trace_id(hex_string: str) -> int:
    """Parse hex string trace_id to OTel int (0 if empty)."""
    if not hex_string:
        return 0
    return int(hex_string, 16)


def parse_span_id(hex_string: str) -> int:
    """Parse hex string span_id to OTel int (0 if empty)."""
    if not hex_string:
        return 0
    return int(hex_string, 16)


def to_attribute_value(value: Any) -> Any:
    """
    Convert a value to an OpenTelemetry-compatible attribute value.

    OTel attributes must be: bool, str, bytes, int, float, or sequences of those.
    """
    if isinstance(value, _SCALAR_TYPES):
        return value

    if isinstance(value, (list, tuple)):
        return [
            item if isinstance(item, _SCALAR_TYPES) else str(item)[:1000]
            for item in value
            if item is not None
        ][:100]

    if isinstance(value, dict):
        try:
            return json.dumps(value, default=str)[:1000]
        except (TypeError, ValueError):
            return str(value)[:1000]

    return str(value)[:1000]


def clean_attributes(attributes: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop None values and coerce the rest into attribute-safe values."""
    if not attributes:
        return {}
    return {
        str(key): to_attribute_value(value)
        for key, value in attributes.items()
        if value is not None
    }
