"""Utility functions for callspan."""

from callspan.utils.helpers import (
    clean_attributes,
    format_trace_id,
    format_span_id,
    parse_trace_id,
    parse_span_id,
    to_attribute_value,
)

__all__ = [
    "clean_attributes",
    "format_trace_id",
    "format_span_id",
    "parse_trace_id",
    "parse_span_id",
    "to_attribute_value",
]
