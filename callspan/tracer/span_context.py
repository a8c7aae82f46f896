"""Immutable trace metadata."""

from dataclasses import dataclass
from typing import Optional

_INVALID_TRACE_ID = "0" * 32
_INVALID_SPAN_ID = "0" * 16


@dataclass(frozen=True)
class SpanContext:
    trace_id: str
    span_id: str
    trace_flags: int = 1  # 1 = sampled, 0 = not sampled
    trace_state: Optional[str] = None
    is_remote: bool = False

    def is_valid(self) -> bool:
        return (
            bool(self.trace_id and self.span_id)
            and self.trace_id != _INVALID_TRACE_ID
            and self.span_id != _INVALID_SPAN_ID
        )

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & 0x01)
