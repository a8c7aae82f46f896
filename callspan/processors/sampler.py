"""Fallback probabilistic sampling."""

import random
from dataclasses import dataclass
from typing import Optional

# Trace-id ratio sampling compares the low 64 bits of the trace id
_TRACE_ID_LIMIT = (1 << 64) - 1


@dataclass
class SamplingResult:
    sampled: bool


class Sampler:
    """
    Head-based sampler using a fixed probability.

    When a trace id is known the decision is derived from it, so every span
    of a trace gets the same answer. Without one (a new root) the decision
    is random.
    """

    def __init__(self, sample_rate: float = 1.0) -> None:
        if not 0.0 <= sample_rate <= 1.0:
            raise ValueError("sample_rate must be between 0.0 and 1.0")
        self.sample_rate = sample_rate
        self._bound = round(sample_rate * (_TRACE_ID_LIMIT + 1))

    def should_sample(self, trace_id: Optional[str] = None) -> SamplingResult:
        if self.sample_rate >= 1.0:
            return SamplingResult(sampled=True)
        if self.sample_rate <= 0.0:
            return SamplingResult(sampled=False)
        if trace_id:
            return SamplingResult(sampled=(int(trace_id, 16) & _TRACE_ID_LIMIT) < self._bound)
        return SamplingResult(sampled=random.random() < self.sample_rate)

    def __repr__(self) -> str:
        return f"Sampler(sample_rate={self.sample_rate})"
