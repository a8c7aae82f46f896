"""Span processors and supporting utilities."""

from callspan.processors.batch_processor import BatchSpanProcessor
from callspan.processors.drop_policy import (
    DEFAULT_DROP_POLICY,
    BoundedBlockPolicy,
    DropNewestPolicy,
    DropOldestPolicy,
    DropPolicy,
    drop_policy_from_name,
)
from callspan.processors.sampler import Sampler, SamplingResult
from callspan.processors.sampling_policy import (
    RuleBasedSampler,
    RuleCategory,
    SamplingDecision,
    SamplingPolicy,
    SamplingRule,
)
from callspan.processors.simple_processor import SimpleSpanProcessor

__all__ = [
    "BatchSpanProcessor",
    "SimpleSpanProcessor",
    "DropPolicy",
    "DropOldestPolicy",
    "DropNewestPolicy",
    "BoundedBlockPolicy",
    "DEFAULT_DROP_POLICY",
    "drop_policy_from_name",
    "Sampler",
    "SamplingResult",
    "RuleBasedSampler",
    "RuleCategory",
    "SamplingDecision",
    "SamplingPolicy",
    "SamplingRule",
]
