"""Rule-based sampling decisions.

Exclusion rules are checked in a fixed order, first match wins, with
case-insensitive comparisons throughout:

1. the HTTP target path against URL globs (``**`` spans segments, ``*`` and
   ``?`` stay within one segment);
2. the statement against operation substrings;
3. the operation name against the liveness tokens (``PING``);
4. the span name against span-name substrings;

and anything not excluded is left to the fallback probabilistic Sampler.

Rules are compiled once when the policy is built and never mutated, so
``evaluate`` is lock-free and safe to call from any number of threads.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from opentelemetry.sdk.trace.sampling import (
    Decision,
    Sampler as OTelSampler,
    SamplingResult as OTelSamplingResult,
)
from opentelemetry.trace import SpanKind, get_current_span

from callspan.errors import ConfigError
from callspan.processors.sampler import Sampler
from callspan.utils.helpers import format_trace_id

logger = logging.getLogger(__name__)

HTTP_TARGET_KEYS = ("http.target", "url.path")
STATEMENT_KEYS = ("db.statement",)
OPERATION_KEYS = ("db.operation",)

DEFAULT_LIVENESS_OPERATIONS = ("PING",)

# Marker for a "**" segment in a compiled URL glob
_ANY_SEGMENTS = None


class RuleCategory(Enum):
    URL_GLOB = "url_glob"
    OPERATION_SUBSTRING = "operation_substring"
    SPAN_NAME_SUBSTRING = "span_name_substring"


class SamplingDecision(Enum):
    RECORD = "record"
    NOT_RECORD = "not_record"


def _segment_regex(segment: str) -> "re.Pattern[str]":
    parts = []
    for ch in segment:
        if ch == "*":
            parts.append("[^/]*")
        elif ch == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE)


def _compile_url_glob(pattern: str) -> Tuple[Optional["re.Pattern[str]"], ...]:
    if not pattern.startswith("/"):
        raise ConfigError("URL glob must start with '/'", {"pattern": pattern})
    if any(ch.isspace() for ch in pattern):
        raise ConfigError("URL glob must not contain whitespace", {"pattern": pattern})

    compiled = []
    for segment in pattern.split("/"):
        if not segment:
            continue
        if segment == "**":
            # consecutive ** collapse into one
            if compiled and compiled[-1] is _ANY_SEGMENTS:
                continue
            compiled.append(_ANY_SEGMENTS)
        elif "**" in segment:
            raise ConfigError("'**' must occupy a whole path segment", {"pattern": pattern})
        else:
            compiled.append(_segment_regex(segment))
    return tuple(compiled)


def _path_segments(target: str) -> Tuple[str, ...]:
    path = target.split("?", 1)[0].split("#", 1)[0]
    return tuple(segment for segment in path.split("/") if segment)


def _match_segments(pattern: Sequence, path: Sequence[str], pi: int = 0, si: int = 0) -> bool:
    while pi < len(pattern):
        segment = pattern[pi]
        if segment is _ANY_SEGMENTS:
            if pi == len(pattern) - 1:
                return True
            return any(_match_segments(pattern, path, pi + 1, k) for k in range(si, len(path) + 1))
        if si >= len(path) or not segment.fullmatch(path[si]):
            return False
        pi += 1
        si += 1
    return si == len(path)


@dataclass(frozen=True)
class SamplingRule:
    """
    A single exclusion rule.

    Malformed rules raise ConfigError on construction, so a bad configuration
    fails at load time instead of silently disabling exclusion later.
    """

    category: RuleCategory
    pattern: str
    _compiled: Any = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.category, RuleCategory):
            try:
                object.__setattr__(self, "category", RuleCategory(self.category))
            except ValueError:
                raise ConfigError("Unknown rule category", {"category": self.category}) from None
        if not isinstance(self.pattern, str) or not self.pattern.strip():
            raise ConfigError("Rule pattern must be a non-empty string", {"category": self.category.value})

        if self.category is RuleCategory.URL_GLOB:
            compiled = _compile_url_glob(self.pattern)
        else:
            compiled = self.pattern.strip().lower()
        object.__setattr__(self, "_compiled", compiled)

    def matches(self, value: str) -> bool:
        if self.category is RuleCategory.URL_GLOB:
            return _match_segments(self._compiled, _path_segments(value))
        return self._compiled in value.lower()


def _first_str(attributes: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = attributes.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class SamplingPolicy:
    """Decides, per span-start request, whether the span is recorded."""

    def __init__(
        self,
        rules: Iterable[SamplingRule] = (),
        sampler: Optional[Sampler] = None,
        liveness_operations: Iterable[str] = DEFAULT_LIVENESS_OPERATIONS,
    ) -> None:
        rules = tuple(rules)
        for rule in rules:
            if not isinstance(rule, SamplingRule):
                raise ConfigError("Sampling rules must be SamplingRule instances", {"rule": repr(rule)})

        liveness = []
        for token in liveness_operations:
            if not isinstance(token, str) or not token.strip():
                raise ConfigError("Liveness operation must be a non-empty string", {"token": repr(token)})
            liveness.append(token.strip().lower())

        self._rules = rules
        self._url_rules = tuple(r for r in rules if r.category is RuleCategory.URL_GLOB)
        self._operation_rules = tuple(r for r in rules if r.category is RuleCategory.OPERATION_SUBSTRING)
        self._span_name_rules = tuple(r for r in rules if r.category is RuleCategory.SPAN_NAME_SUBSTRING)
        self._liveness = frozenset(liveness)
        self.sampler = sampler or Sampler(1.0)

    @classmethod
    def from_patterns(
        cls,
        exclude_urls: Iterable[str] = (),
        exclude_operations: Iterable[str] = (),
        exclude_span_names: Iterable[str] = (),
        sample_rate: float = 1.0,
        liveness_operations: Iterable[str] = DEFAULT_LIVENESS_OPERATIONS,
    ) -> "SamplingPolicy":
        """Build a policy from plain pattern lists; raises ConfigError on bad input."""
        rules = [SamplingRule(RuleCategory.URL_GLOB, p) for p in exclude_urls]
        rules += [SamplingRule(RuleCategory.OPERATION_SUBSTRING, p) for p in exclude_operations]
        rules += [SamplingRule(RuleCategory.SPAN_NAME_SUBSTRING, p) for p in exclude_span_names]
        try:
            sampler = Sampler(sample_rate)
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc), {"sample_rate": sample_rate}) from exc
        return cls(rules, sampler=sampler, liveness_operations=liveness_operations)

    @classmethod
    def from_config(cls, config) -> "SamplingPolicy":
        """Build a policy from a CallspanConfig."""
        return cls.from_patterns(
            exclude_urls=config.filter.exclude_urls,
            exclude_operations=config.filter.exclude_operations,
            exclude_span_names=config.filter.exclude_span_names,
            sample_rate=config.tracing.sample_rate,
            liveness_operations=config.filter.liveness_operations,
        )

    @property
    def rules(self) -> Tuple[SamplingRule, ...]:
        return self._rules

    def match(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        """Return a description of the first exclusion that applies, or None."""
        attributes = attributes or {}

        target = _first_str(attributes, HTTP_TARGET_KEYS)
        if target is not None:
            for rule in self._url_rules:
                if rule.matches(target):
                    return f"url_glob:{rule.pattern}"

        statement = _first_str(attributes, STATEMENT_KEYS)
        if statement is not None:
            for rule in self._operation_rules:
                if rule.matches(statement):
                    return f"operation_substring:{rule.pattern}"

        operation = _first_str(attributes, OPERATION_KEYS)
        if operation is not None and operation.lower() in self._liveness:
            return f"liveness:{operation}"

        for rule in self._span_name_rules:
            if rule.matches(name):
                return f"span_name_substring:{rule.pattern}"

        return None

    def evaluate(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        trace_id: Optional[str] = None,
        parent_sampled: bool = False,
    ) -> SamplingDecision:
        """
        Decide whether a span named ``name`` should be recorded.

        ``trace_id`` is the id of the trace the span would join, when known;
        it makes the fallback decision consistent across the trace.
        ``parent_sampled`` means the parent span was recorded (or arrived with
        the sampled flag); such a span inherits that decision and only the
        exclusion rules apply.
        """
        kind = kind or SpanKind.INTERNAL
        excluded_by = self.match(name, attributes)
        if excluded_by is not None:
            logger.debug("Not recording %s span %r (excluded by %s)", kind.name, name, excluded_by)
            return SamplingDecision.NOT_RECORD

        if parent_sampled:
            return SamplingDecision.RECORD
        if self.sampler.should_sample(trace_id).sampled:
            return SamplingDecision.RECORD
        return SamplingDecision.NOT_RECORD

    def __repr__(self) -> str:
        return f"SamplingPolicy(rules={len(self._rules)}, sampler={self.sampler!r})"


class RuleBasedSampler(OTelSampler):
    """
    OpenTelemetry SDK sampler backed by a SamplingPolicy.

    Lets spans started directly through the OpenTelemetry API (for example by
    third-party instrumentation libraries) be filtered by the same rules.
    """

    def __init__(self, policy: SamplingPolicy) -> None:
        self._policy = policy

    def should_sample(
        self,
        parent_context,
        trace_id: int,
        name: str,
        kind: Optional[SpanKind] = None,
        attributes=None,
        links=None,
        trace_state=None,
    ) -> OTelSamplingResult:
        parent_span_context = get_current_span(parent_context).get_span_context()
        parent_trace_state = parent_span_context.trace_state if parent_span_context.is_valid else None
        parent_sampled = parent_span_context.is_valid and parent_span_context.trace_flags.sampled

        decision = self._policy.evaluate(
            name,
            kind,
            attributes,
            trace_id=format_trace_id(trace_id),
            parent_sampled=parent_sampled,
        )
        if decision is SamplingDecision.NOT_RECORD:
            return OTelSamplingResult(Decision.DROP, None, parent_trace_state)
        return OTelSamplingResult(Decision.RECORD_AND_SAMPLE, attributes, parent_trace_state)

    def get_description(self) -> str:
        return f"RuleBasedSampler{{{self._policy!r}}}"
