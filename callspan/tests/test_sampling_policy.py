"""Tests for rule-based sampling decisions."""

import unittest

import pytest
from opentelemetry.sdk.trace.sampling import Decision
from opentelemetry.trace import SpanKind

from callspan.config import CallspanConfig
from callspan.errors import ConfigError
from callspan.processors import Sampler
from callspan.processors.sampling_policy import (
    RuleBasedSampler,
    RuleCategory,
    SamplingDecision,
    SamplingPolicy,
    SamplingRule,
)

RECORD = SamplingDecision.RECORD
NOT_RECORD = SamplingDecision.NOT_RECORD


def url_policy(*patterns):
    return SamplingPolicy.from_patterns(exclude_urls=patterns)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/health", NOT_RECORD),
        ("/health/", NOT_RECORD),
        ("/health/live", NOT_RECORD),
        ("/health/live/deep", NOT_RECORD),
        ("/HEALTH/Live", NOT_RECORD),
        ("/health/live?verbose=1", NOT_RECORD),
        ("/health#top", NOT_RECORD),
        ("/healthz", RECORD),
        ("/api/health", RECORD),
        ("/", RECORD),
    ],
)
def test_double_star_glob(path, expected):
    policy = url_policy("/health/**")
    assert policy.evaluate("GET", SpanKind.SERVER, {"http.target": path}) is expected


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("/api/*/items", "/api/v1/items", NOT_RECORD),
        ("/api/*/items", "/api/v1/v2/items", RECORD),
        ("/api/**/items", "/api/items", NOT_RECORD),
        ("/api/**/items", "/api/a/b/c/items", NOT_RECORD),
        ("/api/**/items", "/api/a/b/c/orders", RECORD),
        ("/user?", "/users", NOT_RECORD),
        ("/user?", "/user", RECORD),
        ("/static/*.css", "/static/site.css", NOT_RECORD),
        ("/static/*.css", "/static/site.js", RECORD),
        ("/exact", "/exact", NOT_RECORD),
        ("/exact", "/exact/more", RECORD),
    ],
)
def test_url_glob_forms(pattern, path, expected):
    assert url_policy(pattern).evaluate("GET", SpanKind.CLIENT, {"http.target": path}) is expected


def test_url_path_attribute_is_also_checked():
    policy = url_policy("/actuator/health/**")
    assert policy.evaluate("GET", SpanKind.CLIENT, {"url.path": "/actuator/health/liveness"}) is NOT_RECORD


class TestRuleOrder(unittest.TestCase):
    def setUp(self):
        self.policy = SamplingPolicy.from_patterns(
            exclude_urls=["/actuator/health/**"],
            exclude_operations=["SELECT 1", "redis.ping"],
            exclude_span_names=["jedis.ping", "actuator.health"],
        )

    def test_statement_substring(self):
        decision = self.policy.evaluate("query", SpanKind.CLIENT, {"db.statement": "select 1 from dual"})
        self.assertIs(decision, NOT_RECORD)

    def test_statement_without_match_records(self):
        decision = self.policy.evaluate("query", SpanKind.CLIENT, {"db.statement": "SELECT * FROM orders"})
        self.assertIs(decision, RECORD)

    def test_liveness_operation(self):
        decision = self.policy.evaluate("redis", SpanKind.CLIENT, {"db.operation": "ping"})
        self.assertIs(decision, NOT_RECORD)

    def test_liveness_requires_equality(self):
        decision = self.policy.evaluate("redis", SpanKind.CLIENT, {"db.operation": "PINGALL"})
        self.assertIs(decision, RECORD)

    def test_span_name_substring(self):
        self.assertIs(self.policy.evaluate("Jedis.PING.command"), NOT_RECORD)

    def test_categories_fall_through(self):
        # URL present but not matching, so the span-name rule still applies
        decision = self.policy.evaluate(
            "actuator.health.check",
            SpanKind.SERVER,
            {"http.target": "/api/orders", "db.statement": "SELECT * FROM t"},
        )
        self.assertIs(decision, NOT_RECORD)

    def test_absent_attributes_are_skipped(self):
        self.assertIs(self.policy.evaluate("orders.list", SpanKind.INTERNAL, None), RECORD)
        self.assertIs(self.policy.evaluate("orders.list", SpanKind.INTERNAL, {"http.target": 42}), RECORD)

    def test_empty_rules_delegate_to_sampler(self):
        self.assertIs(SamplingPolicy().evaluate("anything"), RECORD)
        never = SamplingPolicy(sampler=Sampler(0.0))
        self.assertIs(never.evaluate("anything"), NOT_RECORD)

    def test_custom_liveness_tokens(self):
        policy = SamplingPolicy(liveness_operations=["HEALTHCHECK"])
        self.assertIs(policy.evaluate("db", SpanKind.CLIENT, {"db.operation": "healthcheck"}), NOT_RECORD)
        self.assertIs(policy.evaluate("db", SpanKind.CLIENT, {"db.operation": "PING"}), RECORD)


class TestFallbackSampler(unittest.TestCase):
    def test_trace_id_decision_is_deterministic(self):
        policy = SamplingPolicy.from_patterns(sample_rate=0.5)
        low = "0" * 31 + "1"
        high = "f" * 32
        for _ in range(20):
            self.assertIs(policy.evaluate("op", trace_id=low), RECORD)
            self.assertIs(policy.evaluate("op", trace_id=high), NOT_RECORD)

    def test_invalid_rate(self):
        with self.assertRaises(ValueError):
            Sampler(1.5)

    def test_sampled_parent_skips_ratio(self):
        policy = SamplingPolicy.from_patterns(sample_rate=0.0, exclude_span_names=["jedis.ping"])
        self.assertIs(policy.evaluate("op"), NOT_RECORD)
        self.assertIs(policy.evaluate("op", parent_sampled=True), RECORD)
        self.assertIs(policy.evaluate("jedis.ping", parent_sampled=True), NOT_RECORD)

    def test_missing_kind_defaults_to_internal(self):
        policy = SamplingPolicy.from_patterns(exclude_span_names=["jedis.ping"])
        self.assertIs(policy.evaluate("jedis.ping", None), NOT_RECORD)
        self.assertIs(policy.evaluate("orders.list", None), RECORD)
        with self.assertRaises(ConfigError):
            SamplingPolicy.from_patterns(sample_rate=-0.1)


@pytest.mark.parametrize(
    "category, pattern",
    [
        (RuleCategory.URL_GLOB, ""),
        (RuleCategory.URL_GLOB, "   "),
        (RuleCategory.URL_GLOB, "health/**"),
        (RuleCategory.URL_GLOB, "/health check"),
        (RuleCategory.URL_GLOB, "/health/**x"),
        (RuleCategory.URL_GLOB, "/a**/b"),
        (RuleCategory.OPERATION_SUBSTRING, ""),
        (RuleCategory.SPAN_NAME_SUBSTRING, "  "),
        ("no_such_category", "/x"),
    ],
)
def test_malformed_rules_raise(category, pattern):
    with pytest.raises(ConfigError):
        SamplingRule(category, pattern)


def test_blank_liveness_token_raises():
    with pytest.raises(ConfigError):
        SamplingPolicy(liveness_operations=[""])


def test_rules_are_immutable():
    policy = url_policy("/a/**")
    assert isinstance(policy.rules, tuple)
    with pytest.raises(AttributeError):
        policy.rules[0].pattern = "/b/**"


def test_default_exclusions_from_config():
    policy = SamplingPolicy.from_config(CallspanConfig())
    assert policy.evaluate("GET", SpanKind.CLIENT, {"http.target": "/actuator/health/readiness"}) is NOT_RECORD
    assert policy.evaluate("GET", SpanKind.CLIENT, {"http.target": "/actuator/prometheus"}) is NOT_RECORD
    assert policy.evaluate("redis", SpanKind.CLIENT, {"db.statement": "redis.ping"}) is NOT_RECORD
    assert policy.evaluate("lettuce.ping") is NOT_RECORD
    assert policy.evaluate("GET", SpanKind.CLIENT, {"http.target": "/api/orders"}) is RECORD


class TestRuleBasedSampler(unittest.TestCase):
    def setUp(self):
        self.sampler = RuleBasedSampler(SamplingPolicy.from_patterns(exclude_span_names=["jedis.ping"]))

    def test_excluded_span_is_dropped(self):
        result = self.sampler.should_sample(None, 0x1234, "jedis.ping")
        self.assertEqual(result.decision, Decision.DROP)

    def test_other_span_is_sampled(self):
        result = self.sampler.should_sample(None, 0x1234, "orders.list", attributes={"k": "v"})
        self.assertEqual(result.decision, Decision.RECORD_AND_SAMPLE)
        self.assertTrue(result.decision.is_sampled())

    def test_description(self):
        self.assertIn("RuleBasedSampler", self.sampler.get_description())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
