"""callspan: span-scoped instrumentation of outbound calls and queue operations."""

from callspan.auto import (
    get_config,
    get_export_stats,
    get_span_wrapper,
    get_tracer,
    get_tracer_provider,
    init,
    is_initialized,
    stop_tracing,
)
from callspan.config import CallspanConfig, load_config, validate_config
from callspan.errors import (
    CallspanError,
    ConfigError,
    DecodingError,
    ExportError,
    InitializationError,
    ValidationError,
)
from callspan.instrumentation import (
    AsyncTracedHttpClient,
    ConsumerInstrumentation,
    Message,
    SpanWrapper,
    TracedEnqueuer,
    TracedHttpClient,
    observe,
    traced_listener,
)
from callspan.processors import SamplingDecision, SamplingPolicy, SamplingRule
from callspan.tracer import Span, SpanKind, SpanRecord, SpanStatus

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "init",
    "stop_tracing",
    "is_initialized",
    "get_config",
    "get_tracer",
    "get_tracer_provider",
    "get_span_wrapper",
    "get_export_stats",
    "CallspanConfig",
    "load_config",
    "validate_config",
    "CallspanError",
    "ConfigError",
    "DecodingError",
    "ExportError",
    "InitializationError",
    "ValidationError",
    "SpanWrapper",
    "observe",
    "TracedHttpClient",
    "AsyncTracedHttpClient",
    "TracedEnqueuer",
    "ConsumerInstrumentation",
    "Message",
    "traced_listener",
    "SamplingPolicy",
    "SamplingRule",
    "SamplingDecision",
    "Span",
    "SpanKind",
    "SpanRecord",
    "SpanStatus",
]
