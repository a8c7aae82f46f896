"""Process-wide bootstrap: one provider, one sampling policy, one span wrapper."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from callspan.config import CallspanConfig, load_config
from callspan.errors import InitializationError
from callspan.exporter import ConsoleExporter, OTLPExporter
from callspan.instrumentation.wrapper import SpanWrapper
from callspan.processors import BatchSpanProcessor, SamplingPolicy, SimpleSpanProcessor, drop_policy_from_name
from callspan.tracer import Tracer, TracerProvider

logger = logging.getLogger(__name__)

INSTRUMENTATION_SCOPE = "callspan"

_lock = threading.RLock()
_provider: Optional[TracerProvider] = None
_span_wrapper: Optional[SpanWrapper] = None
_config: Optional[CallspanConfig] = None
_processors: List[Any] = []
_noop_wrapper: Optional[SpanWrapper] = None


def _build_processor(config: CallspanConfig, exporter: Any, use_batch: bool):
    if not use_batch:
        return SimpleSpanProcessor(exporter)
    export = config.export
    return BatchSpanProcessor(
        exporter,
        max_queue_size=export.max_queue_size,
        max_export_batch_size=export.max_export_batch_size,
        schedule_delay_millis=export.schedule_delay_millis,
        max_export_retries=export.max_export_retries,
        retry_backoff_millis=export.retry_backoff_millis,
        drop_policy=drop_policy_from_name(export.overflow_policy, export.max_block_ms),
    )


def _build_exporters(config: CallspanConfig, exporter: Any) -> List[Any]:
    exporters: List[Any] = []
    if exporter is not None:
        exporters.append(exporter)
    elif config.exporters.use_otlp:
        try:
            exporters.append(
                OTLPExporter(
                    endpoint=config.tracing.endpoint,
                    api_key=config.tracing.api_key,
                    timeout=config.export.export_timeout_millis / 1000.0,
                )
            )
        except Exception as exc:
            raise InitializationError("Failed to create OTLP exporter", {"error": str(exc)}) from exc
    if config.exporters.enable_console:
        exporters.append(ConsoleExporter())
    return exporters


def init(
    config_file: Optional[str] = None,
    *,
    exporter: Any = None,
    use_batch: bool = True,
    **overrides: Any,
) -> TracerProvider:
    """
    Initialize tracing for this process.

    Args:
        config_file: Optional TOML config path (otherwise ``callspan.toml`` is
            looked up in the working and home directories)
        exporter: Optional exporter used instead of the configured OTLP one
        use_batch: Export through a BatchSpanProcessor (default) or
            synchronously through a SimpleSpanProcessor
        **overrides: Configuration overrides, nested by section or flat

    Returns:
        The active TracerProvider. Calling init() again returns the existing
        provider unchanged.

    Raises:
        ConfigError: the merged configuration or a sampling rule is invalid
        InitializationError: an exporter could not be created
    """
    global _provider, _span_wrapper, _config, _processors

    with _lock:
        if _provider is not None:
            logger.warning("callspan is already initialized; call stop_tracing() before re-initializing")
            return _provider

        config = load_config(config_file=config_file, overrides=overrides)
        if config.logging.debug:
            logging.getLogger("callspan").setLevel(logging.DEBUG)

        policy = SamplingPolicy.from_config(config)
        exporters = _build_exporters(config, exporter)

        provider = TracerProvider(
            resource={
                "service.name": config.tracing.service_name,
                "service.version": config.tracing.service_version,
            }
        )
        processors = [_build_processor(config, exp, use_batch) for exp in exporters]
        for processor in processors:
            provider.add_span_processor(processor)

        _span_wrapper = SpanWrapper(
            provider.get_tracer(INSTRUMENTATION_SCOPE),
            policy,
            enabled=config.tracing.enabled,
        )
        _provider = provider
        _config = config
        _processors = processors

        logger.debug(
            "callspan initialized (service=%s, exporters=%s, rules=%d)",
            config.tracing.service_name,
            [type(exp).__name__ for exp in exporters],
            len(policy.rules),
        )
        return provider


def stop_tracing(flush_timeout: Optional[float] = None) -> None:
    """Flush pending spans and shut tracing down. Safe to call repeatedly."""
    global _provider, _span_wrapper, _config, _processors

    with _lock:
        provider = _provider
        if provider is None:
            return
        _provider = None
        _span_wrapper = None
        _config = None
        _processors = []

    try:
        provider.force_flush(timeout=flush_timeout)
    finally:
        provider.shutdown()


def is_initialized() -> bool:
    return _provider is not None


def get_config() -> Optional[CallspanConfig]:
    return _config


def get_tracer_provider() -> Optional[TracerProvider]:
    return _provider


def get_tracer(name: str = INSTRUMENTATION_SCOPE) -> Tracer:
    """Get a tracer from the active provider."""
    provider = _provider
    if provider is None:
        raise InitializationError("callspan is not initialized; call init() first")
    return provider.get_tracer(name)


def get_span_wrapper() -> SpanWrapper:
    """
    Get the process-wide span wrapper.

    Before init() (or after stop_tracing()) this is a disabled wrapper, so
    instrumented code runs untraced instead of failing.
    """
    global _noop_wrapper

    wrapper = _span_wrapper
    if wrapper is not None:
        return wrapper
    with _lock:
        if _noop_wrapper is None:
            _noop_wrapper = SpanWrapper(TracerProvider().get_tracer(INSTRUMENTATION_SCOPE), enabled=False)
        return _noop_wrapper


def get_export_stats() -> List[Dict[str, Any]]:
    """Queue and export statistics of every batching processor."""
    return [p.get_stats() for p in list(_processors) if isinstance(p, BatchSpanProcessor)]
