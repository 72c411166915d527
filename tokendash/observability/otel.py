"""OpenTelemetry + Prometheus wiring for tokendash."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from tokendash import config

logger = logging.getLogger("tokendash.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_derivation_counter: Any | None = None
_derivation_latency_hist: Any | None = None
_decode_failure_counter: Any | None = None
_delivery_counter: Any | None = None

_prom_enabled = False
_prom_derivation_counter: Any | None = None
_prom_derivation_latency_hist: Any | None = None
_prom_decode_failure_counter: Any | None = None
_prom_delivery_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_derivation_counter, _prom_derivation_latency_hist
    global _prom_decode_failure_counter, _prom_delivery_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        _prom_derivation_counter = Counter(
            "tokendash_derivations_total",
            "Session summary derivations",
            ["result"],
        )
        _prom_derivation_latency_hist = Histogram(
            "tokendash_derivation_latency_ms",
            "Latency of reading and reducing a session log",
            ["result"],
        )
        _prom_decode_failure_counter = Counter(
            "tokendash_decode_failures_total",
            "Log lines skipped because they were not JSON objects",
        )
        _prom_delivery_counter = Counter(
            "tokendash_deliveries_total",
            "Stream messages offered to observers",
            ["kind", "result"],
        )
        _prom_enabled = True
        logger.info("Prometheus metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus metrics not started: %s", exc)
        _prom_enabled = False


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _derivation_counter, _derivation_latency_hist, _decode_failure_counter, _delivery_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if config.PROM_PORT > 0:
        _start_prometheus()

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TOKENDASH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "tokendash"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "tokendash",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("tokendash")

    _derivation_counter = meter.create_counter(
        "tokendash_derivations_total",
        unit="1",
        description="Session summary derivations",
    )
    _derivation_latency_hist = meter.create_histogram(
        "tokendash_derivation_latency_ms",
        unit="ms",
        description="Latency of reading and reducing a session log",
    )
    _decode_failure_counter = meter.create_counter(
        "tokendash_decode_failures_total",
        unit="1",
        description="Log lines skipped because they were not JSON objects",
    )
    _delivery_counter = meter.create_counter(
        "tokendash_deliveries_total",
        unit="1",
        description="Stream messages offered to observers",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("tokendash")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        logger.debug("FastAPI uninstrument failed", exc_info=True)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
                provider.shutdown()
        except Exception:
            logger.debug("Telemetry provider shutdown failed", exc_info=True)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_derivation(result: str, duration_ms: float) -> None:
    labels = {"result": result or "unknown"}
    latency = max(0.0, float(duration_ms))
    if _enabled and _derivation_counter is not None:
        _derivation_counter.add(1, labels)
    if _enabled and _derivation_latency_hist is not None:
        _derivation_latency_hist.record(latency, labels)
    if _prom_enabled and _prom_derivation_counter is not None:
        _prom_derivation_counter.labels(**labels).inc()
    if _prom_enabled and _prom_derivation_latency_hist is not None:
        _prom_derivation_latency_hist.labels(**labels).observe(latency)


def record_decode_failures(count: int) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    if _enabled and _decode_failure_counter is not None:
        _decode_failure_counter.add(safe_count)
    if _prom_enabled and _prom_decode_failure_counter is not None:
        _prom_decode_failure_counter.inc(safe_count)


def record_delivery(kind: str, result: str) -> None:
    labels = {"kind": kind or "unknown", "result": result or "unknown"}
    if _enabled and _delivery_counter is not None:
        _delivery_counter.add(1, labels)
    if _prom_enabled and _prom_delivery_counter is not None:
        _prom_delivery_counter.labels(**labels).inc()
