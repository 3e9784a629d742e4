"""
Observability and monitoring setup for the voice biometric gateway.
"""

import asyncio
from functools import wraps
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
initiation_counter: Optional[metrics.Counter] = None
outcome_counter: Optional[metrics.Counter] = None
confidence_histogram: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "voicegate",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global initiation_counter, outcome_counter, confidence_histogram

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    trace_provider = TracerProvider(resource=resource)
    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    if enable_console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    metric_readers = []
    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000
            )
        )
    if enable_console_export:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000
            )
        )

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    initiation_counter = meter.create_counter(
        name="biometric_initiations_total",
        description="Workflows started, by kind and result",
        unit="1"
    )

    outcome_counter = meter.create_counter(
        name="biometric_outcomes_total",
        description="Completed enrollment and verification workflows, by outcome",
        unit="1"
    )

    confidence_histogram = meter.create_histogram(
        name="biometric_match_confidence",
        description="Matcher confidence for verification attempts",
        unit="1"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """Instrument the FastAPI application and outbound httpx calls."""
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    LoggingInstrumentor().instrument(set_logging_format=True)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = await func(*args, **kwargs)
                    span.set_attribute("success", True)
                    return result
                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = func(*args, **kwargs)
                    span.set_attribute("success", True)
                    return result
                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_initiation_metrics(kind: Optional[str], result: str) -> None:
    if initiation_counter is None:
        return
    initiation_counter.add(1, {"kind": kind or "unknown", "result": result})


def record_outcome_metrics(operation: str, outcome: str, confidence: Optional[float] = None) -> None:
    """
    Record a completed workflow.

    Args:
        operation: "enrollment" or "verification"
        outcome: Terminal outcome or error kind
        confidence: Matcher confidence, verification only
    """
    if outcome_counter is None:
        return

    outcome_counter.add(1, {"operation": operation, "outcome": outcome})

    if confidence is not None and confidence_histogram is not None:
        confidence_histogram.record(confidence, {"outcome": outcome})


def get_trace_context() -> Dict[str, Any]:
    """Current trace and span ids, if a span is recording."""
    current_span = trace.get_current_span()
    if current_span is None or not current_span.is_recording():
        return {}

    span_context = current_span.get_span_context()
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }
