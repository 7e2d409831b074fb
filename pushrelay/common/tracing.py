"""OpenTelemetry wiring for the relay: OTLP export, FastAPI spans, dispatch spans."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from pushrelay.common.config import settings


tracer = trace.get_tracer("pushrelay")


def setup_tracing(service_name: str) -> None:
    """Register a tracer provider exporting to the OTLP HTTP collector."""

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app)


def dispatch_span(name: str, record_id: str):
    """Span for work on one dispatch record, tagged with its id."""

    return tracer.start_as_current_span(name, attributes={"dispatch.record_id": record_id})
