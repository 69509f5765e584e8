"""OpenTelemetry tracing for the node agent."""

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

from gpu_node_agent import __version__
from gpu_node_agent.infrastructure.config import Config, ObservabilityConfig, get_config


def _span_exporter(observability: ObservabilityConfig) -> SpanExporter:
    # No collector configured: spans are printed so they are still visible
    if not observability.otel_endpoint:
        return ConsoleSpanExporter()
    return OTLPSpanExporter(endpoint=observability.otel_endpoint, insecure=True)


def setup_tracing(config: Config | None = None) -> trace.Tracer:
    """Install a tracer provider tagged with this node and return the agent tracer.

    Spans from the allocation and reconcile paths carry the node name as
    ``host.name`` so traces from a fleet of agents can be told apart.
    """
    config = config or get_config()
    observability = config.observability

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": observability.otel_service_name,
                "service.version": __version__,
                "deployment.environment": observability.environment,
                "host.name": config.node.name,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(observability)))
    trace.set_tracer_provider(provider)

    return trace.get_tracer("gpu_node_agent", __version__)
