"""
OpenTelemetry spans for setup and teardown runs.

Each workflow step runs inside an ``ingestctl.step`` span; retries and
degradations are recorded as span events by the components that perform
them. Export is opt-in: without an OTLP endpoint the global no-op tracer
provider is used and spans cost nothing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from ingestctl import __version__

logger = logging.getLogger(__name__)

TRACER_NAME = "ingestctl"
OTEL_FLUSH_TIMEOUT_MS = 10000

_provider = None


def configure_tracing(endpoint: str, service_name: str = "ingestctl") -> bool:
    """
    Install a global TracerProvider exporting to ``endpoint`` over OTLP gRPC.

    Returns:
        True if configuration succeeded, False otherwise
    """
    global _provider
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({
            "service.name": service_name,
            "service.version": __version__,
        })
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
        trace.set_tracer_provider(provider)
        _provider = provider
        return True
    except Exception as e:
        logger.warning("Failed to configure OTel tracing: %s", e)
        return False


def shutdown_tracing() -> None:
    """Flush pending spans before the process exits."""
    global _provider
    if _provider is not None:
        _provider.force_flush(timeout_millis=OTEL_FLUSH_TIMEOUT_MS)
        _provider.shutdown()
        _provider = None


def get_tracer():
    return trace.get_tracer(TRACER_NAME, __version__)


@contextmanager
def step_span(domain: str, step: str, kind: str = "setup") -> Iterator[Span]:
    """Span around one workflow step; exceptions mark it as failed and propagate."""
    with get_tracer().start_as_current_span(
        f"ingestctl.{kind}.step",
        attributes={"deployment.domain": domain, "step.name": step},
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span
        span.set_status(Status(StatusCode.OK))


@contextmanager
def run_span(domain: str, kind: str, project_id: Optional[str] = None) -> Iterator[Span]:
    attributes = {"deployment.domain": domain}
    if project_id:
        attributes["gcp.project_id"] = project_id
    with get_tracer().start_as_current_span(f"ingestctl.{kind}", attributes=attributes) as span:
        yield span


def add_event(name: str, **attributes) -> None:
    """Record an event on the current span, dropping None values."""
    trace.get_current_span().add_event(
        name, {k: v for k, v in attributes.items() if v is not None},
    )
