"""OpenTelemetry spans around tracking operations.

Operations are wrapped with :func:`traced`, which opens a span on the
``agent_tracking`` tracer. Until :func:`configure_tracing` installs an SDK
provider, the OpenTelemetry API hands out non-recording spans, so the
wrappers cost next to nothing in applications that never enable tracing.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from agent_tracking.config import TracingConfig

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_tracer = trace.get_tracer("agent_tracking")


def traced(operation: str) -> Callable[[F], F]:
	"""Run the decorated function inside an ``agent_tracking.<operation>`` span.

	Exceptions are recorded on the span and re-raised unchanged.
	"""
	span_name = f"agent_tracking.{operation}"

	def decorator(fn: F) -> F:
		@functools.wraps(fn)
		def wrapper(*args: Any, **kwargs: Any) -> Any:
			with _tracer.start_as_current_span(span_name):
				return fn(*args, **kwargs)
		return wrapper  # type: ignore[return-value]

	return decorator


def _build_exporter(config: TracingConfig) -> SpanExporter:
	if config.exporter == "console":
		return ConsoleSpanExporter()
	if config.exporter == "otlp":
		try:
			from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
		except ImportError as exc:
			raise RuntimeError(
				"OTLP exporter not available. Install with: pip install agent-tracking[otlp]"
			) from exc
		return OTLPSpanExporter(endpoint=config.otlp_endpoint)
	raise ValueError(f"Unknown tracing exporter: {config.exporter!r}")


def build_tracer_provider(config: TracingConfig) -> TracerProvider | None:
	"""Create an SDK provider for ``config``, or None when tracing is disabled."""
	if not config.enabled:
		return None
	resource = Resource.create({"service.name": config.service_name})
	provider = TracerProvider(resource=resource)
	provider.add_span_processor(SimpleSpanProcessor(_build_exporter(config)))
	return provider


def configure_tracing(config: TracingConfig) -> TracerProvider | None:
	"""Install the provider built from ``config`` as the global tracer provider."""
	provider = build_tracer_provider(config)
	if provider is None:
		logger.debug("Tracing disabled")
		return None
	trace.set_tracer_provider(provider)
	logger.info("Tracing enabled (exporter=%s, service=%s)", config.exporter, config.service_name)
	return provider
