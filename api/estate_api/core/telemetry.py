from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from estate_api.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s job=%(job)s trace_id=%(trace_id)s %(message)s"
NO_JOB = "-"

_current_job: ContextVar[str] = ContextVar("estate_current_job", default=NO_JOB)
_base_record_factory = logging.getLogRecordFactory()
_correlation_installed = False
_httpx_instrumentor = HTTPXClientInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    provider: TracerProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


@contextmanager
def job_context(name: str) -> Iterator[None]:
    """Tag log records emitted while a scheduled job runs with ``job=<name>``."""
    token = _current_job.set(name)
    try:
        yield
    finally:
        _current_job.reset(token)


def current_job() -> str:
    return _current_job.get()


def configure_logging() -> None:
    install_log_correlation()
    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def install_log_correlation() -> None:
    global _correlation_installed
    if _correlation_installed:
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _base_record_factory(*args, **kwargs)
        record.job = _current_job.get()
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "0" * 32
        return record

    logging.setLogRecordFactory(record_factory)
    _correlation_installed = True


def build_resource(settings: Settings, job_names: Iterable[str]) -> Resource:
    # Scheduler layout goes on the resource so traces from replicas with the
    # scheduler switched off are distinguishable.
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            "estate.scheduler.enabled": settings.scheduler_enabled,
            "estate.scheduler.jobs": tuple(job_names),
            "estate.payment.grace_hours": settings.payment_grace_hours,
        }
    )


def setup_telemetry(app: FastAPI, settings: Settings, job_names: Iterable[str] = ()) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime()

    if settings.otel_log_correlation:
        install_log_correlation()

    provider = TracerProvider(
        resource=build_resource(settings, job_names),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    exporter = _build_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    # Supabase user lookups are the only outbound HTTP calls.
    _httpx_instrumentor.instrument(tracer_provider=provider)
    return TelemetryRuntime(provider=provider)


def shutdown_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    FastAPIInstrumentor.uninstrument_app(app)
    _httpx_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def _build_exporter(settings: Settings) -> OTLPSpanExporter | None:
    if settings.otel_exporter_otlp_endpoint:
        return OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=settings.otel_exporter_otlp_headers or None,
        )
    # The exporter reads the standard OTEL_* variables itself.
    if os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        return OTLPSpanExporter()

    logging.getLogger(__name__).info(
        "OTel exporter endpoint not set; engine tick spans stay local service=%s",
        settings.otel_service_name,
    )
    return None
