"""
Telemetry bootstrap for the conversion service.

`setup_telemetry` installs JSON logging (every record carries the service name,
request id and, when tracing is on, trace/span ids) plus request-id propagation.
With `ENABLE_TELEMETRY` set it also exports OpenTelemetry spans for FastAPI and
httpx; the OpenAI SDK goes through httpx, so each model call gets its own span.
Pipeline stages (render, extract) open child spans through `traced_stage`.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Iterator
from uuid import uuid4

from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode
from pythonjsonlogger import jsonlogger

CORRELATION_ID_HEADER = "x-request-id"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(service_name)s %(request_id)s %(trace_id)s %(span_id)s"

RequestContextToken = Token

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_state = {"logging": False, "httpx": False}
_tracer = trace.get_tracer("statement_converter")


@dataclass(frozen=True, slots=True)
class TelemetrySettings:
    service_name: str
    traces_enabled: bool = False
    console_export: bool = False
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    log_level: int = logging.INFO
    request_id_prefix: str = ""

    @classmethod
    def from_env(cls, service_name: str) -> "TelemetrySettings":
        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME") or service_name,
            traces_enabled=_env_flag("ENABLE_TELEMETRY"),
            console_export=_env_flag("OTEL_CONSOLE_EXPORT"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_OTLP_ENDPOINT,
            log_level=_log_level(os.getenv("LOG_LEVEL", "INFO")),
            request_id_prefix=os.getenv("REQUEST_ID_PREFIX", ""),
        )


def setup_telemetry(app: FastAPI, service_name: str) -> TelemetrySettings:
    """
    Configure logging, request ids and (optionally) tracing for `app`.

    Args:
        app: FastAPI app instance that should emit spans/logs.
        service_name: Default service identifier; `OTEL_SERVICE_NAME` overrides it.
    Returns:
        The settings that were applied.
    """

    settings = TelemetrySettings.from_env(service_name)
    _configure_logging(settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = ensure_request_id(request, prefix=settings.request_id_prefix)
        token = bind_request_context(request_id)
        try:
            response = await call_next(request)
            response.headers.setdefault(CORRELATION_ID_HEADER, request_id)
            return response
        finally:
            reset_request_context(token)

    if settings.traces_enabled:
        _configure_tracing(settings)
        FastAPIInstrumentor.instrument_app(app)
        if not _state["httpx"]:
            HTTPXClientInstrumentor().instrument()
            _state["httpx"] = True
        LoggingInstrumentor().instrument(set_logging_format=False)
    return settings


def ensure_request_id(request: Request | None, header_name: str = CORRELATION_ID_HEADER, *, prefix: str = "") -> str:
    """
    Reuse the caller's request id (x-request-id) or mint a new UUID4 one.
    """

    if request is not None:
        existing = request.headers.get(header_name) or getattr(request.state, "request_id", None)
        if existing:
            request.state.request_id = existing
            return existing

    request_id = f"{prefix}{uuid4()}"
    if request is not None:
        request.state.request_id = request_id
    return request_id


def bind_request_context(request_id: str | None) -> RequestContextToken:
    return _request_id.set(request_id)


def reset_request_context(token: RequestContextToken | None) -> None:
    if token is not None:
        _request_id.reset(token)


@contextmanager
def traced_stage(name: str, **attributes: Any) -> Iterator[Any]:
    """
    Child span around one pipeline stage. Without a configured tracer provider
    this is a no-op span, so callers never need to check whether tracing is on.
    """

    with _tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise


def _configure_logging(settings: TelemetrySettings) -> None:
    if _state["logging"]:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(_ContextLogFilter(settings.service_name, settings.traces_enabled))
    logging.basicConfig(level=settings.log_level, handlers=[handler], force=True)
    _state["logging"] = True


def _configure_tracing(settings: TelemetrySettings) -> None:
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))
    if settings.console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def _log_level(raw: str) -> int:
    level = getattr(logging, raw.strip().upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _env_flag(key: str) -> bool:
    return os.getenv(key, "false").strip().lower() in {"1", "true", "yes", "on"}


class _ContextLogFilter(logging.Filter):
    """Stamps service, request and trace identifiers onto every record."""

    def __init__(self, service_name: str, traces_enabled: bool) -> None:
        super().__init__()
        self._service_name = service_name
        self._traces_enabled = traces_enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self._service_name
        record.request_id = _request_id.get()
        record.trace_id = None
        record.span_id = None

        if self._traces_enabled:
            span_context = trace.get_current_span().get_span_context()
            if span_context.is_valid:
                record.trace_id = format(span_context.trace_id, "032x")
                record.span_id = format(span_context.span_id, "016x")
        return True
