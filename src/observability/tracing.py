"""
OpenTelemetry tracing 配置。

提供全局 tracer 供引擎使用：
    from src.observability import tracer
    with tracer.start_as_current_span("sync.refresh_record"):
        ...

仅在 INDEX_TRACE_CONSOLE=1 时启用 console export，避免日志噪音；
生产环境可替换为 OTLP exporter。
"""

import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

SERVICE_NAME = "eprint-index"
SERVICE_VERSION = "0.1.0"

_resource = Resource.create({"service.name": SERVICE_NAME, "service.version": SERVICE_VERSION})

_provider = TracerProvider(resource=_resource)

if os.getenv("INDEX_TRACE_CONSOLE", "0") == "1":
    _provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

trace.set_tracer_provider(_provider)

tracer = trace.get_tracer(SERVICE_NAME, SERVICE_VERSION)
