import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from cookie_relay.cookie_jar import CookieJarBase, cookie_jar
from cookie_relay.cors import CORSGateMiddleware, CORSPolicy
from cookie_relay.errors import RelayError
from cookie_relay.relay import RelayHandler, RelaySettings, build_upstream_client
from cookie_relay.routes import build_router
from cookie_relay.vars import HOST, OTLP_ENDPOINT, OTLP_HEADERS, PORT, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed relay responses.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def _parse_otlp_headers(raw: str) -> Optional[dict[str, str]]:
    headers: dict[str, str] = {}
    for entry in raw.split(","):
        if "=" in entry:
            key, val = entry.split("=", 1)
            if key.strip():
                headers[key.strip()] = val.strip()
    return headers or None


def configure_tracing() -> None:
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT, headers=_parse_otlp_headers(OTLP_HEADERS)
        )
        trace.get_tracer_provider().add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )


async def relay_error_handler(request: Request, exc: RelayError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=exc.status_code)


def create_app(
    jar: Optional[CookieJarBase] = None,
    settings: Optional[RelaySettings] = None,
    cors_policy: Optional[CORSPolicy] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Compose the relay: one cookie jar and one upstream client per application.

    ``transport`` replaces the network transport of the upstream client (tests
    pass an ``httpx.MockTransport``).
    """
    settings = settings or RelaySettings.from_env()
    jar = jar if jar is not None else cookie_jar()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = build_upstream_client(settings, transport)
        app.state.relay_handler = RelayHandler(jar, client, settings)
        logger.info(
            f"Cookie relay on port {PORT} forwarding to "
            f"{settings.upstream_scheme}://{settings.upstream_host}"
        )
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.state.cookie_jar = jar

    app.add_middleware(CORSGateMiddleware, policy=cors_policy or CORSPolicy.from_env())
    app.add_exception_handler(RelayError, relay_error_handler)

    registry = CollectorRegistry()
    Instrumentator(registry=registry).instrument(app).expose(app)
    app_info = Info("relay_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME, "upstream_host": settings.upstream_host})

    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics")

    app.include_router(build_router(settings.api_prefix))
    return app


configure_tracing()
app = create_app()


def main():
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
