import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# OpenTelemetry Imports (Basic Setup)
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.core.config import settings
from app.core.exceptions import ExtractionError
from app.extraction import router as extraction_router
from app.extraction.router import error_response
from app.logging_config import setup_logging
from app.services.operational_log import OperationalLogWriter
from app.services.queue_client import QueueClient
from app.services.shopify_client import ShopifyGraphQLClient

# Call setup_logging early, before creating app or loggers
setup_logging()
logger = logging.getLogger(__name__)

# --- Rate Limiting Setup ---
limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])


def setup_opentelemetry(app: FastAPI):
    if not settings.OPENTELEMETRY_ENABLED:
        logger.info("OpenTelemetry tracing is disabled via OPENTELEMETRY_ENABLED setting.")
        return

    logger.info("Setting up OpenTelemetry")
    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: settings.SERVICE_NAME}))
    trace.set_tracer_provider(provider)

    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        endpoint = f"{settings.OTEL_EXPORTER_OTLP_ENDPOINT.strip('/')}/v1/traces"
        logger.info(f"Configuring OTLP Exporter to: {endpoint}")
        try:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        except Exception as e:
            logger.error(f"Failed to initialize OTLP Exporter: {e}. Falling back to Console Exporter.")
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    else:
        logger.warning("OTEL_EXPORTER_OTLP_ENDPOINT not set. Defaulting to ConsoleSpanExporter.")
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    FastAPIInstrumentor.instrument_app(app)
    logger.info("OpenTelemetry setup complete.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = httpx.AsyncClient()
    app.state.shopify_client = ShopifyGraphQLClient(http_client=http_client)
    app.state.operational_log = OperationalLogWriter()
    app.state.queue_client = QueueClient()
    await app.state.queue_client.connect()

    logger.info("Application startup complete.")
    yield

    await app.state.operational_log.drain()
    await app.state.queue_client.close()
    await http_client.aclose()
    logger.info("Application shutdown.")


app = FastAPI(title="FlowTechs Extraction", lifespan=lifespan)
setup_opentelemetry(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(extraction_router)


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    """Typed pipeline errors that escape a route keep their code and status."""
    logger.warning(
        f"Unhandled extraction error: {exc.message}",
        extra={"props": {"path": request.url.path, "code": exc.code.value}},
    )
    return error_response(exc)


@app.get("/health")
@limiter.limit("10/minute")
async def health_check(request: Request):
    logger.debug("Health check endpoint called")
    queue_client = getattr(request.app.state, "queue_client", None)
    return {
        "status": "ok",
        "queue_connected": bool(queue_client and queue_client.is_connected),
    }


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Uvicorn directly for local testing")
    uvicorn.run(app, host="0.0.0.0", port=8000)
