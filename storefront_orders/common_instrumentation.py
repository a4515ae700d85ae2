"""
OpenTelemetry wiring for the fulfillment service

Service code only calls trace.get_tracer(); this module decides where the
spans go and which libraries emit spans of their own.
"""
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, DEPLOYMENT_ENVIRONMENT
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def setup_opentelemetry(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4317",
    enabled: bool = True,
    environment: Optional[str] = None
) -> Optional[TracerProvider]:
    """
    Install a tracer provider exporting to an OTLP collector

    Also instruments httpx globally, so refunds, carrier calls and emails
    show up as children of the saga step that made them.
    """
    if not enabled:
        logger.info("OpenTelemetry disabled")
        return None

    attributes = {SERVICE_NAME: service_name}
    if environment:
        attributes[DEPLOYMENT_ENVIRONMENT] = environment

    provider = TracerProvider(resource=Resource(attributes=attributes))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    HTTPXClientInstrumentor().instrument()

    logger.info(f"OpenTelemetry initialized for {service_name}, exporting to {otlp_endpoint}")
    return provider


def instrument_service(app=None, engine=None) -> None:
    """Instrument the FastAPI app and/or the SQLAlchemy engine"""
    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health,ready")
        logger.info("FastAPI instrumented with OpenTelemetry")
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumented with OpenTelemetry")
