"""One-shot process initialization, run before the app accepts requests."""

from __future__ import annotations

from opentelemetry.sdk.trace.export import SpanExporter

from app.config import get_settings
from app.db.session import get_sessionmaker, init_db
from app.observability.logging import configure_logging
from app.observability.tracing import configure_log_export, configure_metrics_export, configure_tracing
from app.services.user_service import seed_users


def initialize(span_exporter: SpanExporter | None = None, install_global: bool = True) -> None:
    settings = get_settings()

    configure_logging(level=settings.log_level.upper(), fmt=settings.log_format)
    configure_tracing(settings, span_exporter=span_exporter, install_global=install_global)
    configure_metrics_export(settings)
    configure_log_export(settings)

    init_db()
    with get_sessionmaker()() as db:
        seed_users(db)
