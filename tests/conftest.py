from __future__ import annotations

import io
import json
from collections.abc import AsyncIterator, Callable, Iterator

import pytest
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.config import get_settings
from app.db.session import reset_engine
from app.main import app
from app.observability.logging import configure_logging, reset_logging
from app.observability.metrics import reset_metrics
from app.observability.tracing import shutdown_telemetry
from app.startup import initialize


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[InMemorySpanExporter]:
    monkeypatch.setenv("OTEL_EXPORT_ENABLED", "false")
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("TRACING_SAMPLING_PROBABILITY", "1.0")
    get_settings.cache_clear()
    reset_engine()
    reset_metrics()

    # httpx's ASGITransport does not send lifespan events, so run startup here.
    # The OTel global stays a no-op proxy: only begin_span spans reach the exporter.
    exporter = InMemorySpanExporter()
    initialize(span_exporter=exporter, install_global=False)

    yield exporter

    shutdown_telemetry()
    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def span_exporter(test_environment: InMemorySpanExporter) -> InMemorySpanExporter:
    return test_environment


@pytest.fixture
def log_lines() -> Iterator[Callable[[], list[dict]]]:
    stream = io.StringIO()
    reset_logging()
    configure_logging(level="INFO", fmt="json", stream=stream)

    def read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]

    yield read

    reset_logging()


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
