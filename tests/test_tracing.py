import asyncio

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from app.config import get_settings
from app.observability.metrics import get_metrics
from app.observability.tracing import begin_span, configure_tracing, get_tracer_provider, parse_otlp_headers


def test_nested_spans_link_to_parent_and_restore_current(span_exporter) -> None:
    assert not trace.get_current_span().get_span_context().is_valid

    with begin_span("outer") as outer:
        with begin_span("inner", {"step": 1}) as inner:
            assert trace.get_current_span() is inner
        assert trace.get_current_span() is outer

    assert not trace.get_current_span().get_span_context().is_valid

    inner_span, outer_span = span_exporter.get_finished_spans()
    assert inner_span.name == "inner"
    assert inner_span.attributes["step"] == 1
    assert inner_span.parent.span_id == outer_span.context.span_id
    assert inner_span.context.trace_id == outer_span.context.trace_id
    assert outer_span.parent is None


def test_span_is_ended_and_marked_error_when_block_raises(span_exporter) -> None:
    with pytest.raises(ValueError, match="boom"):
        with begin_span("failing"):
            raise ValueError("boom")

    assert not trace.get_current_span().get_span_context().is_valid

    (span,) = span_exporter.get_finished_spans()
    assert span.end_time is not None
    assert span.status.status_code == StatusCode.ERROR
    assert any(event.name == "exception" for event in span.events)


def test_started_and_ended_span_counts_match_after_failures(span_exporter) -> None:
    for i in range(5):
        try:
            with begin_span("work"):
                if i % 2:
                    raise RuntimeError("odd")
        except RuntimeError:
            pass

    counters = get_metrics().snapshot()["counters"]
    assert counters["spans_started_total"] == 5
    assert counters["spans_ended_total"] == 5
    assert len(span_exporter.get_finished_spans()) == 5


async def test_concurrent_tasks_keep_independent_current_spans(span_exporter) -> None:
    async def worker(label: str) -> tuple[int, int]:
        with begin_span(label) as span:
            await asyncio.sleep(0.01)
            current = trace.get_current_span()
            return span.get_span_context().span_id, current.get_span_context().span_id

    results = await asyncio.gather(*(worker(f"task-{i}") for i in range(10)))

    assert all(own == seen for own, seen in results)
    assert len({own for own, _ in results}) == 10
    # No task became another's parent.
    assert all(span.parent is None for span in span_exporter.get_finished_spans())


def test_zero_sampling_probability_exports_nothing_but_keeps_ids(monkeypatch) -> None:
    monkeypatch.setenv("TRACING_SAMPLING_PROBABILITY", "0")
    get_settings.cache_clear()
    exporter = InMemorySpanExporter()
    configure_tracing(get_settings(), span_exporter=exporter, install_global=False)

    with begin_span("dropped") as span:
        assert not span.is_recording()
        assert span.get_span_context().is_valid

    assert exporter.get_finished_spans() == ()


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("") == {}
    assert parse_otlp_headers("authorization=Bearer abc, env=prod") == {
        "authorization": "Bearer abc",
        "env": "prod",
    }
    assert parse_otlp_headers("novalue,=x,k=a=b") == {"k": "a=b"}


async def test_only_handler_spans_are_recorded_when_global_provider_is_untouched(api_client, span_exporter) -> None:
    provider = get_tracer_provider()
    assert provider is not None
    assert trace.get_tracer_provider() is not provider

    for path in ("/", "/greet/Dan", "/"):
        await api_client.get(path)

    assert [s.name for s in span_exporter.get_finished_spans()] == ["home", "greet", "home"]
    counters = get_metrics().snapshot()["counters"]
    assert counters["spans_started_total"] == counters["spans_ended_total"] == 3
