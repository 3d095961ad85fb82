"""Telemetry setup and the traced decorator (no tracer provider installed)."""

import pytest
from fastapi import FastAPI
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace.export import ConsoleSpanExporter

from mangacache.core.config import Settings
from mangacache.shared.telemetry import TelemetryConfig, add_span_attributes, traced
from mangacache.shared.telemetry.telemetry import _build_exporter


def test_disabled_telemetry_sets_nothing_up() -> None:
    telemetry = TelemetryConfig.from_settings(Settings(_env_file=None, telemetry_enabled=False))
    assert telemetry.setup_telemetry() is None
    telemetry.instrument(FastAPI())
    telemetry.shutdown()
    assert telemetry.tracer_provider is None


@pytest.mark.parametrize(
    ("exporter_type", "endpoint", "expected"),
    [
        ("console", None, ConsoleSpanExporter),
        ("otlp", "http://localhost:4317", OTLPSpanExporter),
        ("otlp", None, ConsoleSpanExporter),
        ("jaeger", None, ConsoleSpanExporter),
    ],
)
def test_build_exporter(exporter_type: str, endpoint: str | None, expected: type) -> None:
    assert isinstance(_build_exporter(exporter_type, endpoint), expected)


def test_build_exporter_none() -> None:
    assert _build_exporter("none", None) is None


async def test_traced_async_passes_results_and_errors_through() -> None:
    @traced("test.lookup")
    async def lookup(key: str, *, layer: str = "L1") -> str:
        if key == "missing":
            raise KeyError(key)
        return f"{layer}:{key}"

    assert await lookup("manga", layer="L2") == "L2:manga"
    assert lookup.__name__ == "lookup"
    with pytest.raises(KeyError):
        await lookup("missing")


def test_traced_sync_and_span_attributes_without_provider() -> None:
    @traced()
    def render(size: int) -> int:
        add_span_attributes(size=size)
        return size * 2

    assert render(21) == 42
