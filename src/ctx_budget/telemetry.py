"""OpenTelemetry spans around budget maintenance and state-file I/O.

Nothing is exported until :func:`configure_tracing` installs a tracer with a
``stdout`` or ``otlp`` exporter; until then every span is a no-op.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import NoOpTracer, Span, Tracer

logger = logging.getLogger(__name__)

_EXPORTERS = frozenset({"none", "stdout", "otlp"})


@dataclass
class TelemetryConfig:
    service_name: str = "ctx-budget"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TelemetryConfig:
        """Read ``CTX_BUDGET_TRACE_EXPORTER`` and ``CTX_BUDGET_OTLP_ENDPOINT``.

        Raises:
            ValueError: If the exporter name is not one of none, stdout, otlp.
        """
        env = os.environ if env is None else env
        exporter = env.get("CTX_BUDGET_TRACE_EXPORTER", "none").strip().lower() or "none"
        if exporter not in _EXPORTERS:
            msg = (
                f"Unknown CTX_BUDGET_TRACE_EXPORTER={exporter!r}. "
                f"Valid values: {', '.join(sorted(_EXPORTERS))}"
            )
            raise ValueError(msg)
        endpoint = env.get("CTX_BUDGET_OTLP_ENDPOINT", "").strip() or cls.otlp_endpoint
        return cls(exporter=exporter, otlp_endpoint=endpoint)


def _build_exporter(cfg: TelemetryConfig) -> SpanExporter | None:
    if cfg.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return ConsoleSpanExporter()
    if cfg.exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:  # pragma: no cover
            logger.warning("OTLP exporter not installed (pip install 'ctx-budget[otlp]')")
            return None
        return OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
    return None


class BudgetTracer:
    """Owns one ``TracerProvider`` and hands out spans from it."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def active(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        cfg = self._config
        if not cfg.enabled:
            return
        exporter = _build_exporter(cfg)
        if exporter is None:
            return
        provider = TracerProvider(resource=Resource.create({"service.name": cfg.service_name}))
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        self._provider = provider
        self._tracer = provider.get_tracer(cfg.service_name)

    @contextlib.contextmanager
    def span(
        self, name: str, attributes: dict[str, Any] | None = None
    ) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=attributes) as s:
            yield s

    def record_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        """Attach an event to the active span; dropped when nothing records."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, attributes or {})

    def shutdown(self) -> None:
        # Idempotent.
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None


_DEFAULT_TRACER: BudgetTracer | None = None


def get_tracer() -> BudgetTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = BudgetTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> BudgetTracer:
    """Replace the process-wide tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = BudgetTracer(config)
    _DEFAULT_TRACER.init()
    return _DEFAULT_TRACER


# ---------------------------------------------------------------------------
# Operation spans
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_compaction(tokens_before: int, target: float) -> Generator[Span, None, None]:
    attributes = {"budget.tokens_before": tokens_before, "budget.target_saturation": target}
    with get_tracer().span("budget/compact", attributes) as s:
        yield s


@contextlib.contextmanager
def trace_aging(item_count: int) -> Generator[Span, None, None]:
    with get_tracer().span("budget/age", {"budget.items": item_count}) as s:
        yield s


@contextlib.contextmanager
def trace_persistence(operation: str, path: str) -> Generator[Span, None, None]:
    with get_tracer().span(f"persistence/{operation}", {"persistence.path": path}) as s:
        yield s


def record_event(name: str, attributes: dict[str, Any] | None = None) -> None:
    get_tracer().record_event(name, attributes)
