"""Prometheus metrics and OpenTelemetry spans for lockfile runs."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional

from opentelemetry import trace as ot_trace
from opentelemetry.trace import Span, Status, StatusCode
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


def _get_existing(registry: CollectorRegistry, name: str) -> Any:
    """Return an existing collector registered under ``name`` if available."""

    mapping = getattr(registry, "_names_to_collectors", None)
    if isinstance(mapping, dict):
        return mapping.get(name)
    return None


@dataclass(frozen=True)
class TelemetrySettings:
    service_name: str = "actions-lockfile"
    env: str = "dev"


class TelemetryManager:
    """Factory for the collectors and spans used by the client and resolver."""

    def __init__(
        self,
        settings: Optional[TelemetrySettings] = None,
        *,
        registry: CollectorRegistry = REGISTRY,
    ) -> None:
        self.settings = settings or TelemetrySettings()
        self.registry = registry
        self._tracer = ot_trace.get_tracer(self.settings.service_name)

    def counter(
        self,
        name: str,
        description: str,
        *,
        labelnames: Optional[Iterable[str]] = None,
    ) -> Counter:
        """Return a Counter, reusing an existing one when available."""

        existing = _get_existing(self.registry, name)
        if isinstance(existing, Counter):
            return existing
        return Counter(
            name,
            description,
            labelnames=tuple(labelnames or ()),
            registry=self.registry,
        )

    def histogram(
        self,
        name: str,
        description: str,
        *,
        buckets: Optional[Iterable[float]] = None,
        labelnames: Optional[Iterable[str]] = None,
    ) -> Histogram:
        """Return a Histogram, reusing an existing one when available."""

        existing = _get_existing(self.registry, name)
        if isinstance(existing, Histogram):
            return existing
        kwargs: Dict[str, Any] = {
            "name": name,
            "documentation": description,
            "labelnames": tuple(labelnames or ()),
            "registry": self.registry,
        }
        if buckets is not None:
            kwargs["buckets"] = tuple(buckets)
        return Histogram(**kwargs)

    @contextmanager
    def span(self, name: str, *, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Span]:
        attrs: Dict[str, Any] = {
            "service.name": self.settings.service_name,
            "service.env": self.settings.env,
        }
        if attributes:
            attrs.update(attributes)
        with self._tracer.start_as_current_span(name, attributes=attrs) as span:
            yield span

    @staticmethod
    def record_error(span: Span, exc: BaseException) -> None:
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, str(exc)))


_DEFAULT: Optional[TelemetryManager] = None


def get_telemetry() -> TelemetryManager:
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = TelemetryManager()
    return _DEFAULT


def configure_telemetry(settings: TelemetrySettings) -> TelemetryManager:
    global _DEFAULT
    _DEFAULT = TelemetryManager(settings)
    return _DEFAULT


__all__ = ["TelemetryManager", "TelemetrySettings", "configure_telemetry", "get_telemetry"]
