"""Prometheus metrics for relay observability.

Metrics Defined:
- relay_sessions_created_total: Counter of Jules sessions created
- relay_sessions_finished_total: Counter of finished poll loops by result
- relay_poll_errors_total: Counter of failed poll ticks
- relay_session_failures_total: Counter of failed starts by stage
- relay_session_poll_attempts: Histogram of ticks needed per session

The MetricsEventEmitter updates these from session events. Metrics are
exposed at the /metrics endpoint in Prometheus format.

Source:
- src/relay/events/models.py (SessionEvent, EventType)
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.relay.events.emitter import EventEmitter
from src.relay.events.models import EventType, SessionEvent


logger = logging.getLogger(__name__)


# Ticks per session, up to the default limit of 60
POLL_ATTEMPT_BUCKETS = (1, 2, 3, 6, 12, 18, 30, 45, 60)


class RelayMetrics:
    """Container for all relay Prometheus metrics.

    Pass a custom registry in tests to avoid duplicate registration in
    the default REGISTRY.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.sessions_created_total = Counter(
            "relay_sessions_created_total",
            "Total number of Jules sessions created",
            registry=self.registry,
        )

        self.sessions_finished_total = Counter(
            "relay_sessions_finished_total",
            "Total number of poll loops that reached a terminal phase",
            labelnames=["result"],
            registry=self.registry,
        )

        self.poll_errors_total = Counter(
            "relay_poll_errors_total",
            "Total number of poll ticks whose fetch failed",
            registry=self.registry,
        )

        self.session_failures_total = Counter(
            "relay_session_failures_total",
            "Total number of session starts that failed",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.session_poll_attempts = Histogram(
            "relay_session_poll_attempts",
            "Number of poll ticks run per session",
            buckets=POLL_ATTEMPT_BUCKETS,
            registry=self.registry,
        )

    def record_finished(self, result: str, attempts: Optional[int]) -> None:
        self.sessions_finished_total.labels(result=result).inc()
        if attempts is not None:
            self.session_poll_attempts.observe(attempts)


_default_metrics: Optional[RelayMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> RelayMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return RelayMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = RelayMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics."""

    def __init__(
        self,
        metrics: Optional[RelayMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> RelayMetrics:
        return self._metrics

    async def emit(self, event: SessionEvent) -> None:
        try:
            if event.event_type == EventType.SESSION_CREATED:
                self._metrics.sessions_created_total.inc()
            elif event.event_type == EventType.POLL_ERROR:
                self._metrics.poll_errors_total.inc()
            elif event.event_type == EventType.COMPLETION:
                self._metrics.record_finished(
                    "completed", event.details.get("attempts")
                )
            elif event.event_type == EventType.TIMEOUT:
                self._metrics.record_finished(
                    "timed_out", event.details.get("attempts")
                )
            elif event.event_type == EventType.ERROR:
                self._metrics.session_failures_total.labels(
                    stage=event.details.get("stage", "unknown")
                ).inc()
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "session_id": event.session_id,
                },
            )
