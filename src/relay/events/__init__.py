"""Session event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Emits events as Prometheus metrics
- NullEventEmitter: Discards events (for testing)

Metrics:
- RelayMetrics: Container for all Prometheus metrics
- get_metrics / generate_metrics_output: Access and /metrics rendering
"""

from src.relay.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.relay.events.metrics import (
    MetricsEventEmitter,
    RelayMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.relay.events.models import EventType, SessionEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventSinkType",
    "EventType",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "RelayMetrics",
    "SessionEvent",
    "create_event_emitter",
    "generate_metrics_output",
    "get_metrics",
]
