"""External integrations for the RWA risk monitor: quotes, notifications, telemetry."""

from .telemetry import ResiliencePolicy, SourceBreakerState, Telemetry

__all__ = ["ResiliencePolicy", "SourceBreakerState", "Telemetry"]
