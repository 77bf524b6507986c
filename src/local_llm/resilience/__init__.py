"""
Resilience layer on top of the inference client.

- GracefulDegradationService: per-feature state machine and fallbacks
- RetryScheduler: keyed background retries
- ConnectionMonitor: health polling with change notifications
"""

from local_llm.resilience.scheduler import RetryScheduler
from local_llm.resilience.monitor import ConnectionMonitor
from local_llm.resilience.degradation import GracefulDegradationService

__all__ = [
    "ConnectionMonitor",
    "GracefulDegradationService",
    "RetryScheduler",
]
