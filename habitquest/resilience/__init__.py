"""Resilience patterns for external API calls"""

from habitquest.resilience.circuit_breaker import (
    INSIGHT_BREAKER,
    CircuitBreakerListener,
    with_circuit_breaker,
)

__all__ = [
    "INSIGHT_BREAKER",
    "CircuitBreakerListener",
    "with_circuit_breaker",
]
