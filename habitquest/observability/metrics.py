"""
Prometheus metrics definitions for habitquest.

Metrics are organized by category:
- HTTP/API metrics: Request counts, latency
- XP metrics: XP awarded by source
- Challenge metrics: Lifecycle transitions and settlements
- AI Sage metrics: Insight requests and outcomes
- Circuit breaker metrics: Protected endpoint state and failures

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
from prometheus_client import Counter, Enum, Gauge, Histogram

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_requests_total = Counter(
    "habitquest_http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "habitquest_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

http_requests_in_progress = Gauge(
    "habitquest_http_requests_in_progress",
    "HTTP requests currently being processed",
    ["method", "endpoint"],
)

# =============================================================================
# XP Metrics
# =============================================================================

xp_awarded_total = Counter(
    "habitquest_xp_awarded_total",
    "Total XP credited to users",
    ["source_type"],  # habit/challenge_payout/challenge_refund
)

# =============================================================================
# Challenge Metrics
# =============================================================================

challenge_transitions_total = Counter(
    "habitquest_challenge_transitions_total",
    "Challenge lifecycle transitions",
    ["action"],  # create/accept/reject/resolve/reconcile
)

challenge_outcomes_total = Counter(
    "habitquest_challenge_outcomes_total",
    "Resolved challenges by stored outcome",
    ["challenge_type", "outcome"],
)

open_challenges = Gauge(
    "habitquest_open_challenges",
    "Challenges not yet resolved, refreshed on each scrape",
    ["status"],  # pending/active
)

# =============================================================================
# AI Sage Metrics
# =============================================================================

insight_requests_total = Counter(
    "habitquest_insight_requests_total",
    "AI Sage insight requests",
    ["outcome"],  # success/service_error/parse_error/circuit_open
)

insight_request_duration_seconds = Histogram(
    "habitquest_insight_request_duration_seconds",
    "AI Sage text-generation latency in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, float("inf")),
)

# =============================================================================
# Circuit Breaker Metrics
# =============================================================================

circuit_breaker_state = Enum(
    "habitquest_circuit_breaker_state",
    "Current state of circuit breaker",
    ["api"],
    states=["closed", "open", "half-open"],
)

api_failures_total = Counter(
    "habitquest_api_failures_total",
    "Total number of external API failures",
    ["api", "error_type"],
)


def record_circuit_breaker_state(api: str, state: str) -> None:
    """
    Record circuit breaker state change.

    Args:
        api: Breaker name
        state: New state (closed, open, half-open)
    """
    try:
        circuit_breaker_state.labels(api=api).state(state)
        logger.debug(f"[METRICS] Circuit breaker {api} state: {state}")
    except ValueError as e:
        logger.error(f"Failed to record circuit breaker state: {e}")


def record_api_failure(api: str, error_type: str) -> None:
    api_failures_total.labels(api=api, error_type=error_type).inc()
