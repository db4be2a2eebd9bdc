"""Application metrics using the Prometheus client library.

One inventory of everything the service measures.  Other modules import
specific metrics and increment/observe them at the point of action.

HTTP metrics are populated by MetricsMiddleware.  Domain metrics are
populated by the lifecycle engine:

  attempts_started_total          : rate of exam starts; a spike at the
                                     open time of an exam is expected
  penalty_events_total            : anti-cheat signals by tag, split by
                                     whether they consumed a life
  attempt_finalizations_total     : how attempts end: explicit submit,
                                     lives exhausted, or deadline expiry
  feed_events_published_total     : teacher dashboard feed volume

LABEL CARDINALITY
-----------------
Violation tags come from browsers and can be anything.  Using the raw
tag as a label would let one misbehaving client create an unbounded
number of time series.  Non-penalizing tags are folded into "other".
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Attempt lifecycle metrics
# ---------------------------------------------------------------------------

ATTEMPTS_STARTED = Counter(
    "attempts_started_total",
    "Exam attempts created",
)

PENALTY_EVENTS = Counter(
    "penalty_events_total",
    "Anti-cheat events recorded against running attempts",
    ["tag", "penalized"],  # tag is a penalizing tag or "other"
)

ATTEMPT_FINALIZATIONS = Counter(
    "attempt_finalizations_total",
    "Attempts moved to a terminal state",
    ["reason"],  # submitted|lives_exhausted|expired
)

FEED_EVENTS_PUBLISHED = Counter(
    "feed_events_published_total",
    "Events published to exam dashboards",
    ["type"],
)
