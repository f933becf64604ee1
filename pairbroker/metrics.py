from __future__ import annotations

from prometheus_client import Counter, Gauge


SESSIONS_LIVE = Gauge(
    "pairbroker_sessions_live",
    "Number of pairing sessions currently held in the session store",
)
PAIRING_REQUESTS_TOTAL = Counter(
    "pairbroker_pairing_requests_total",
    "Pairing requests grouped by the response returned to the caller",
    ["outcome"],
)
SESSIONS_CLOSED_TOTAL = Counter(
    "pairbroker_sessions_closed_total",
    "Pairing sessions cleaned up, grouped by terminal reason",
    ["reason"],
)
CREDENTIALS_DELIVERED_TOTAL = Counter(
    "pairbroker_credentials_delivered_total",
    "Total number of session strings delivered to registered accounts",
)

__all__ = [
    "CREDENTIALS_DELIVERED_TOTAL",
    "PAIRING_REQUESTS_TOTAL",
    "SESSIONS_CLOSED_TOTAL",
    "SESSIONS_LIVE",
]
