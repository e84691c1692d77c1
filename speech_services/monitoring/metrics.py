"""Prometheus metrics definitions.

All metrics for the speech services client.
The host application exposes them (e.g. via generate_latest()).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# --- Streaming session metrics ---

active_sessions = Gauge(
    "speech_active_sessions",
    "Number of currently open streaming sessions",
    ["service"],
)

sessions_total = Counter(
    "speech_sessions_total",
    "Streaming sessions by terminal outcome",
    ["service", "outcome"],  # completed, closed, error
)

frames_sent_total = Counter(
    "speech_frames_sent_total",
    "Wire frames sent over streaming sessions",
    ["service"],
)

messages_received_total = Counter(
    "speech_messages_received_total",
    "Decoded incoming messages",
    ["service", "result"],  # ok, error
)

session_duration_seconds = Histogram(
    "speech_session_duration_seconds",
    "Streaming session duration from open to terminal event",
    ["service"],
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120],
)

# --- HTTP metrics ---

http_requests_total = Counter(
    "speech_http_requests_total",
    "One-shot HTTP calls by service and status",
    ["service", "status"],
)

credential_refresh_total = Counter(
    "speech_credential_refresh_total",
    "Bearer credential fetches",
    ["service", "reason"],  # initial, expired, forced
)

rate_limit_wait_seconds = Histogram(
    "speech_rate_limit_wait_seconds",
    "Time spent waiting for rate limiter admission",
    ["endpoint"],
    buckets=[0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
