"""Application metrics using the Prometheus client library.

This module defines all metrics in one place: a single inventory of
everything the wallet measures.  Other modules import specific metrics
and increment/observe them at the point of action.

WHAT MATTERS FOR A LEDGER-BACKED WALLET
-----------------------------------------
HTTP metrics tell you whether the API is up.  They don't tell you
whether the LEDGER is healthy, and most user-visible failures here
originate there:

  ledger_submissions_total{outcome="failed"}
    Rising failures mean transactions are being rejected or timing out.
    Every failed approve/revoke also shows up as a rollback:

  permission_rollbacks_total
    Each increment is a holder who saw a permission "snap back" in the
    UI.  Graph it next to submission failures; they should track 1:1
    for permission operations.

  key_derivation_seconds
    PBKDF2 at 100,000 iterations is deliberately slow (~50-150ms).  If
    this histogram drifts upward, logins are CPU-starved.

  authentications_total{result="failure"}
    A spike with no matching rise in traffic suggests credential
    guessing.  Pair it with rate_limit_hits_total.
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
    # Wider than a plain CRUD API: a permission change waits for a
    # ledger receipt, which can take several block times.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Wallet metrics
# ---------------------------------------------------------------------------

KEY_DERIVATIONS = Counter(
    "key_derivations_total",
    "Signing identity derivations by result",
    ["result"],  # "ok" or "error"
)

KEY_DERIVATION_SECONDS = Histogram(
    "key_derivation_seconds",
    "Time spent stretching (secret, identifier) into a private key",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

AUTHENTICATIONS = Counter(
    "authentications_total",
    "Holder authentication attempts by result",
    ["result"],  # "success" or "failure"
)

LEDGER_SUBMISSIONS = Counter(
    "ledger_submissions_total",
    "Ledger operations by kind and final outcome",
    ["operation", "outcome"],  # outcome: "confirmed" or "failed"
)

PERMISSION_ROLLBACKS = Counter(
    "permission_rollbacks_total",
    "Optimistic permission transitions reverted after a ledger failure",
    ["transition"],  # "approve", "revoke", "deny"
)

SESSIONS_ACTIVE = Gauge(
    "wallet_sessions_active",
    "Authenticated wallet sessions currently held in memory",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by kind",
    ["operation"],  # "hit", "miss", "set", "delete"
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "ip" or "identifier"
)
