"""CloudWatch custom metrics, aggregated per flush window.

Two families of metrics are kept:

``Upstream/*``
    One request count per call to the dispatch API or the LLM Responses API
    (split by ``Status``), an error count split by ``ErrorType``, and a
    latency statistic set per ``(Service, Operation)``.

``Cache/Requests``
    One count per cache outcome.  The credential cache reports ``hit`` and
    ``refresh``; the voucher-account cache additionally reports ``stale``
    (refresh failed, previous accounts served) and ``empty`` (refresh failed
    with nothing to fall back on).  A rising ``stale``/``empty`` share is the
    first sign the dispatch API is rejecting the agent credentials.

Nothing is sent per call.  Counts are summed and latencies folded into
``StatisticValues`` in memory, so a busy minute of calls costs one datum per
distinct dimension set.  A daemon thread flushes the window to CloudWatch
every ``FLUSH_INTERVAL_SECONDS``; :meth:`MetricsClient.close` stops it and
sends whatever is left.  With ``METRICS_ENABLED`` unset the window is still
aggregated (and logged at DEBUG) but dropped on flush.

>>> from calltaker.services.metrics import metrics
>>> metrics.record_cache("voucher_accounts", "stale")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "CallTaker"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call

CACHE_OUTCOMES = ("hit", "refresh", "stale", "empty")

# (metric name, ((dimension, value), ...)) in emission order
_Key = tuple[str, tuple[tuple[str, str], ...]]


@dataclass
class _Latency:
    count: int = 0
    total: float = 0.0
    low: float = float("inf")
    high: float = 0.0

    def add(self, value_ms: float) -> None:
        self.count += 1
        self.total += value_ms
        self.low = min(self.low, value_ms)
        self.high = max(self.high, value_ms)


def _datum(key: _Key, timestamp: datetime, **fields: Any) -> dict[str, Any]:
    name, dims = key
    return {
        "MetricName": name,
        "Dimensions": [{"Name": n, "Value": v} for n, v in dims],
        "Timestamp": timestamp,
        **fields,
    }


class MetricsClient:
    """Per-window aggregating CloudWatch publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._counts: Counter[_Key] = Counter()
        self._latencies: dict[_Key, _Latency] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ─────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        with self._lock:
            self._count("Upstream/RequestCount", Service=service, Status="success")
            self._latency(service, operation, latency_ms)
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self, service: str, operation: str, error_type: str, latency_ms: float = 0,
    ) -> None:
        """Record a failed upstream call.

        ``latency_ms`` is 0 when the request never completed; such calls are
        counted but kept out of the latency statistics.
        """
        with self._lock:
            self._count("Upstream/RequestCount", Service=service, Status="failure")
            self._count("Upstream/ErrorCount", Service=service, ErrorType=error_type)
            if latency_ms > 0:
                self._latency(service, operation, latency_ms)
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    def record_cache(self, cache: str, outcome: str) -> None:
        """Count one lookup against *cache* (see ``CACHE_OUTCOMES``)."""
        if outcome not in CACHE_OUTCOMES:
            raise ValueError(f"Unknown cache outcome: {outcome!r}")
        with self._lock:
            self._count("Cache/Requests", Cache=cache, Outcome=outcome)
        logger.debug("Metric: cache %s %s", cache, outcome)

    # ── Flushing ──────────────────────────────────────────────────────

    def snapshot(self) -> list[dict[str, Any]]:
        """MetricData for the current window, without resetting it."""
        with self._lock:
            return self._build(self._counts, self._latencies, datetime.now(UTC))

    def flush(self) -> int:
        """Close the current window and send it.  Returns data points sent."""
        with self._lock:
            if not self._counts and not self._latencies:
                return 0
            data = self._build(self._counts, self._latencies, datetime.now(UTC))
            self._counts = Counter()
            self._latencies = {}

        if not self._enabled:
            logger.debug("Metrics window dropped (not enabled): %d data points", len(data))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(data), MAX_BATCH_SIZE):
                chunk = data[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def close(self) -> int:
        """Stop the flush thread and send the final window."""
        self._stop.set()
        return self.flush()

    # ── Internal ──────────────────────────────────────────────────────

    def _count(self, name: str, **dims: str) -> None:
        self._counts[(name, tuple(dims.items()))] += 1

    def _latency(self, service: str, operation: str, value_ms: float) -> None:
        key = ("Upstream/Latency", (("Service", service), ("Operation", operation)))
        self._latencies.setdefault(key, _Latency()).add(value_ms)

    @staticmethod
    def _build(
        counts: Counter[_Key], latencies: dict[_Key, _Latency], now: datetime,
    ) -> list[dict[str, Any]]:
        data = [_datum(key, now, Value=n, Unit="Count") for key, n in counts.items()]
        data.extend(
            _datum(
                key,
                now,
                StatisticValues={
                    "SampleCount": stats.count,
                    "Sum": stats.total,
                    "Minimum": stats.low,
                    "Maximum": stats.high,
                },
                Unit="Milliseconds",
            )
            for key, stats in latencies.items()
        )
        return data

    def _start_flush_thread(self) -> None:
        def _loop():
            while not self._stop.wait(FLUSH_INTERVAL_SECONDS):
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.close)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
