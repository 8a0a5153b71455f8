"""CloudWatch metrics for the booking assistant.

Two families of data points are published:

* ``ExternalAPI/*`` — one count per call to the marketplace backend or the
  model provider, a latency sample and, on failure, an error count tagged
  with the error type.
* ``Tools/*`` — one count per tool invocation tagged with its outcome, so
  the share of ``createBooking`` calls refused for anonymous callers (or
  timing out) is visible without reading transcripts.

Points are buffered in memory and pushed by a daemon thread once a minute.
Unless ``METRICS_ENABLED=true`` nothing leaves the process; the buffer is
still filled, which is what the tests inspect.

>>> from src.services.metrics import metrics
>>> metrics.record_tool("createBooking", outcome="unauthenticated", latency_ms=0.3)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Aparatus/BookingAssistant"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit

# Outcomes ``record_tool`` is called with.
TOOL_OUTCOMES = ("ok", "error", "invalid_arguments", "unauthenticated", "timeout", "unknown_tool")


class MetricsClient:
    """Thread-safe buffer of CloudWatch data points."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    # ── Recording ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """One successful call to *service*."""
        self._emit("ExternalAPI/RequestCount", 1, Service=service, Status="success")
        self._emit(
            "ExternalAPI/Latency", latency_ms, unit="Milliseconds",
            Service=service, Operation=operation,
        )
        logger.debug("metric %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """One failed call to *service*.  Latency is only sampled when known."""
        self._emit("ExternalAPI/RequestCount", 1, Service=service, Status="failure")
        self._emit("ExternalAPI/ErrorCount", 1, Service=service, ErrorType=error_type)
        if latency_ms > 0:
            self._emit(
                "ExternalAPI/Latency", latency_ms, unit="Milliseconds",
                Service=service, Operation=operation,
            )
        logger.debug("metric %s %s failed (%s)", service, operation, error_type)

    def record_tool(self, tool_name: str, outcome: str, latency_ms: float) -> None:
        """One tool invocation; *outcome* must be one of :data:`TOOL_OUTCOMES`."""
        if outcome not in TOOL_OUTCOMES:
            raise ValueError(f"Unknown tool outcome: {outcome!r}")
        self._emit("Tools/Invocations", 1, Tool=tool_name, Outcome=outcome)
        self._emit("Tools/Latency", latency_ms, unit="Milliseconds", Tool=tool_name)

    def _emit(self, name: str, value: float, *, unit: str = "Count", **dimensions: str) -> None:
        point = {
            "MetricName": name,
            "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
            "Timestamp": datetime.now(UTC),
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(point)

    # ── Publishing ───────────────────────────────────────────────────

    def flush(self) -> int:
        """Drain the buffer; returns the number of points pushed."""
        with self._lock:
            batch, self._buffer = self._buffer, []

        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Dropping %d metric points (metrics disabled)", len(batch))
            return 0

        sent = 0
        try:
            if self._cw_client is None:
                import boto3

                self._cw_client = boto3.client("cloudwatch")
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                self._cw_client.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("CloudWatch publish failed after %d points", sent)
        else:
            logger.info("Published %d metric points", sent)
        return sent

    def _start_flush_thread(self) -> None:
        def _loop() -> None:
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                self.flush()

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics publishing every %ds to %s", FLUSH_INTERVAL_SECONDS, NAMESPACE)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
