"""CloudWatch custom metrics for outbound calls (Anthropic, Salesforce).

Data points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Unless ``METRICS_ENABLED=true`` the buffer is
only logged at DEBUG level and discarded on flush.

Usage
-----
>>> from appointment_assistant.services.metrics import metrics
>>> with metrics.track("salesforce", "create Appointment__c"):
...     crm.create("Appointment__c", data)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "BankAppointments"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ────────────────────────────────────────────────────

    @contextmanager
    def track(self, service: str, operation: str) -> Iterator[None]:
        """Time the enclosed call and record success or failure.

        The exception, if any, is re-raised untouched.
        """
        start = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record_failure(
                service,
                operation,
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - start) * 1000,
            )
            raise
        self.record_success(service, operation, latency_ms=(time.perf_counter() - start) * 1000)

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(_datum("Outbound/Calls", [service_dim, {"Name": "Outcome", "Value": "success"}], now, 1, "Count"))
        self._append(_datum(
            "Outbound/Latency",
            [service_dim, {"Name": "Operation", "Value": operation}],
            now,
            latency_ms,
            "Milliseconds",
        ))
        logger.debug("Metric: %s %s ok in %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(_datum("Outbound/Calls", [service_dim, {"Name": "Outcome", "Value": "failure"}], now, 1, "Count"))
        self._append(_datum(
            "Outbound/Errors",
            [service_dim, {"Name": "ErrorType", "Value": error_type}],
            now,
            1,
            "Count",
        ))
        if latency_ms > 0:
            self._append(_datum(
                "Outbound/Latency",
                [service_dim, {"Name": "Operation", "Value": operation}],
                now,
                latency_ms,
                "Milliseconds",
            ))
        logger.debug("Metric: %s %s failed (%s) after %.1fms", service, operation, error_type, latency_ms)

    # ── Publishing ───────────────────────────────────────────────────

    def flush(self) -> int:
        """Push buffered data points to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics disabled, dropping %d data points", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Published %d metric data points", sent)
        except Exception:
            logger.exception("CloudWatch publish failed")
        return sent

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _append(self, datum: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(datum)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics publishing every %ds to %s", FLUSH_INTERVAL_SECONDS, NAMESPACE)


def _datum(
    name: str,
    dimensions: list[dict[str, str]],
    timestamp: datetime,
    value: float,
    unit: str,
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": dimensions,
        "Timestamp": timestamp,
        "Value": value,
        "Unit": unit,
    }


metrics = MetricsClient()
