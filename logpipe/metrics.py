"""Metrics collector: thread-safe counters for batch shipping."""

import threading
import time
from collections import deque

# Send durations kept for the average and p95; older samples fall off.
SEND_TIME_WINDOW = 1024


class MetricsCollector:
    """Collects counters about sealed batches and their delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches_sent: int = 0
        self._batches_failed: int = 0
        self._records_sent: int = 0
        self._records_dropped: int = 0
        self._bytes_sent: int = 0
        self._send_times: deque = deque(maxlen=SEND_TIME_WINDOW)
        self._flush_triggers: dict = {"timer": 0, "size": 0, "close": 0}
        self._start_time = time.monotonic()

    def record_flush(self, trigger: str) -> None:
        """Count a seal, whatever its outcome. trigger is timer, size or close."""
        with self._lock:
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_sent(self, records: int, bytes_sent: int, send_time_ms: float) -> None:
        """Record a batch the endpoint accepted.

        Args:
            records: Number of records in the batch.
            bytes_sent: Size of the request body on the wire.
            send_time_ms: Time from request start to the end of the response.
        """
        with self._lock:
            self._batches_sent += 1
            self._records_sent += records
            self._bytes_sent += bytes_sent
            self._send_times.append(send_time_ms)

    def record_failed(self, records: int, send_time_ms: float) -> None:
        """A failed batch is dropped, so its records count as lost."""
        with self._lock:
            self._batches_failed += 1
            self._records_dropped += records
            self._send_times.append(send_time_ms)

    def snapshot(self) -> dict:
        """Return a point-in-time copy of all counters.

        Returns:
            Dict of totals since start. avg_send_time_ms and p95_send_time_ms
            cover only the most recent SEND_TIME_WINDOW sends.
        """
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "batches_sent": self._batches_sent,
                "batches_failed": self._batches_failed,
                "records_sent": self._records_sent,
                "records_dropped": self._records_dropped,
                "bytes_sent": self._bytes_sent,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Interpolated percentile of data, or 0.0 if empty."""
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
