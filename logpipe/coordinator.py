"""Flush coordinator: owns the open batch, the flush timer and the intake queue."""

import logging
import queue
import threading
import time
from enum import Enum

from logpipe.config import Config
from logpipe.errors import LogpipeError
from logpipe.metrics import MetricsCollector
from logpipe.models import Batch, Record

logger = logging.getLogger(__name__)

# Put on the intake queue by close(); nothing is queued after it.
_INTAKE_CLOSED = object()


class CoordinatorState(Enum):
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    DRAINED = "drained"
    FAILED = "failed"


class FlushCoordinator:
    """Single consumer of the intake queue.

    Records are appended to the open batch in arrival order. The batch is
    sealed and handed to the sender when:

    - the next record would push its size estimate past the high-water mark
      (the old batch is sent first, the record starts the new one),
    - the flush timer fires, even if the batch is empty,
    - the intake is closed, after which the coordinator is DRAINED.

    Sends run on the coordinator's own thread, one at a time. While a send
    is in flight new records wait in the bounded intake queue, and a full
    queue blocks the producer. A failed send drops the batch.
    """

    def __init__(
        self,
        config: Config,
        sender,
        metrics: MetricsCollector | None = None,
        clock=time.monotonic,
    ):
        self._sender = sender
        self._flush_interval = config.flush_interval
        self._high_water_mark = config.high_water_mark
        self._metrics = metrics
        self._clock = clock

        self._intake: queue.Queue = queue.Queue(maxsize=config.queue_size)
        self._done = threading.Event()
        self._batch = Batch()
        self._state = CoordinatorState.ACCUMULATING
        self._error: Exception | None = None
        self._thread: threading.Thread | None = None

    @property
    def intake(self) -> queue.Queue:
        return self._intake

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def error(self) -> Exception | None:
        """The exception that stopped the coordinator early, if any."""
        return self._error

    # Producer side

    def submit(self, record: Record):
        """Queue a record, blocking while the intake is full."""
        self._intake.put(record)

    def close(self):
        """Signal that no more records will be submitted."""
        self._intake.put(_INTAKE_CLOSED)

    # Lifecycle

    def start(self) -> threading.Thread:
        """Run the coordinator on a background daemon thread."""
        self._thread = threading.Thread(
            target=self.run, name="logpipe-coordinator", daemon=True
        )
        self._thread.start()
        return self._thread

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the coordinator is drained or has failed."""
        return self._done.wait(timeout)

    def run(self):
        """Coordinator loop. Returns once the intake is closed and drained."""
        try:
            self._loop()
        except LogpipeError as exc:
            self._error = exc
            self._state = CoordinatorState.FAILED
            logger.debug("coordinator: stopped: %s", exc)
        except Exception as exc:
            self._error = exc
            self._state = CoordinatorState.FAILED
            logger.exception("coordinator: crashed")
        finally:
            self._done.set()

    def _loop(self):
        next_tick = self._clock() + self._flush_interval
        while True:
            try:
                item = self._intake.get(timeout=max(0.0, next_tick - self._clock()))
            except queue.Empty:
                logger.debug("tick: %d records pending", len(self._batch))
                self._seal("timer")
                next_tick = self._next_tick(next_tick)
                continue

            if item is _INTAKE_CLOSED:
                logger.debug("intake: closed")
                self._seal("close")
                self._state = CoordinatorState.DRAINED
                return

            self._accept(item)

            if self._clock() >= next_tick:
                logger.debug("tick: %d records pending", len(self._batch))
                self._seal("timer")
                next_tick = self._next_tick(next_tick)

    def _next_tick(self, previous: float) -> float:
        """Advance the timer by whole periods, dropping ticks missed during a send."""
        now = self._clock()
        next_tick = previous + self._flush_interval
        while next_tick <= now:
            next_tick += self._flush_interval
        return next_tick

    def _accept(self, record: Record):
        current = self._batch.size()
        incoming = record.size()
        if current + incoming > self._high_water_mark:
            logger.debug("forcing flush: batch=%d record=%d", current, incoming)
            self._seal("size")
        self._batch.append(record)

    def _seal(self, trigger: str):
        """Send the open batch and replace it with an empty one."""
        batch, self._batch = self._batch, Batch()
        self._state = CoordinatorState.FLUSHING
        if self._metrics is not None and not batch.is_empty():
            self._metrics.record_flush(trigger)

        if not self._sender.send(batch):
            logger.debug("flush (%s): send failed, dropped %d records", trigger, len(batch))

        self._state = CoordinatorState.ACCUMULATING
