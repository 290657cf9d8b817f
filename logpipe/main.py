"""Entry point: pipes stdin to the log endpoint until EOF."""

import logging
import os
import sys
import threading

from logpipe.config import Config, load_config
from logpipe.coordinator import FlushCoordinator
from logpipe.errors import LogpipeError
from logpipe.ingest import ingest, open_text, read_lines
from logpipe.metrics import MetricsCollector
from logpipe.sender import HTTPSender

logger = logging.getLogger(__name__)


class Pipeline:
    """Wires the ingest loop to the flush coordinator and sender.

    run() returns only after the ingest loop has seen end of stream and the
    coordinator has sent the final batch. A fatal error from the sender is
    re-raised in the calling thread; the ingest thread is then left behind
    as a daemon, possibly still blocked on its read.
    """

    def __init__(self, config: Config, sender=None, metrics: MetricsCollector | None = None):
        self._config = config
        self.metrics = metrics if metrics is not None else MetricsCollector()
        if sender is None:
            sender = HTTPSender(
                config.url,
                config.api_key,
                config.http_timeout,
                metrics=self.metrics,
            )
        self._sender = sender
        self.coordinator = FlushCoordinator(config, sender, self.metrics)
        self._ingest_error: Exception | None = None
        self.lines_read = 0

    def run(self, lines, echo=None) -> int:
        """Ship lines until exhausted. Returns the number of lines read."""
        self.coordinator.start()
        reader = threading.Thread(
            target=self._ingest, args=(lines, echo), name="logpipe-ingest", daemon=True
        )
        reader.start()

        self.coordinator.wait()
        if self.coordinator.error is not None:
            raise self.coordinator.error

        reader.join()
        if self._ingest_error is not None:
            raise self._ingest_error
        logger.debug("exits: %d lines read", self.lines_read)
        return self.lines_read

    def _ingest(self, lines, echo):
        try:
            self.lines_read = ingest(lines, self.coordinator, echo=echo)
        except Exception as exc:
            self._ingest_error = exc

    def close(self):
        close = getattr(self._sender, "close", None)
        if close is not None:
            close()


def setup_logging(debug: bool):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None, stdin=None, stdout=None) -> int:
    """Run logpipe and return its exit code.

    stdin is a binary stream (default sys.stdin.buffer); stdout receives
    echoed lines when echo is enabled.
    """
    try:
        config = load_config(argv)
    except LogpipeError as exc:
        print(f"logpipe: {exc}", file=sys.stderr)
        return 1

    setup_logging(config.debug)

    if stdin is None:
        stdin = sys.stdin.buffer
    if stdout is None:
        stdout = sys.stdout

    pipeline = Pipeline(config)
    try:
        pipeline.run(read_lines(open_text(stdin)), echo=stdout if config.echo else None)
    except LogpipeError as exc:
        print(f"logpipe: {exc}", file=sys.stderr)
        return 1
    finally:
        pipeline.close()
        logger.debug("metrics: %s", pipeline.metrics.snapshot())
    return 0


def cli():
    code = main()
    if code:
        # The ingest thread may still hold the stdin lock; skip interpreter teardown.
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(code)
    sys.exit(code)


if __name__ == "__main__":
    cli()
