"""Ingest loop: turns lines from a stream into records for the coordinator."""

import io
import json
import logging
import time

from logpipe.models import Record

logger = logging.getLogger(__name__)

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


def extract_timestamp(line: str) -> int | None:
    """Return the top-level integer ``ts`` field of a JSON object line.

    None when the line is not a JSON object, has no ``ts``, or ``ts`` is
    zero, non-integral or outside the int64 range.
    """
    if not line.lstrip().startswith("{"):
        return None
    try:
        doc = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(doc, dict):
        return None
    ts = doc.get("ts")
    if isinstance(ts, bool) or not isinstance(ts, int):
        return None
    if ts == 0 or not _INT64_MIN <= ts <= _INT64_MAX:
        return None
    return ts


def open_text(stream) -> io.TextIOBase:
    """Wrap a binary stream as UTF-8 text split on newlines only.

    Invalid bytes become U+FFFD instead of ending the stream.
    """
    return io.TextIOWrapper(stream, encoding="utf-8", errors="replace", newline="\n")


def read_lines(stream):
    """Yield lines from a text stream without their ``\\n`` or ``\\r\\n`` ending."""
    for line in stream:
        if line.endswith("\n"):
            line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
        yield line


def ingest(lines, coordinator, clock=time.time, echo=None) -> int:
    """Feed every line to the coordinator, then close its intake.

    A read error ends the stream like EOF does. Returns the number of lines
    submitted.
    """
    count = 0
    source = iter(lines)
    try:
        while True:
            try:
                line = next(source)
            except StopIteration:
                break
            except (OSError, ValueError) as exc:
                logger.debug("scanner: read error: %s", exc)
                break

            if echo is not None:
                try:
                    echo.write(line + "\n")
                    echo.flush()
                except OSError as exc:
                    logger.debug("echo: disabled: %s", exc)
                    echo = None

            ts = extract_timestamp(line)
            if ts is None:
                ts = int(clock())
            coordinator.submit(Record(timestamp=ts, message=line))
            count += 1
    finally:
        logger.debug("scanner: done after %d lines", count)
        coordinator.close()
    return count
