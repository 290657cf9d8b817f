"""HTTP sender: one POST attempt per sealed batch, outcome reported as a bool."""

import json
import logging
import time

import requests

from logpipe.errors import AuthenticationError, ConfigError
from logpipe.metrics import MetricsCollector
from logpipe.models import Batch

logger = logging.getLogger(__name__)

# Raised by requests before anything reaches the network.
_UNUSABLE_REQUEST = (
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidURL,
    requests.exceptions.InvalidHeader,
)


def serialize_batch(batch: Batch) -> bytes:
    """Encode a batch as a bare JSON array of ``{"message", "timestamp"}`` objects."""
    return json.dumps(
        batch.to_payload(), ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def _drain(resp: requests.Response, deadline: float) -> bool:
    """Read resp to the end, giving up once the monotonic deadline passes.

    requests bounds each socket read, not the whole response, so a peer that
    trickles bytes is only stopped by this check.
    """
    if time.monotonic() >= deadline:
        return False
    # One byte per read: a larger read blocks until it is filled.
    for _ in resp.iter_content(chunk_size=1):
        if time.monotonic() >= deadline:
            return False
    return True


class HTTPSender:
    """Posts batches to a log ingestion endpoint.

    There is no retry here: a transport error or an error status returns
    False and the caller drops the batch. Rejected credentials (401/403)
    raise AuthenticationError because every later send would fail the same
    way.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float,
        session: requests.Session | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """Initialize the sender.

        Args:
            url: Ingestion endpoint that receives the POST.
            api_key: Sent as the ``Api-Key`` header on every request.
            timeout: Seconds allowed for one attempt, from connect to the
                last byte of the response body.
            session: Optional session to reuse; a new one is created if None.
            metrics: Optional collector told about every non-empty send.
        """
        self._url = url
        self._timeout = timeout
        self._headers = {"Api-Key": api_key, "Content-Type": "application/json"}
        self._session = session if session is not None else requests.Session()
        self._metrics = metrics

    def send(self, batch: Batch) -> bool:
        """Deliver batch in a single attempt.

        Args:
            batch: The sealed batch. An empty batch makes no request.

        Returns:
            True on a 2xx/3xx status or an empty batch. False on a transport
            error, an error status, or when the timeout elapses first.

        Raises:
            AuthenticationError: The endpoint answered 401 or 403.
            ConfigError: The URL cannot be turned into a request.
        """
        if batch.is_empty():
            logger.debug("push: nothing to flush")
            return True

        body = serialize_batch(batch)
        logger.debug("push: %d records, %d bytes", len(batch), len(body))

        start = time.monotonic()
        deadline = start + self._timeout
        try:
            with self._session.post(
                self._url,
                data=body,
                headers=self._headers,
                timeout=self._timeout,
                stream=True,
            ) as resp:
                status = resp.status_code
                if status in (401, 403):
                    raise AuthenticationError(status)
                # Read the whole body so the pooled connection can be reused.
                completed = _drain(resp, deadline)
        except _UNUSABLE_REQUEST as exc:
            raise ConfigError(f"bad newrelic endpoint: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            self._record_failure(batch, start)
            logger.debug("push failed: %s", exc)
            return False

        if not completed:
            self._record_failure(batch, start)
            logger.debug("push failed: no complete response within %.1fs", self._timeout)
            return False

        if status // 100 > 3:
            self._record_failure(batch, start)
            logger.debug("push rejected: HTTP %d, dropping %d records", status, len(batch))
            return False

        elapsed_ms = (time.monotonic() - start) * 1000
        if self._metrics is not None:
            self._metrics.record_sent(len(batch), len(body), elapsed_ms)
        logger.debug("push ok: HTTP %d in %.1fms", status, elapsed_ms)
        return True

    def _record_failure(self, batch: Batch, start: float):
        if self._metrics is not None:
            self._metrics.record_failed(len(batch), (time.monotonic() - start) * 1000)

    def close(self):
        """Close the pooled connections. The sender must not be used afterwards."""
        self._session.close()
