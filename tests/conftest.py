import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class RecordingServer(ThreadingHTTPServer):
    """Loopback HTTP server that records every POST and replies with a
    scripted status (the last status repeats once the script runs out)."""

    daemon_threads = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), _RecordingHandler)
        self.requests: list[dict] = []
        self.statuses: list[int] = [202]
        self.delay = 0.0
        # Seconds between body bytes; 0 writes the body in one go.
        self.drip = 0.0
        self._lock = threading.Lock()
        self._arrived = threading.Condition(self._lock)

    @property
    def url(self) -> str:
        host, port = self.server_address
        return f"http://{host}:{port}/log/v1"

    def next_status(self) -> int:
        with self._lock:
            if len(self.statuses) > 1:
                return self.statuses.pop(0)
            return self.statuses[0]

    def record(self, headers: dict, body: bytes):
        with self._arrived:
            self.requests.append({"headers": headers, "body": body})
            self._arrived.notify_all()

    def wait_for_requests(self, count: int, timeout: float = 5.0) -> bool:
        with self._arrived:
            return self._arrived.wait_for(lambda: len(self.requests) >= count, timeout)

    def handle_error(self, request, client_address):
        # Clients that time out close the socket before the reply is written.
        pass

    def batches(self) -> list[list[dict]]:
        with self._lock:
            return [json.loads(r["body"]) for r in self.requests]


class _RecordingHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.record(dict(self.headers), body)
        if self.server.delay:
            threading.Event().wait(self.server.delay)
        payload = b'{"requestId":"test"}'
        self.send_response(self.server.next_status())
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.server.drip:
            for i in range(len(payload)):
                self.wfile.write(payload[i : i + 1])
                threading.Event().wait(self.server.drip)
        else:
            self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_server():
    """Start a RecordingServer on an ephemeral port."""
    server = RecordingServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


class FakeSender:
    """In-memory sender that records every batch it is handed."""

    def __init__(self, results=None):
        self.batches = []
        self._results = list(results or [])
        self._lock = threading.Lock()

    def send(self, batch) -> bool:
        with self._lock:
            self.batches.append(list(batch))
            if self._results:
                result = self._results.pop(0)
                if isinstance(result, Exception):
                    raise result
                return result
        return True

    @property
    def non_empty(self):
        with self._lock:
            return [b for b in self.batches if b]


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def sender_factory():
    """Build a FakeSender with scripted results (bools or exceptions to raise)."""
    return FakeSender
