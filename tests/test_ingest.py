"""Tests for timestamp extraction and the ingest loop."""

import io
import time

import pytest

from logpipe.ingest import extract_timestamp, ingest, open_text, read_lines
from logpipe.models import Record


class RecordingCoordinator:
    """Stands in for FlushCoordinator on the producer side."""

    def __init__(self):
        self.records = []
        self.closed = 0

    def submit(self, record):
        assert not self.closed, "submit after close"
        self.records.append(record)

    def close(self):
        self.closed += 1


class TestExtractTimestamp:
    def test_ts_field(self):
        assert extract_timestamp('{"ts": 1680000000, "level":"error","msg":"x"}') == 1680000000

    @pytest.mark.parametrize(
        "line",
        [
            "hello world",
            "",
            '{"ts": 0}',
            '{"level": "info"}',
            '{"ts": "1680000000"}',
            '{"ts": 1680000000.5}',
            '{"ts": true}',
            '{"ts": null}',
            '{"ts": 1680000000',
            "[1680000000]",
            '{"nested": {"ts": 1680000000}}',
            '{"ts": 99999999999999999999999}',
            '{"TS": 1680000000}',
        ],
    )
    def test_no_usable_ts(self, line):
        assert extract_timestamp(line) is None

    def test_negative_ts_is_kept(self):
        assert extract_timestamp('{"ts": -5}') == -5

    def test_leading_whitespace(self):
        assert extract_timestamp('   {"ts": 42}') == 42

    def test_deeply_nested_json_does_not_raise(self):
        line = '{"a":' * 100000 + "1" + "}" * 100000
        assert extract_timestamp(line) is None


class TestReadLines:
    def test_strips_line_endings(self):
        stream = io.StringIO("one\ntwo\r\nthree")
        assert list(read_lines(stream)) == ["one", "two", "three"]

    def test_keeps_empty_lines(self):
        assert list(read_lines(io.StringIO("a\n\nb\n"))) == ["a", "", "b"]

    def test_open_text_replaces_invalid_utf8(self):
        stream = open_text(io.BytesIO(b"ok\n\xff\xfebad\n"))
        assert list(read_lines(stream)) == ["ok", "\ufffd\ufffdbad"]

    def test_open_text_does_not_split_on_carriage_return(self):
        stream = open_text(io.BytesIO(b"a\rb\n"))
        assert list(read_lines(stream)) == ["a\rb"]


class TestIngest:
    def test_records_in_order_then_close(self):
        coordinator = RecordingCoordinator()
        lines = ['{"ts": 1680000000, "msg": "json"}', "hello world", '{"ts": 0}']

        count = ingest(lines, coordinator, clock=lambda: 1700000000.9)

        assert count == 3
        assert coordinator.records == [
            Record(timestamp=1680000000, message='{"ts": 1680000000, "msg": "json"}'),
            Record(timestamp=1700000000, message="hello world"),
            Record(timestamp=1700000000, message='{"ts": 0}'),
        ]
        assert coordinator.closed == 1

    def test_empty_stream_closes(self):
        coordinator = RecordingCoordinator()
        assert ingest([], coordinator) == 0
        assert coordinator.closed == 1

    def test_read_error_ends_stream(self):
        def failing_lines():
            yield "first"
            raise OSError("stdin went away")

        coordinator = RecordingCoordinator()
        count = ingest(failing_lines(), coordinator, clock=lambda: 1)

        assert count == 1
        assert [r.message for r in coordinator.records] == ["first"]
        assert coordinator.closed == 1

    def test_echo_copies_lines(self):
        coordinator = RecordingCoordinator()
        out = io.StringIO()

        ingest(["a", "b"], coordinator, clock=lambda: 1, echo=out)

        assert out.getvalue() == "a\nb\n"
        assert len(coordinator.records) == 2

    def test_broken_echo_does_not_stop_shipping(self):
        class BrokenPipe(io.StringIO):
            def write(self, s):
                raise BrokenPipeError("stdout closed")

        coordinator = RecordingCoordinator()
        count = ingest(["a", "b"], coordinator, clock=lambda: 1, echo=BrokenPipe())

        assert count == 2
        assert coordinator.closed == 1

    def test_uses_current_time(self):
        coordinator = RecordingCoordinator()
        before = int(time.time())
        ingest(["hello world"], coordinator)
        after = int(time.time())

        assert before <= coordinator.records[0].timestamp <= after
