"""Record and Batch models with conservative wire-size estimates."""

from dataclasses import dataclass, field

# Widest possible encoding of an empty record (nanosecond-sized timestamp).
RECORD_HEADER_BYTES = len('{"message":"","timestamp":1684206341000000000}')

# Array brackets, separators and slack around the serialized records.
BATCH_ENVELOPE_BYTES = 32


@dataclass(frozen=True)
class Record:
    timestamp: int
    message: str

    def size(self) -> int:
        """Estimated encoded size of this record.

        Doubling the UTF-8 length covers quotes, backslashes and the short
        escapes (``\\n``, ``\\t``). Other control characters encode as six-byte
        ``\\u00XX`` sequences, so a message made mostly of them can serialize
        larger than this estimate.
        """
        return RECORD_HEADER_BYTES + 2 * len(self.message.encode("utf-8"))

    def to_dict(self) -> dict:
        return {"message": self.message, "timestamp": self.timestamp}


@dataclass
class Batch:
    """Ordered records plus a running size estimate.

    Only the flush coordinator's thread touches an open batch, so there is
    no lock here.
    """

    records: list[Record] = field(default_factory=list)
    _records_size: int = field(default=0, init=False, repr=False)

    def __post_init__(self):
        self._records_size = sum(r.size() for r in self.records)

    def append(self, record: Record) -> None:
        self.records.append(record)
        self._records_size += record.size()

    def size(self) -> int:
        return self._records_size + BATCH_ENVELOPE_BYTES

    def is_empty(self) -> bool:
        return not self.records

    def to_payload(self) -> list[dict]:
        """Wire form: a bare list of ``{"message", "timestamp"}`` objects."""
        return [r.to_dict() for r in self.records]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)
