"""
Append-only bin ledger.

Every ingested location occupies a contiguous range of global descriptor ids
("bins"). The ledger records one line per location:

    <lat>,<lng>,<start-bin>,<end-bin>

Ranges are contiguous: each entry starts one past the previous entry's end.
The last line alone decides where the next range starts.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from identisnap.logging import get_logger
from identisnap.services.descriptor_index import InvalidLocationError, LocationTag

if TYPE_CHECKING:
    from types import TracebackType


class LedgerFormatError(ValueError):
    """Raised when a ledger line cannot be parsed."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed ledger line '{line}': {reason}")


@dataclass(frozen=True)
class LedgerEntry:
    """Bin range occupied by one location's index record."""

    location: LocationTag
    start_bin: int
    end_bin: int

    @property
    def size(self) -> int:
        return self.end_bin - self.start_bin + 1

    def to_line(self) -> str:
        return f"{self.location.lat},{self.location.lng},{self.start_bin},{self.end_bin}"

    @classmethod
    def parse(cls, line: str) -> LedgerEntry:
        """
        Parse one ledger line.

        Raises:
            LedgerFormatError: If the line does not hold four fields with
                numeric coordinates and an ordered, non-negative bin range
        """
        fields = [f.strip() for f in line.strip().split(",")]
        if len(fields) != 4:
            raise LedgerFormatError(line, f"expected 4 fields, got {len(fields)}")
        try:
            location = LocationTag(fields[0], fields[1])
            start_bin, end_bin = int(fields[2]), int(fields[3])
        except (InvalidLocationError, ValueError) as e:
            raise LedgerFormatError(line, str(e)) from e
        if start_bin < 0 or end_bin < start_bin:
            raise LedgerFormatError(line, f"invalid bin range {start_bin}..{end_bin}")
        return cls(location, start_bin, end_bin)


_locks_guard = threading.Lock()
_ledger_locks: dict[Path, threading.Lock] = {}


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _locks_guard:
        if key not in _ledger_locks:
            _ledger_locks[key] = threading.Lock()
        return _ledger_locks[key]


class BinLedger:
    """Read and append the ledger file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.logger = get_logger("bin_ledger")

    def _lines(self) -> list[str]:
        if not self.path.exists():
            return []
        with self.path.open() as f:
            return [line.rstrip("\n") for line in f if line.strip()]

    def entries(self, strict: bool = True) -> list[LedgerEntry]:
        """
        All entries in file order.

        Args:
            strict: Raise on a malformed line instead of skipping it with a
                warning

        Raises:
            LedgerFormatError: If strict and any line is malformed
        """
        if strict:
            return [LedgerEntry.parse(line) for line in self._lines()]

        entries = []
        for line_number, line in enumerate(self._lines(), start=1):
            try:
                entries.append(LedgerEntry.parse(line))
            except LedgerFormatError as e:
                self.logger.warning(
                    "Skipping unparseable ledger line",
                    extra={
                        "ledger": str(self.path),
                        "line_number": line_number,
                        "line": e.line,
                        "reason": e.reason,
                    },
                )
        return entries

    def last_entry(self) -> LedgerEntry | None:
        """
        Entry on the last non-empty line, or None if the ledger is empty.

        Raises:
            LedgerFormatError: If that line is malformed
        """
        lines = self._lines()
        if not lines:
            return None
        return LedgerEntry.parse(lines[-1])

    def next_start_bin(self) -> int:
        """
        First bin of the next range to allocate.

        A missing, empty or malformed ledger restarts numbering at 0.
        """
        try:
            last = self.last_entry()
        except LedgerFormatError as e:
            self.logger.warning(
                "Unparseable ledger tail, restarting bins at 0",
                extra={"ledger": str(self.path), "line": e.line, "reason": e.reason},
            )
            return 0
        return 0 if last is None else last.end_bin + 1

    def append(self, entry: LedgerEntry) -> None:
        """Append exactly one line for entry."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a") as f:
            f.write(entry.to_line() + "\n")
            f.flush()

    def transaction(self) -> BinAllocator:
        """Start a single-writer allocation against this ledger."""
        return BinAllocator(self)


class BinAllocator:
    """
    One ingestion's exclusive hold on the ledger.

    Holds the ledger's lock from entry to exit so that reading the next start
    bin and appending the new line happen as one step. Nothing is written
    unless commit() is called.

    Usage:
        with ledger.transaction() as allocator:
            entry = allocator.reserve(location, descriptor_count)
            persist_index(...)
            allocator.commit()
    """

    def __init__(self, ledger: BinLedger) -> None:
        self.ledger = ledger
        self._lock = _lock_for(ledger.path)
        self._entry: LedgerEntry | None = None
        self._committed = False
        self._active = False

    def __enter__(self) -> BinAllocator:
        self._lock.acquire()
        self._active = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._active = False
        self._lock.release()

    def reserve(self, location: LocationTag, count: int) -> LedgerEntry:
        """
        Compute the bin range for count descriptors.

        Raises:
            RuntimeError: Outside the context manager or on a second reservation
            ValueError: If count is not positive
        """
        if not self._active:
            raise RuntimeError("BinAllocator must be used as a context manager")
        if self._entry is not None:
            raise RuntimeError("Bins already reserved in this transaction")
        if count <= 0:
            raise ValueError(f"Descriptor count must be positive, got {count}")

        start_bin = self.ledger.next_start_bin()
        self._entry = LedgerEntry(location, start_bin, start_bin + count - 1)
        return self._entry

    def commit(self) -> LedgerEntry:
        """Append the reserved entry to the ledger."""
        if not self._active:
            raise RuntimeError("BinAllocator must be used as a context manager")
        if self._entry is None:
            raise RuntimeError("Nothing reserved to commit")
        if self._committed:
            raise RuntimeError("Transaction already committed")

        self.ledger.append(self._entry)
        self._committed = True
        return self._entry
