"""Turn a trace of allocation calls into a memory-usage timeline."""

from __future__ import annotations

import argparse
import sys
from typing import Iterable, Iterator, Optional, Sequence, TextIO

_INT64_MAX = (1 << 63) - 1
_INT64_MIN = -(1 << 63)
_UINT64_MASK = (1 << 64) - 1


class TraceFormatError(Exception):
    """Raised when a trace cannot be parsed."""


def _to_int64(value: int) -> int:
    value &= _UINT64_MASK
    return value - (1 << 64) if value > _INT64_MAX else value


class _Scanner:
    """Reads single-character operations and hexadecimal numbers from text."""

    def __init__(self, stream: Iterable[str]) -> None:
        self._words: Iterator[str] = (word for line in stream for word in line.split())
        self._pending = ""

    def _word(self) -> Optional[str]:
        if self._pending:
            word, self._pending = self._pending, ""
            return word
        return next(self._words, None)

    def char(self) -> Optional[str]:
        word = self._word()
        if word is None:
            return None
        self._pending = word[1:]
        return word[0]

    def hex(self) -> Optional[int]:
        word = self._word()
        if word is None:
            return None
        try:
            return _to_int64(int(word, 16))
        except ValueError:
            return None


class TimelineRecorder:
    """Tracks live allocations and the totals derived from them.

    Every recorded operation is echoed to ``trace_out`` as
    ``<op> <address> <size>`` in decimal. Frees of unknown addresses are
    reported to ``log`` (standard output when not given).
    """

    def __init__(self, trace_out: Optional[TextIO] = None, log: Optional[TextIO] = None) -> None:
        self.trace_out = trace_out
        self.log = log
        self.live: dict[int, int] = {}
        self.count = 0
        self.peak_size = 0
        self.resident_size = 0
        self.allocated_total = 0
        self.freed_total = 0
        self.range_begin = _INT64_MAX
        self.range_end = _INT64_MIN

    def _trace(self, op: str, address: int, size: int) -> None:
        if self.trace_out is not None:
            self.trace_out.write(f"{op} {address} {size}\n")
        self.range_begin = min(self.range_begin, address)
        self.range_end = max(self.range_end, address + size)

    def record_alloc(self, address: int, size: int) -> None:
        """Record ``size`` bytes allocated at ``address``."""
        self.live.setdefault(address, size)
        self.resident_size += size
        self.allocated_total += size
        self.peak_size = max(self.peak_size, self.resident_size)
        self._trace("a", address, size)

    def record_free(self, address: int) -> None:
        """Record that the object at ``address`` was freed."""
        size = self.live.pop(address, None)
        if size is None:
            log = self.log if self.log is not None else sys.stdout
            log.write(
                f"Addr 0x{address & _UINT64_MASK:X} is being freed but not allocated\n"
            )
            return
        self.resident_size -= size
        self.freed_total += size
        self._trace("f", address, size)

    def convert(self, stream: Iterable[str], out: TextIO) -> None:
        """Read trace records from ``stream`` and write one timeline row per record.

        Each row holds the record number, resident size, total allocated,
        the change in resident size and total freed, separated by tabs.
        """
        scanner = _Scanner(stream)
        last_resident = self.resident_size
        while True:
            op = scanner.char()
            if op is None:
                break
            address = scanner.hex()
            if address is None:
                break
            if op == "a":
                size = scanner.hex()
                if size is None:
                    raise TraceFormatError("Failed to read size for alloc")
                self.record_alloc(address, size)
            elif op == "r":
                size = scanner.hex()
                old_address = scanner.hex() if size is not None else None
                if size is None or old_address is None:
                    raise TraceFormatError("Failed to read size and old_addr for realloc")
                if old_address:
                    self.record_free(old_address)
                self.record_alloc(address, size)
            elif op == "f":
                self.record_free(address)
            else:
                raise TraceFormatError(f"Unknown op: {op} at count {self.count}")
            out.write(
                f"{self.count}\t{self.resident_size}\t{self.allocated_total}\t"
                f"{self.resident_size - last_resident}\t{self.freed_total}\n"
            )
            last_resident = self.resident_size
            self.count += 1

    def summary(self) -> str:
        """Return the totals gathered so far as report lines."""
        return (
            f"count: {self.count}\n"
            f"peak_size: {self.peak_size}\n"
            f"resident_size at last: {self.resident_size}\n"
            f"allocation_size_accumlated: {self.allocated_total}\n"
            f"range_begin: {self.range_begin}\n"
            f"range_end: {self.range_end}\n"
            f"range_size: {self.range_end - self.range_begin}\n"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Convert a trace read from standard input into a timeline on standard output."""
    parser = argparse.ArgumentParser(
        prog="heapsim-timeline",
        description="Convert an allocation trace into a memory-usage timeline.",
    )
    parser.add_argument(
        "--trace-file",
        default="trace.txt",
        help="where to write the decimal operation trace (default: trace.txt)",
    )
    args = parser.parse_args(argv)

    try:
        trace_out = open(args.trace_file, "w", encoding="ascii")
    except OSError:
        sys.stdout.write("Failed to open trace file")
        return 1
    with trace_out:
        recorder = TimelineRecorder(trace_out, sys.stdout)
        try:
            recorder.convert(sys.stdin, sys.stdout)
        except TraceFormatError as error:
            sys.stdout.write(f"{error}\n")
            return 1
    sys.stderr.write(recorder.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())