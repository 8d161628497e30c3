"""Simulated system memory that allocators obtain pages from."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Iterator, Optional, TextIO

PAGE_SIZE = 4096
WORD_SIZE = 8
NULL = 0

_BASE_ADDRESS = 0x1000_0000
_WORD_LIMIT = 1 << (8 * WORD_SIZE)


class MemoryAccessError(Exception):
    """Raised when unmapped memory is read, written or unmapped."""


@dataclass
class Stats:
    """Counters collected while one challenge runs."""

    begin_time: float = 0.0
    end_time: float = 0.0
    mmap_size: int = 0
    munmap_size: int = 0
    allocated_size: int = 0
    freed_size: int = 0


class SystemMemory:
    """A byte-addressable address space handed out in page-sized regions.

    Every mapped page is zero-filled. Reads and writes outside mapped pages
    raise :class:`MemoryAccessError`. If ``trace`` is a text stream, every
    map and unmap is logged to it as ``m <address> <size>`` or
    ``u <address> <size>``.
    """

    def __init__(self, trace: Optional[TextIO] = None) -> None:
        self.trace = trace
        self.stats = Stats()
        self._pages: dict[int, bytearray] = {}
        self._next_address = _BASE_ADDRESS

    def _log(self, op: str, address: int, size: int) -> None:
        if self.trace is not None:
            self.trace.write(f"{op} {address} {size}\n")

    def mmap(self, size: int) -> int:
        """Map a fresh zero-filled region of ``size`` bytes and return its address."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"mapping size must be a positive multiple of {PAGE_SIZE}: {size}")
        address = self._next_address
        self._next_address += size
        first = address // PAGE_SIZE
        for index in range(first, first + size // PAGE_SIZE):
            self._pages[index] = bytearray(PAGE_SIZE)
        self.stats.mmap_size += size
        self._log("m", address, size)
        return address

    def munmap(self, address: int, size: int) -> None:
        """Return the region ``[address, address + size)`` to the system."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"unmapping size must be a positive multiple of {PAGE_SIZE}: {size}")
        if address % PAGE_SIZE:
            raise ValueError(f"unmapping address must be page aligned: {address:#x}")
        first = address // PAGE_SIZE
        indices = range(first, first + size // PAGE_SIZE)
        missing = [index for index in indices if index not in self._pages]
        if missing:
            raise MemoryAccessError(f"page {missing[0] * PAGE_SIZE:#x} is not mapped")
        self.stats.munmap_size += size
        for index in indices:
            del self._pages[index]
        self._log("u", address, size)

    def is_mapped(self, address: int) -> bool:
        """Tell whether the byte at ``address`` lies in a mapped page."""
        return address >= 0 and address // PAGE_SIZE in self._pages

    def _spans(self, address: int, length: int) -> Iterator[tuple[bytearray, int, int]]:
        if length < 0:
            raise ValueError(f"length must not be negative: {length}")
        if address < 0:
            raise MemoryAccessError(f"address {address} is not mapped")
        while length > 0:
            index, offset = divmod(address, PAGE_SIZE)
            page = self._pages.get(index)
            if page is None:
                raise MemoryAccessError(f"address {address:#x} is not mapped")
            chunk = min(length, PAGE_SIZE - offset)
            yield page, offset, chunk
            address += chunk
            length -= chunk

    def read(self, address: int, length: int) -> bytes:
        """Return ``length`` bytes starting at ``address``."""
        return b"".join(
            bytes(page[offset : offset + chunk])
            for page, offset, chunk in self._spans(address, length)
        )

    def write(self, address: int, data: bytes) -> None:
        """Store ``data`` starting at ``address``."""
        spans = list(self._spans(address, len(data)))
        position = 0
        for page, offset, chunk in spans:
            page[offset : offset + chunk] = data[position : position + chunk]
            position += chunk

    def fill(self, address: int, value: int, length: int) -> None:
        """Set ``length`` bytes at ``address`` to the low byte of ``value``."""
        byte = value & 0xFF
        for page, offset, chunk in list(self._spans(address, length)):
            page[offset : offset + chunk] = bytes([byte]) * chunk

    def read_word(self, address: int) -> int:
        """Read an unsigned little-endian machine word."""
        return int.from_bytes(self.read(address, WORD_SIZE), "little")

    def write_word(self, address: int, value: int) -> None:
        """Write an unsigned little-endian machine word."""
        if not 0 <= value < _WORD_LIMIT:
            raise ValueError(f"value does not fit in a word: {value}")
        self.write(address, value.to_bytes(WORD_SIZE, "little"))

    def reset_stats(self) -> None:
        """Clear all counters."""
        self.stats = Stats()


class Allocator(abc.ABC):
    """The interface every allocator under challenge provides."""

    @abc.abstractmethod
    def initialize(self) -> None:
        """Prepare for a new challenge."""

    @abc.abstractmethod
    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the object's address."""

    @abc.abstractmethod
    def free(self, address: int) -> None:
        """Release the object at ``address``."""

    @abc.abstractmethod
    def finalize(self) -> None:
        """Clean up at the end of a challenge."""