"""A first-fit allocator with a singly linked free list."""

from __future__ import annotations

from typing import Iterator

from heapsim.memory import NULL, PAGE_SIZE, WORD_SIZE, Allocator, SystemMemory

# Each slot is preceded by a header of two words: size and next.
HEADER_SIZE = 2 * WORD_SIZE
MAX_REQUEST = PAGE_SIZE - HEADER_SIZE


class SimpleAllocator(Allocator):
    """First-fit allocation over pages taken from a :class:`SystemMemory`.

    ::

        ... | header | object | header | free slot | ...

    The header's size excludes the header itself. Free slots are linked
    through the header's next word, newest first; allocated objects keep
    next at NULL.
    """

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._free_head = NULL

    def initialize(self) -> None:
        self._free_head = NULL

    def finalize(self) -> None:
        pass

    def _size(self, slot: int) -> int:
        return self.memory.read_word(slot)

    def _next(self, slot: int) -> int:
        return self.memory.read_word(slot + WORD_SIZE)

    def _set_size(self, slot: int, size: int) -> None:
        self.memory.write_word(slot, size)

    def _set_next(self, slot: int, following: int) -> None:
        self.memory.write_word(slot + WORD_SIZE, following)

    def _push(self, slot: int) -> None:
        if self._next(slot) != NULL:
            raise ValueError(f"slot {slot:#x} is already in the free list")
        self._set_next(slot, self._free_head)
        self._free_head = slot

    def _unlink(self, slot: int, previous: int) -> None:
        following = self._next(slot)
        if previous == NULL:
            self._free_head = following
        else:
            self._set_next(previous, following)
        self._set_next(slot, NULL)

    def _walk(self) -> Iterator[tuple[int, int]]:
        previous, slot = NULL, self._free_head
        while slot != NULL:
            yield previous, slot
            previous, slot = slot, self._next(slot)

    def _new_page(self) -> int:
        slot = self.memory.mmap(PAGE_SIZE)
        self._set_size(slot, MAX_REQUEST)
        self._set_next(slot, NULL)
        self._push(slot)
        return slot

    def malloc(self, size: int) -> int:
        if not 0 < size <= MAX_REQUEST:
            raise ValueError(f"request size must be in 1..{MAX_REQUEST}: {size}")
        found = next(
            ((previous, slot) for previous, slot in self._walk() if self._size(slot) >= size),
            None,
        )
        if found is None:
            found = (NULL, self._new_page())
        previous, slot = found

        address = slot + HEADER_SIZE
        remaining = self._size(slot) - size
        self._unlink(slot, previous)
        if remaining > HEADER_SIZE:
            self._set_size(slot, size)
            rest = address + size
            self._set_size(rest, remaining - HEADER_SIZE)
            self._set_next(rest, NULL)
            self._push(rest)
        return address

    def free(self, address: int) -> None:
        self._push(address - HEADER_SIZE)