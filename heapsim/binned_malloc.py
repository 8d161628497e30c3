"""A best-fit allocator with size-class bins, boundary tags and page release."""

from __future__ import annotations

import bisect
from typing import Iterator, Optional

from heapsim.memory import NULL, PAGE_SIZE, WORD_SIZE, Allocator, SystemMemory

# Page layout: | page info | header | slot | footer | header | slot | footer | ...
PAGE_INFO_SIZE = 3 * WORD_SIZE  # start address, next page, previous page
HEADER_SIZE = 3 * WORD_SIZE  # size, next free slot, previous free slot
FOOTER_SIZE = WORD_SIZE  # size, repeated after the slot
BIN_COUNT = 10
EMPTY_PAGE_SLOT = PAGE_SIZE - PAGE_INFO_SIZE - HEADER_SIZE - FOOTER_SIZE
MAX_REQUEST = EMPTY_PAGE_SLOT

_BIN_LIMITS = (8, 16, 32, 64, 128, 256, 512, 1024, 2048)

_SIZE = 0
_NEXT = WORD_SIZE
_PREV = 2 * WORD_SIZE

_PAGE_START = 0
_PAGE_NEXT = WORD_SIZE
_PAGE_PREV = 2 * WORD_SIZE


def get_bin_index(size: int) -> int:
    """Return the bin that holds free slots of ``size`` bytes.

    Bin 0 takes up to 8 bytes, each following bin doubles the limit, and
    bin 9 takes everything above 2048 bytes.
    """
    return bisect.bisect_left(_BIN_LIMITS, size)


class BinnedAllocator(Allocator):
    """Best-fit allocation with segregated free lists and coalescing.

    Free slots are kept in doubly linked lists, one per size class, whose
    links live in the slot headers. Every slot ends with a footer holding
    its size so that a freed slot can merge with free neighbours on both
    sides. A page whose slots are all free again is returned to the system.
    """

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._sentinels: dict[int, list[int]] = {}
        self._page_head = NULL
        self.initialize()

    # -- lifecycle -------------------------------------------------------

    def initialize(self) -> None:
        self._sentinels = {}
        for index in range(BIN_COUNT):
            head, tail = self._bin(index)
            self._sentinels[head] = [tail, NULL]
            self._sentinels[tail] = [NULL, head]
        self._page_head = NULL

    def finalize(self) -> None:
        pass

    # -- slot fields -----------------------------------------------------

    @staticmethod
    def _bin(index: int) -> tuple[int, int]:
        # Sentinel addresses sit far below any mapped page.
        return (2 * index + 1) * WORD_SIZE, (2 * index + 2) * WORD_SIZE

    def _next(self, node: int) -> int:
        links = self._sentinels.get(node)
        return links[0] if links is not None else self.memory.read_word(node + _NEXT)

    def _prev(self, node: int) -> int:
        links = self._sentinels.get(node)
        return links[1] if links is not None else self.memory.read_word(node + _PREV)

    def _set_next(self, node: int, value: int) -> None:
        links = self._sentinels.get(node)
        if links is not None:
            links[0] = value
        else:
            self.memory.write_word(node + _NEXT, value)

    def _set_prev(self, node: int, value: int) -> None:
        links = self._sentinels.get(node)
        if links is not None:
            links[1] = value
        else:
            self.memory.write_word(node + _PREV, value)

    def _size(self, slot: int) -> int:
        return self.memory.read_word(slot + _SIZE)

    def _set_size(self, slot: int, size: int) -> None:
        self.memory.write_word(slot + _SIZE, size)

    def _set_footer(self, slot: int) -> None:
        size = self._size(slot)
        self.memory.write_word(slot + HEADER_SIZE + size, size)

    def _is_free(self, slot: int) -> bool:
        return self._next(slot) != NULL and self._prev(slot) != NULL

    # -- pages -----------------------------------------------------------

    def _pages(self) -> Iterator[int]:
        page = self._page_head
        while page != NULL:
            yield page
            page = self.memory.read_word(page + _PAGE_NEXT)

    def find_page(self, address: int) -> Optional[int]:
        """Return the start of the owned page holding ``address``, or None."""
        return next(
            (page for page in self._pages() if page <= address < page + PAGE_SIZE),
            None,
        )

    def page_count(self) -> int:
        """Return how many pages the allocator currently holds."""
        return sum(1 for _ in self._pages())

    def _push_page(self, page: int) -> None:
        self.memory.write_word(page + _PAGE_START, page)
        self.memory.write_word(page + _PAGE_NEXT, self._page_head)
        self.memory.write_word(page + _PAGE_PREV, NULL)
        if self._page_head != NULL:
            self.memory.write_word(self._page_head + _PAGE_PREV, page)
        self._page_head = page

    def _remove_page(self, page: int) -> None:
        previous = self.memory.read_word(page + _PAGE_PREV)
        following = self.memory.read_word(page + _PAGE_NEXT)
        if previous != NULL:
            self.memory.write_word(previous + _PAGE_NEXT, following)
        else:
            self._page_head = following
        if following != NULL:
            self.memory.write_word(following + _PAGE_PREV, previous)

    def _is_empty_page(self, page: int) -> bool:
        first = page + PAGE_INFO_SIZE
        return self._size(first) == EMPTY_PAGE_SLOT and self._is_free(first)

    # -- free lists ------------------------------------------------------

    def _bin_slots(self, index: int) -> Iterator[int]:
        head, tail = self._bin(index)
        node = self._next(head)
        while node != tail:
            yield node
            node = self._next(node)

    def _unlink(self, slot: int) -> None:
        previous, following = self._prev(slot), self._next(slot)
        self._set_next(previous, following)
        self._set_prev(following, previous)
        self._set_next(slot, NULL)
        self._set_prev(slot, NULL)

    def _left_neighbor(self, slot: int) -> Optional[int]:
        page = self.find_page(slot)
        if page is None or slot == page + PAGE_INFO_SIZE:
            return None
        left_size = self.memory.read_word(slot - FOOTER_SIZE)
        left = slot - FOOTER_SIZE - left_size - HEADER_SIZE
        return left if self._is_free(left) else None

    def _right_neighbor(self, slot: int) -> Optional[int]:
        page = self.find_page(slot)
        if page is None:
            return None
        right = slot + HEADER_SIZE + self._size(slot) + FOOTER_SIZE
        if right >= page + PAGE_SIZE:
            return None
        return right if self._is_free(right) else None

    def _insert(self, slot: int) -> None:
        if self._next(slot) != NULL or self._prev(slot) != NULL:
            raise ValueError(f"slot {slot:#x} is already in a free list")
        left = self._left_neighbor(slot)
        right = self._right_neighbor(slot)
        if left is not None:
            self._unlink(left)
            self._set_size(left, self._size(left) + FOOTER_SIZE + HEADER_SIZE + self._size(slot))
            slot = left
        if right is not None:
            self._unlink(right)
            self._set_size(slot, self._size(slot) + FOOTER_SIZE + HEADER_SIZE + self._size(right))
        self._set_footer(slot)

        head, _ = self._bin(get_bin_index(self._size(slot)))
        first = self._next(head)
        self._set_next(slot, first)
        self._set_prev(slot, head)
        self._set_prev(first, slot)
        self._set_next(head, slot)

    def _best_fit(self, size: int) -> Optional[int]:
        for index in range(get_bin_index(size), BIN_COUNT):
            best, best_size = None, 0
            for slot in self._bin_slots(index):
                slot_size = self._size(slot)
                if slot_size >= size and (best is None or slot_size < best_size):
                    best, best_size = slot, slot_size
                    if slot_size == size:
                        break
            if best is not None:
                return best
        return None

    # -- interface -------------------------------------------------------

    def malloc(self, size: int) -> int:
        if not 0 < size <= MAX_REQUEST:
            raise ValueError(f"request size must be in 1..{MAX_REQUEST}: {size}")
        slot = self._best_fit(size)
        if slot is None:
            page = self.memory.mmap(PAGE_SIZE)
            self._push_page(page)
            slot = page + PAGE_INFO_SIZE
            self._set_size(slot, EMPTY_PAGE_SLOT)
            self._set_next(slot, NULL)
            self._set_prev(slot, NULL)
        self._set_footer(slot)
        if self._is_free(slot):
            self._unlink(slot)

        address = slot + HEADER_SIZE
        remaining = self._size(slot) - size
        if remaining > HEADER_SIZE + FOOTER_SIZE:
            self._set_size(slot, size)
            self._set_footer(slot)
            rest = address + size + FOOTER_SIZE
            self._set_size(rest, remaining - HEADER_SIZE - FOOTER_SIZE)
            self._set_next(rest, NULL)
            self._set_prev(rest, NULL)
            self._set_footer(rest)
            self._insert(rest)
        return address

    def free(self, address: int) -> None:
        self._insert(address - HEADER_SIZE)
        page = self.find_page(address)
        if page is not None and self._is_empty_page(page):
            self._unlink(page + PAGE_INFO_SIZE)
            self._remove_page(page)
            self.memory.munmap(page, PAGE_SIZE)