import io

import pytest

from heapsim.memory import (
    NULL,
    PAGE_SIZE,
    WORD_SIZE,
    Allocator,
    MemoryAccessError,
    Stats,
    SystemMemory,
)


def test_mmap_returns_page_aligned_nonnull_address():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    assert address != NULL and address % PAGE_SIZE == 0


def test_mmap_regions_do_not_overlap():
    memory = SystemMemory()
    first = memory.mmap(2 * PAGE_SIZE)
    second = memory.mmap(PAGE_SIZE)
    assert second >= first + 2 * PAGE_SIZE or second + PAGE_SIZE <= first


def test_fresh_memory_is_zero():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    assert memory.read(address, PAGE_SIZE) == bytes(PAGE_SIZE)


def test_mmap_and_munmap_update_stats():
    memory = SystemMemory()
    address = memory.mmap(3 * PAGE_SIZE)
    memory.munmap(address, PAGE_SIZE)
    assert memory.stats.mmap_size == 3 * PAGE_SIZE
    assert memory.stats.munmap_size == PAGE_SIZE


def test_trace_lines_are_written():
    trace = io.StringIO()
    memory = SystemMemory(trace)
    address = memory.mmap(PAGE_SIZE)
    memory.munmap(address, PAGE_SIZE)
    assert trace.getvalue() == f"m {address} {PAGE_SIZE}\nu {address} {PAGE_SIZE}\n"


def test_mmap_rejects_unaligned_size():
    memory = SystemMemory()
    with pytest.raises(ValueError):
        memory.mmap(PAGE_SIZE + 1)


def test_munmap_rejects_unaligned_address():
    memory = SystemMemory()
    address = memory.mmap(2 * PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.munmap(address + WORD_SIZE, PAGE_SIZE)


def test_munmap_of_unmapped_region_raises():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    memory.munmap(address, PAGE_SIZE)
    with pytest.raises(MemoryAccessError):
        memory.munmap(address, PAGE_SIZE)


def test_access_after_munmap_raises():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    memory.munmap(address, PAGE_SIZE)
    with pytest.raises(MemoryAccessError):
        memory.read_word(address)


def test_access_outside_mapping_raises():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(MemoryAccessError):
        memory.write(address + PAGE_SIZE - 2, b"abcd")


def test_null_is_not_mapped():
    memory = SystemMemory()
    memory.mmap(PAGE_SIZE)
    with pytest.raises(MemoryAccessError):
        memory.read(NULL, 1)


def test_write_read_round_trip_across_pages():
    memory = SystemMemory()
    address = memory.mmap(2 * PAGE_SIZE)
    data = bytes(range(200))
    start = address + PAGE_SIZE - 100
    memory.write(start, data)
    assert memory.read(start, len(data)) == data


def test_word_round_trip():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    value = (1 << 64) - 1
    memory.write_word(address + WORD_SIZE, value)
    assert memory.read_word(address + WORD_SIZE) == value


def test_word_is_little_endian():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    memory.write_word(address, 1)
    assert memory.read(address, WORD_SIZE) == b"\x01" + bytes(WORD_SIZE - 1)


def test_write_word_rejects_out_of_range():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    with pytest.raises(ValueError):
        memory.write_word(address, -1)


def test_fill_sets_bytes_using_low_byte():
    memory = SystemMemory()
    address = memory.mmap(PAGE_SIZE)
    memory.fill(address + 10, -1, 20)
    assert memory.read(address + 10, 20) == b"\xff" * 20
    assert memory.read(address + 30, 1) == b"\x00"


def test_reset_stats_clears_counters():
    memory = SystemMemory()
    memory.mmap(PAGE_SIZE)
    memory.stats.allocated_size = 123
    memory.reset_stats()
    assert memory.stats == Stats()


def test_allocator_is_abstract():
    with pytest.raises(TypeError):
        Allocator()