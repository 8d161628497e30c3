"""Text records for a trace of allocation calls.

Each record is one line: ``a <address> <size>`` for an allocation,
``f <address>`` for a free and ``r <new address> <size> <old address>``
for a reallocation. Numbers are written in upper-case hexadecimal with no
prefix and no leading zeros.
"""

from __future__ import annotations

_UINT64_LIMIT = 1 << 64


def format_hex(value: int) -> str:
    """Render an unsigned 64-bit value as upper-case hex without leading zeros."""
    if not 0 <= value < _UINT64_LIMIT:
        raise ValueError(f"value does not fit in 64 unsigned bits: {value}")
    return f"{value:X}"


def format_malloc(address: int, size: int) -> str:
    """Return the record of an allocation of ``size`` bytes at ``address``."""
    return f"a {format_hex(address)} {format_hex(size)}\n"


def format_free(address: int) -> str:
    """Return the record of freeing the object at ``address``."""
    return f"f {format_hex(address)}\n"


def format_realloc(new_address: int, size: int, old_address: int) -> str:
    """Return the record of moving ``old_address`` to ``new_address`` with ``size`` bytes."""
    return f"r {format_hex(new_address)} {format_hex(size)} {format_hex(old_address)}\n"


def trace_file_name(identifier: int) -> str:
    """Return the name of the trace file for a process identified by ``identifier``."""
    return f"trace_{format_hex(identifier)}.txt"