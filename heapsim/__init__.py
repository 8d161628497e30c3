"""Simulated heap allocators, an allocator benchmark, and malloc trace tools."""

__version__ = "0.1.0"