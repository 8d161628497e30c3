# heapsim

heapsim models heap allocators on top of a simulated, page-based system
memory. It comes with two allocators, a benchmark that compares them, and
tools for working with malloc/free trace files.

## What is inside

- `heapsim.memory`: `SystemMemory` hands out zero-filled 4096-byte pages
  (`mmap`) and takes them back (`munmap`). It stores bytes (`read`, `write`,
  `fill`), reads and writes 8-byte little-endian words (`read_word`,
  `write_word`), and keeps `Stats` on how much was mapped, unmapped,
  allocated and freed (`reset_stats` clears them). An access outside a mapped
  page raises `MemoryAccessError`. If `SystemMemory` is given a text stream,
  every map and unmap is logged to it as `m <address> <size>` or
  `u <address> <size>`. `Allocator` is the interface both allocators follow:
  `initialize`, `malloc`, `free`, `finalize`.
- `heapsim.simple_malloc`: `SimpleAllocator` keeps one singly linked free
  list and takes the first slot that fits. Requests may be 1 to 4080 bytes.
  It never returns pages to the system.
- `heapsim.binned_malloc`: `BinnedAllocator` keeps ten size-class bins
  (`get_bin_index`: up to 8 bytes, up to 16, ... up to 2048, and above) made
  of doubly linked free lists. It picks the best fit, merges a freed block
  with free neighbours through boundary-tag footers, and gives a page back to
  the system once it is completely free. Requests may be 1 to 4040 bytes.
  `find_page` and `page_count` show which pages it holds.
- `heapsim.challenge`: the benchmark. Objects with exponentially distributed
  sizes (`get_object_size`) and lifetimes (`get_object_lifetime`) are
  allocated and freed over several cycles of epochs. Each object is filled
  with a tag byte, and its first and last bytes are checked before it is
  freed; a mismatch raises `RuntimeError`. `run_challenge` runs one workload
  and returns its `Stats`; `run_challenges` runs all five for both allocators
  and returns a list of `ChallengeResult`. `format_stats` and `format_score`
  render the report.
- `heapsim.trace_format`: builds trace records in the hexadecimal
  `a`/`f`/`r` line format (`format_malloc`, `format_free`,
  `format_realloc`, `format_hex`) and trace file names (`trace_file_name`).
- `heapsim.timeline`: `TimelineRecorder` reads such a trace and turns it into
  a timeline of resident and cumulative allocation sizes; a malformed trace
  raises `TraceFormatError`.

## Installing

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Running the benchmark

```
heapsim-challenge
```

The command runs five workloads after a warm-up run. The random seed is 12
unless `--seed N` is given, so repeated runs use the same allocation
sequence. For each workload it prints a table of time in milliseconds and
utilisation in percent (live bytes over mapped bytes) for `simple_malloc`
and `my_malloc` (the binned allocator), then a line of comma-separated score
data.

| Challenge | Object sizes (bytes) |
|-----------|----------------------|
| 1         | 128                  |
| 2         | 16                   |
| 3         | 16 – 128             |
| 4         | 256 – 4000           |
| 5         | 8 – 4000             |

With `--trace`, a smaller workload is run, a warning is printed before and
after the tables instead of the score line, and each run writes its
operations to `trace<N>_simple.txt` and `trace<N>_my.txt` in the current
directory. Those files hold decimal lines `a <address> <size>`,
`f <address> <size>`, `m <address> <size>` and `u <address> <size>`.

## Building a timeline from a trace

```
heapsim-timeline < trace_1234.txt > timeline.dat
```

The input holds one operation per line. Numbers are hexadecimal.

```
a <address> <size>
f <address>
r <new address> <size> <old address>
```

For each operation, a tab-separated line is written to standard output:
operation count, resident size, cumulative allocated size, change in
resident size, and cumulative freed size. The operations themselves are also
written in decimal form, as `<op> <address> <size>`, to `trace.txt` or to the
file named by `--trace-file`. Freeing an address that was never allocated is
reported on standard output and skipped. An unknown operation or a missing
number stops the run with exit status 1. At the end, a summary goes to
standard error: count, peak size, final resident size, total allocated, and
the address range that was touched.

## Using the allocators directly

```python
from heapsim.memory import SystemMemory
from heapsim.binned_malloc import BinnedAllocator

memory = SystemMemory(None)
allocator = BinnedAllocator(memory)
allocator.initialize()

address = allocator.malloc(64)
memory.fill(address, 7, 64)
assert memory.read(address, 64) == bytes([7]) * 64

allocator.free(address)
allocator.finalize()
print(allocator.page_count())   # 0: the empty page was returned
```

## What it does not do

heapsim does not record the allocations of a real running program.
`heapsim.trace_format` only builds record lines; producing a trace from an
actual process is left to other tools. Nor does it draw plots: the timeline
is plain tab-separated text for a plotting program of your choice.