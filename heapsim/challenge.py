"""Benchmark that drives allocators through randomized allocation workloads."""

from __future__ import annotations

import argparse
import math
import random
import sys
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TextIO

from heapsim.binned_malloc import BinnedAllocator
from heapsim.memory import WORD_SIZE, Allocator, Stats, SystemMemory
from heapsim.simple_malloc import SimpleAllocator

SEED = 12
ALIGNMENT = 8
CYCLES = 10
NEVER_FREED_RATIO = 0.04
FIRST_CHALLENGE_INDEX = 1
LAST_CHALLENGE_INDEX = 5

_LAMBDA = 1.0
_THRESHOLD = 6.0

# (epochs per cycle, objects per small epoch, objects per large epoch)
_NORMAL_SHAPE = (100, 100, 2000)
_TRACED_SHAPE = (10, 25, 50)

CHALLENGES = (
    (1, 128, 128),
    (2, 16, 16),
    (3, 16, 128),
    (4, 256, 4000),
    (5, 8, 4000),
)

TRACE_WARNING = (
    "!!! WARNING - MALLOC_TRACE is enabled.\n"
    "The result will be different compare to normal builds.\n"
)

AllocatorFactory = Callable[[SystemMemory], Allocator]


@dataclass(frozen=True)
class _Object:
    address: int
    size: int
    tag: int


def _time_ms(stats: Stats) -> int:
    return int((stats.end_time - stats.begin_time) * 1000)


def _utilization(stats: Stats) -> int:
    mapped = stats.mmap_size - stats.munmap_size
    if mapped == 0:
        return 0
    return int(100.0 * (stats.allocated_size - stats.freed_size) / mapped)


@dataclass
class ChallengeResult:
    """The statistics of both allocators for one challenge."""

    index: int
    simple: Stats
    my: Stats

    @property
    def simple_time_ms(self) -> int:
        return _time_ms(self.simple)

    @property
    def my_time_ms(self) -> int:
        return _time_ms(self.my)

    @property
    def simple_utilization(self) -> int:
        return _utilization(self.simple)

    @property
    def my_utilization(self) -> int:
        return _utilization(self.my)


def _exponential_tau(rng: random.Random) -> float:
    sample = rng.random()
    if sample <= 0.0:
        return _THRESHOLD
    return min(-_LAMBDA * math.log(sample), _THRESHOLD)


def get_object_size(rng: random.Random, min_size: int, max_size: int) -> int:
    """Draw an 8-byte aligned size in ``[min_size, max_size]``, exponentially skewed."""
    if min_size > max_size:
        raise ValueError(f"min_size {min_size} exceeds max_size {max_size}")
    if min_size % ALIGNMENT:
        raise ValueError(f"min_size must be a multiple of {ALIGNMENT}: {min_size}")
    tau = _exponential_tau(rng)
    result = int((max_size - min_size) * tau / _THRESHOLD) + min_size
    return result // ALIGNMENT * ALIGNMENT


def get_object_lifetime(rng: random.Random, min_epoch: int, max_epoch: int) -> int:
    """Draw a lifetime in ``[min_epoch, max_epoch]``, exponentially skewed."""
    if min_epoch > max_epoch:
        raise ValueError(f"min_epoch {min_epoch} exceeds max_epoch {max_epoch}")
    tau = _exponential_tau(rng)
    return int((max_epoch - min_epoch) * tau / _THRESHOLD + min_epoch)


def run_challenge(
    allocator_factory: AllocatorFactory,
    min_size: int,
    max_size: int,
    rng: Optional[random.Random] = None,
    trace_path: Optional[str] = None,
    traced: bool = False,
) -> Stats:
    """Run one workload against the allocator built by ``allocator_factory``.

    In traced mode the workload is smaller and, if ``trace_path`` is given,
    every allocation, free, map and unmap is written to that file.
    """
    if rng is None:
        rng = random.Random(SEED)
    epochs, small, large = _TRACED_SHAPE if traced else _NORMAL_SHAPE

    with ExitStack() as stack:
        trace: Optional[TextIO] = None
        if traced and trace_path:
            trace = stack.enter_context(open(trace_path, "w", encoding="ascii"))
        memory = SystemMemory(trace)
        allocator = allocator_factory(memory)
        # The last bucket holds objects that are never freed.
        buckets: list[list[_Object]] = [[] for _ in range(epochs + 1)]
        allocator.initialize()
        memory.reset_stats()
        stats = memory.stats
        tag = 0
        stats.begin_time = time.perf_counter()
        for _cycle in range(CYCLES):
            for epoch in range(epochs):
                count = large if epoch == 0 else small
                for _ in range(count):
                    size = get_object_size(rng, min_size, max_size)
                    lifetime = get_object_lifetime(rng, 1, epochs)
                    stats.allocated_size += size
                    address = allocator.malloc(size)
                    if trace is not None:
                        trace.write(f"a {address} {size}\n")
                    memory.fill(address, tag, size)
                    obj = _Object(address, size, tag)
                    tag = (tag + 1) & 0xFF or 1
                    if rng.random() < NEVER_FREED_RATIO:
                        buckets[epochs].append(obj)
                    else:
                        buckets[(epoch + lifetime) % epochs].append(obj)

                for obj in buckets[epoch]:
                    stats.freed_size += obj.size
                    first = memory.read(obj.address, 1)[0]
                    last = memory.read(obj.address + obj.size - 1, 1)[0]
                    if first != obj.tag or last != obj.tag:
                        raise RuntimeError(
                            f"An allocated object is broken at {obj.address:#x}"
                        )
                    if trace is not None:
                        trace.write(f"f {obj.address} {obj.size}\n")
                    allocator.free(obj.address)
                buckets[epoch].clear()
        stats.end_time = time.perf_counter()
        allocator.finalize()
    return stats


def format_stats(challenge_index: int, simple_stats: Stats, my_stats: Stats) -> str:
    """Render the comparison table for one challenge."""
    if not FIRST_CHALLENGE_INDEX <= challenge_index <= LAST_CHALLENGE_INDEX:
        raise ValueError(
            f"challenge index must be in {FIRST_CHALLENGE_INDEX}..{LAST_CHALLENGE_INDEX}: "
            f"{challenge_index}"
        )
    rule = "-" * 15
    lines = [
        "=" * 52,
        f"Challenge #{challenge_index}    | {'simple_malloc':>15} => {'my_malloc':>15}",
        f"{rule:<16}+ {rule:>15} => {rule:>15}",
        f"{'Time [ms]':>16}| {_time_ms(simple_stats):>15} => {_time_ms(my_stats):>15}",
        f"{'Utilization [%] ':>16}| {_utilization(simple_stats):>15} => "
        f"{_utilization(my_stats):>15}",
    ]
    return "\n".join(lines) + "\n"


def format_score(results: Iterable[ChallengeResult]) -> str:
    """Render the score-sheet line from the given challenge results."""
    data = "".join(f"{result.my_time_ms},{result.my_utilization}," for result in results)
    return (
        "\nChallenge done!\n"
        "Please copy & paste the following data in the score sheet!\n"
        f"{data}\n"
    )


def run_challenges(
    rng: Optional[random.Random] = None,
    traced: bool = False,
    out: Optional[TextIO] = None,
) -> list[ChallengeResult]:
    """Run every challenge for both allocators and report the results."""
    if rng is None:
        rng = random.Random(SEED)
    if out is None:
        out = sys.stdout

    if traced:
        out.write(TRACE_WARNING)

    # Warm-up run.
    run_challenge(SimpleAllocator, 128, 128, rng, None, traced)

    results = []
    for index, min_size, max_size in CHALLENGES:
        simple_stats = run_challenge(
            SimpleAllocator, min_size, max_size, rng, f"trace{index}_simple.txt", traced
        )
        my_stats = run_challenge(
            BinnedAllocator, min_size, max_size, rng, f"trace{index}_my.txt", traced
        )
        out.write(format_stats(index, simple_stats, my_stats))
        results.append(ChallengeResult(index, simple_stats, my_stats))

    if traced:
        out.write(TRACE_WARNING)
    else:
        out.write(format_score(results))
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the allocator challenge from the command line."""
    parser = argparse.ArgumentParser(
        prog="heapsim-challenge",
        description="Compare the simple and the binned allocator on random workloads.",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="run the smaller workload and write trace files to the current directory",
    )
    parser.add_argument("--seed", type=int, default=SEED, help="random seed")
    args = parser.parse_args(argv)

    print("Welcome to the malloc challenge!")
    print(f"word size = {WORD_SIZE}")
    print()
    run_challenges(random.Random(args.seed), args.trace, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())