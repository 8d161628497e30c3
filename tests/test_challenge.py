import io
import random

import pytest

from heapsim.binned_malloc import BinnedAllocator
from heapsim.challenge import (
    ChallengeResult,
    format_score,
    format_stats,
    get_object_lifetime,
    get_object_size,
    main,
    run_challenge,
    run_challenges,
)
from heapsim.memory import PAGE_SIZE, Stats
from heapsim.simple_malloc import SimpleAllocator


class _ZeroRandom:
    def random(self):
        return 0.0


def _read_trace(path):
    with open(path, encoding="ascii") as handle:
        return [line.split() for line in handle]


@pytest.mark.parametrize("bounds", [(8, 4000), (16, 128), (256, 4000), (16, 16)])
def test_object_size_in_range_and_aligned(bounds):
    low, high = bounds
    rng = random.Random(5)
    sizes = [get_object_size(rng, low, high) for _ in range(500)]
    assert all(low <= size <= high for size in sizes)
    assert all(size % 8 == 0 for size in sizes)


def test_object_size_equal_bounds():
    rng = random.Random(1)
    assert {get_object_size(rng, 128, 128) for _ in range(50)} == {128}


def test_object_size_zero_sample_reaches_max():
    assert get_object_size(_ZeroRandom(), 16, 128) == 128


def test_object_size_rejects_bad_bounds():
    with pytest.raises(ValueError):
        get_object_size(random.Random(1), 128, 16)
    with pytest.raises(ValueError):
        get_object_size(random.Random(1), 12, 128)


def test_object_lifetime_in_range():
    rng = random.Random(7)
    lifetimes = [get_object_lifetime(rng, 1, 10) for _ in range(500)]
    assert all(1 <= value <= 10 for value in lifetimes)
    assert min(lifetimes) == 1


def test_object_lifetime_zero_sample_reaches_max():
    assert get_object_lifetime(_ZeroRandom(), 1, 10) == 10


def test_object_lifetime_rejects_bad_bounds():
    with pytest.raises(ValueError):
        get_object_lifetime(random.Random(1), 10, 1)


def test_draws_are_deterministic_per_seed():
    first = [get_object_size(random.Random(3), 8, 4000) for _ in range(1)]
    second = [get_object_size(random.Random(3), 8, 4000) for _ in range(1)]
    assert first == second


@pytest.mark.parametrize("factory", [SimpleAllocator, BinnedAllocator])
def test_trace_matches_stats(tmp_path, factory):
    path = tmp_path / "trace.txt"
    stats = run_challenge(factory, 16, 128, random.Random(12), str(path), True)
    lines = _read_trace(path)
    assert {line[0] for line in lines} <= {"a", "f", "m", "u"}
    allocated = sum(int(size) for op, _, size in lines if op == "a")
    freed = sum(int(size) for op, _, size in lines if op == "f")
    mapped = sum(int(size) for op, _, size in lines if op == "m")
    unmapped = sum(int(size) for op, _, size in lines if op == "u")
    assert allocated == stats.allocated_size
    assert freed == stats.freed_size
    assert mapped == stats.mmap_size
    assert unmapped == stats.munmap_size
    assert stats.freed_size < stats.allocated_size
    assert stats.mmap_size % PAGE_SIZE == 0
    assert stats.end_time >= stats.begin_time


def test_trace_frees_only_live_objects(tmp_path):
    path = tmp_path / "trace.txt"
    run_challenge(BinnedAllocator, 8, 4000, random.Random(4), str(path), True)
    live = {}
    for op, address, size in _read_trace(path):
        if op == "a":
            assert address not in live
            live[address] = size
        elif op == "f":
            assert live.pop(address) == size
    assert live


def test_simple_allocator_never_unmaps(tmp_path):
    stats = run_challenge(SimpleAllocator, 128, 128, random.Random(12), None, True)
    assert stats.munmap_size == 0
    assert stats.allocated_size % 128 == 0
    assert not list(tmp_path.iterdir())


def test_binned_unmaps_no_more_than_maps():
    stats = run_challenge(BinnedAllocator, 256, 4000, random.Random(9), None, True)
    assert 0 <= stats.munmap_size <= stats.mmap_size


def test_run_challenge_is_deterministic():
    first = run_challenge(SimpleAllocator, 8, 4000, random.Random(21), None, True)
    second = run_challenge(BinnedAllocator, 8, 4000, random.Random(21), None, True)
    assert first.allocated_size == second.allocated_size
    assert first.freed_size == second.freed_size


def test_format_stats_layout():
    simple = Stats(begin_time=0.0, end_time=1.5, mmap_size=4096, allocated_size=2048)
    mine = Stats(begin_time=0.0, end_time=1.5, mmap_size=4096, allocated_size=2048)
    lines = format_stats(1, simple, mine).splitlines()
    assert lines[0] == "=" * 52
    assert lines[1] == "Challenge #1    |   simple_malloc =>       my_malloc"
    assert lines[3].split() == ["Time", "[ms]|", "1500", "=>", "1500"]
    assert lines[4].split()[-3:] == ["50", "=>", "50"]


@pytest.mark.parametrize("index", [0, 6])
def test_format_stats_rejects_index(index):
    with pytest.raises(ValueError):
        format_stats(index, Stats(), Stats())


def test_format_score_lists_results():
    results = [
        ChallengeResult(1, Stats(), Stats(end_time=2.0, mmap_size=4096, allocated_size=4096)),
        ChallengeResult(2, Stats(), Stats(end_time=1.0, mmap_size=8192, allocated_size=4096)),
    ]
    text = format_score(results)
    assert text.startswith("\nChallenge done!\n")
    assert "Please copy & paste the following data in the score sheet!" in text
    expected = "".join(f"{r.my_time_ms},{r.my_utilization}," for r in results)
    assert text.endswith(expected + "\n")


def test_challenge_result_without_mapping_has_zero_utilization():
    result = ChallengeResult(1, Stats(), Stats())
    assert result.my_utilization == 0
    assert result.simple_time_ms == 0


def test_run_challenges_traced(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    results = run_challenges(random.Random(12), True, out)
    assert [result.index for result in results] == [1, 2, 3, 4, 5]
    text = out.getvalue()
    assert text.count("!!! WARNING - MALLOC_TRACE is enabled.") == 2
    assert "Challenge done!" not in text
    assert text.count("Challenge #") == 5
    names = {path.name for path in tmp_path.iterdir()}
    assert names == {f"trace{i}_{kind}.txt" for i in range(1, 6) for kind in ("simple", "my")}
    assert all(r.my.allocated_size == r.simple.allocated_size or r.index for r in results)
    assert all(0 <= r.my_utilization <= 100 for r in results)


def test_main_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--help"])
    assert info.value.code == 0
    assert "--trace" in capsys.readouterr().out


def test_main_rejects_unknown_option():
    with pytest.raises(SystemExit) as info:
        main(["--bogus"])
    assert info.value.code == 2