import asyncio
import os
import stat

import pydantic
import pytest

from runledger.cache import (
    COMMITS,
    WORKFLOW_RUNS,
    CacheKey,
    CacheReadError,
    JsonCache,
)


class Record(pydantic.BaseModel):
    id: int
    value: str


def test_cache_key_rejects_unknown_kind():
    with pytest.raises(ValueError):
        CacheKey("org", "repo", "issues", 1)


def test_path_layout(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", COMMITS, "abc")
    assert cache.path_for(key) == tmp_path / "org" / "repo" / "commits" / "abc.json"
    assert key.key == "org/repo/commits/abc"


@pytest.mark.asyncio
async def test_fetch_or_compute_miss_then_hit(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", WORKFLOW_RUNS, 1)
    calls = []

    async def compute():
        calls.append(1)
        return Record(id=1, value="first")

    first = await cache.fetch_or_compute(key, Record, compute)
    second = await cache.fetch_or_compute(key, Record, compute)

    assert first == second == Record(id=1, value="first")
    assert len(calls) == 1
    assert cache.exists(key)


@pytest.mark.asyncio
async def test_force_update_overwrites(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", WORKFLOW_RUNS, 1)
    values = iter(["first", "second"])

    async def compute():
        return Record(id=1, value=next(values))

    await cache.fetch_or_compute(key, Record, compute)
    forced = await cache.fetch_or_compute(key, Record, compute, force_update=True)

    assert forced.value == "second"
    assert cache.read(key, Record).value == "second"


def test_write_is_owner_only_and_leaves_no_temp_files(tmp_path):
    data_dir = tmp_path / "data"
    cache = JsonCache(data_dir)
    key = CacheKey("org", "repo", COMMITS, "abc")

    path = cache.write(key, Record(id=2, value="x"))

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    for directory in (data_dir, data_dir / "org", data_dir / "org" / "repo", path.parent):
        assert stat.S_IMODE(os.stat(directory).st_mode) == 0o700
    assert os.listdir(path.parent) == ["abc.json"]


@pytest.mark.asyncio
async def test_corrupt_document_is_an_error(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", COMMITS, "abc")
    path = cache.path_for(key)
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    async def compute():
        raise AssertionError("must not refetch")

    with pytest.raises(CacheReadError) as exc_info:
        await cache.fetch_or_compute(key, Record, compute)
    assert exc_info.value.path == path


@pytest.mark.asyncio
async def test_failed_compute_writes_nothing(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", COMMITS, "abc")

    async def compute():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await cache.fetch_or_compute(key, Record, compute)

    assert not cache.exists(key)

    async def compute_ok():
        return Record(id=3, value="ok")

    assert (await cache.fetch_or_compute(key, Record, compute_ok)).value == "ok"


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_computation(tmp_path):
    cache = JsonCache(tmp_path)
    key = CacheKey("org", "repo", WORKFLOW_RUNS, 5)
    calls = []

    async def compute():
        calls.append(1)
        await asyncio.sleep(0.02)
        return Record(id=5, value="shared")

    results = await asyncio.gather(
        *(cache.fetch_or_compute(key, Record, compute) for _ in range(4))
    )

    assert len(calls) == 1
    assert all(r == Record(id=5, value="shared") for r in results)
    assert cache._inflight == {}
