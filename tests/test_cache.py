import asyncio
import json

import pytest

from budgetflow.cache import BudgetCache
from budgetflow.errors import FetchFailure, PersistenceFailure, QuotaExceeded, UnknownEntityError
from budgetflow.types import BudgetResult, Citation, FlowGraph, FlowLink, FlowNode


def _result(value: float, explanation: str = "") -> BudgetResult:
    graph = FlowGraph(
        nodes=[FlowNode("rev_general", "一般財源"), FlowNode("exp_tourism", "観光振興費")],
        links=[FlowLink("rev_general", "exp_tourism", value)],
    )
    return BudgetResult(graph=graph, explanation=explanation, citations=[Citation("予算書", "https://example.jp")])


class CountingFetcher:
    def __init__(self, value: float, delay: float = 0.0):
        self.value = value
        self.delay = delay
        self.calls = []

    async def __call__(self, key: str) -> BudgetResult:
        self.calls.append(key)
        if self.delay:
            await asyncio.sleep(self.delay)
        return _result(self.value, explanation=key)


@pytest.fixture
def cache_path(tmp_path):
    return str(tmp_path / "store" / "budget_cache.json")


def test_second_call_without_force_reuses_first_result(cache_path):
    cache = BudgetCache(cache_path)
    f1, f2 = CountingFetcher(100), CountingFetcher(200)

    async def scenario():
        first = await cache.get_or_fetch("港区", f1)
        second = await cache.get_or_fetch("港区", f2)
        return first, second

    first, second = asyncio.run(scenario())
    assert second is first
    assert second.graph.links[0].value == 100
    assert f1.calls == ["港区"]
    assert f2.calls == []


def test_force_always_invokes_fetcher_and_overwrites(cache_path):
    cache = BudgetCache(cache_path)
    f1, f2 = CountingFetcher(100), CountingFetcher(200)

    async def scenario():
        await cache.get_or_fetch("港区", f1)
        return await cache.get_or_fetch("港区", f2, force=True)

    refreshed = asyncio.run(scenario())
    assert f2.calls == ["港区"]
    assert refreshed.graph.links[0].value == 200
    assert cache.get("港区") is refreshed


def test_get_has_no_side_effects(cache_path):
    cache = BudgetCache(cache_path)
    assert cache.get("港区") is None
    assert len(cache) == 0


def test_result_is_stamped_and_persisted(cache_path):
    cache = BudgetCache(cache_path)
    stored = asyncio.run(cache.get_or_fetch("中央区", CountingFetcher(42)))
    assert stored.fetched_at.endswith("Z")

    with open(cache_path, encoding="utf-8") as f:
        blob = json.load(f)
    assert set(blob) == {"中央区"}
    row = blob["中央区"]
    assert row["links"] == [{"source": "rev_general", "target": "exp_tourism", "value": 42}]
    assert row["citations"] == [{"title": "予算書", "uri": "https://example.jp"}]
    assert row["fetchedAt"] == stored.fetched_at

    reloaded = BudgetCache(cache_path)
    assert reloaded.get("中央区") == stored


def test_fetch_failure_leaves_store_untouched(cache_path):
    cache = BudgetCache(cache_path)
    asyncio.run(cache.get_or_fetch("港区", CountingFetcher(100)))

    async def boom(key):
        raise RuntimeError("network down")

    with pytest.raises(FetchFailure) as info:
        asyncio.run(cache.get_or_fetch("港区", boom, force=True))
    assert info.value.key == "港区"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert cache.get("港区").graph.links[0].value == 100


def test_quota_errors_propagate_unwrapped(cache_path):
    cache = BudgetCache(cache_path)

    async def quota(key):
        raise QuotaExceeded(key=key)

    with pytest.raises(QuotaExceeded):
        asyncio.run(cache.get_or_fetch("北区", quota))
    assert cache.get("北区") is None


def test_unknown_ward_is_rejected(cache_path):
    cache = BudgetCache(cache_path)
    fetcher = CountingFetcher(1)
    with pytest.raises(UnknownEntityError):
        asyncio.run(cache.get_or_fetch("横浜市", fetcher))
    assert fetcher.calls == []


def test_concurrent_fetches_for_one_ward_share_a_single_call(cache_path):
    cache = BudgetCache(cache_path)
    fetcher = CountingFetcher(7, delay=0.01)

    async def scenario():
        return await asyncio.gather(
            cache.get_or_fetch("目黒区", fetcher, force=True),
            cache.get_or_fetch("目黒区", fetcher, force=True),
            cache.get_or_fetch("目黒区", fetcher),
        )

    results = asyncio.run(scenario())
    assert fetcher.calls == ["目黒区"]
    assert results[0] is results[1] is results[2]


def test_distinct_wards_fetch_independently(cache_path):
    cache = BudgetCache(cache_path)
    fetcher = CountingFetcher(7, delay=0.01)

    async def scenario():
        return await asyncio.gather(
            cache.get_or_fetch("目黒区", fetcher),
            cache.get_or_fetch("大田区", fetcher),
        )

    asyncio.run(scenario())
    assert sorted(fetcher.calls) == sorted(["目黒区", "大田区"])
    assert set(cache.keys()) == {"目黒区", "大田区"}


def test_corrupt_file_loads_as_empty(cache_path, tmp_path):
    (tmp_path / "store").mkdir()
    with open(cache_path, "w", encoding="utf-8") as f:
        f.write("{not json")
    assert len(BudgetCache(cache_path)) == 0


def test_runaway_nesting_loads_as_empty(cache_path, tmp_path):
    (tmp_path / "store").mkdir()
    with open(cache_path, "w", encoding="utf-8") as f:
        f.write("[" * 100000 + "]" * 100000)
    cache = BudgetCache(cache_path)
    assert len(cache) == 0
    assert cache.get("港区") is None


def test_non_object_file_loads_as_empty(cache_path, tmp_path):
    (tmp_path / "store").mkdir()
    with open(cache_path, "w", encoding="utf-8") as f:
        json.dump([1, 2, 3], f)
    assert len(BudgetCache(cache_path)) == 0


def test_load_reconciles_entries(cache_path, tmp_path):
    (tmp_path / "store").mkdir()
    blob = {
        "横浜市": {"nodes": [], "links": []},
        "北区": "garbage",
        "港区": {
            "nodes": [{"id": "rev_a", "name": "A"}, {"id": "exp_b", "name": "B"}],
            "links": [
                {"source": "rev_a", "target": "exp_b", "value": 10},
                {"source": "exp_b", "target": "rev_a", "value": 3},
            ],
            "explanation": "x",
            "citations": [],
            "fetchedAt": "2024-05-01T00:00:00Z",
        },
    }
    with open(cache_path, "w", encoding="utf-8") as f:
        json.dump(blob, f, ensure_ascii=False)

    cache = BudgetCache(cache_path)
    assert cache.keys() == ["港区"]
    entry = cache.get("港区")
    assert entry.graph.links == [FlowLink("rev_a", "exp_b", 10.0)]
    assert entry.fetched_at == "2024-05-01T00:00:00Z"


def test_load_upgrades_browser_records(cache_path, tmp_path):
    (tmp_path / "store").mkdir()
    blob = {
        "渋谷区": {
            "data": {
                "nodes": [{"id": "rev_a", "name": "A"}, {"id": "exp_b", "name": "B"}],
                "links": [{"source": "rev_a", "target": "exp_b", "value": 5}],
            },
            "explanation": "legacy",
            "sources": [{"title": "T", "uri": "https://t"}],
            "timestamp": 0,
        }
    }
    with open(cache_path, "w", encoding="utf-8") as f:
        json.dump(blob, f, ensure_ascii=False)

    entry = BudgetCache(cache_path).get("渋谷区")
    assert entry.graph.links == [FlowLink("rev_a", "exp_b", 5.0)]
    assert entry.citations == [Citation("T", "https://t")]
    assert entry.fetched_at == "1970-01-01T00:00:00Z"


def test_flush_failure_keeps_memory_update(cache_path, monkeypatch):
    cache = BudgetCache(cache_path)

    def broken_flush():
        raise PersistenceFailure("disk full", path=cache_path)

    monkeypatch.setattr(cache, "flush", broken_flush)
    stored = asyncio.run(cache.get_or_fetch("品川区", CountingFetcher(9)))
    assert cache.get("品川区") is stored
    assert isinstance(cache.persist_error, PersistenceFailure)


def test_flush_raises_persistence_failure_for_unwritable_path(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cache = BudgetCache(str(blocker / "budget_cache.json"))
    with pytest.raises(PersistenceFailure):
        cache.flush()
