import pytest

import database
from models import SearchResult
from search import SearchCache, SearchHistory, SearchOrchestrator
from tests.support.stubs import FakeAdapter, make_song


class _Strategy:
    """记录调用次数的搜索策略"""

    def __init__(self, songs=None, error=None):
        self.songs = list(songs or [])
        self.error = error
        self.calls = 0

    def __call__(self, keyword, limit=20, page=1, type=0):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return SearchResult(songs=self.songs, total=len(self.songs))


def _orchestrator(strategies, **kwargs):
    return SearchOrchestrator({}, strategies=strategies, **kwargs)


@pytest.mark.unit
def test_first_strategy_with_results_wins():
    song = make_song("1", "晴天", ["周杰伦"])
    empty_a, empty_b, hit = _Strategy(), _Strategy(), _Strategy([song])
    orchestrator = _orchestrator([("aggregate", empty_a), ("netease", empty_b), ("gdstudio", hit)])

    result = orchestrator.search("晴天")

    assert result.songs == [song]
    assert result.from_source == "gdstudio"
    assert (empty_a.calls, empty_b.calls, hit.calls) == (1, 1, 1)


@pytest.mark.unit
def test_later_strategies_are_not_called_after_a_hit():
    first = _Strategy([make_song("1", "晴天")])
    second = _Strategy([make_song("2", "晴天")])
    orchestrator = _orchestrator([("aggregate", first), ("netease", second)])
    assert orchestrator.search("晴天").from_source == "aggregate"
    assert second.calls == 0


@pytest.mark.unit
def test_failing_strategy_is_skipped():
    broken = _Strategy(error=RuntimeError("boom"))
    hit = _Strategy([make_song("1", "晴天")])
    orchestrator = _orchestrator([("aggregate", broken), ("netease", hit)])
    result = orchestrator.search("晴天")
    assert result.from_source == "netease"
    assert len(result.songs) == 1


@pytest.mark.unit
def test_all_strategies_empty_returns_empty_auto_result():
    orchestrator = _orchestrator([("aggregate", _Strategy()), ("netease", _Strategy())])
    result = orchestrator.search("没有这首歌")
    assert result.songs == []
    assert result.from_source == "auto"


@pytest.mark.unit
def test_identical_searches_hit_the_cache():
    strategy = _Strategy([make_song("1", "晴天")])
    orchestrator = _orchestrator([("aggregate", strategy)])
    first = orchestrator.search("晴天")
    second = orchestrator.search("晴天")
    assert strategy.calls == 1
    assert first is second
    # 页码不同视为不同查询
    orchestrator.search("晴天", page=2)
    assert strategy.calls == 2


@pytest.mark.unit
def test_results_are_filtered_by_relevance():
    match = make_song("1", "晴天", ["周杰伦"])
    noise = make_song("2", "Hello", ["Adele"])
    orchestrator = _orchestrator([("aggregate", _Strategy([noise, match]))])
    assert orchestrator.search("晴天").songs == [match]


@pytest.mark.unit
def test_empty_keyword_is_not_searched_or_cached():
    strategy = _Strategy([make_song("1", "x")])
    orchestrator = _orchestrator([("aggregate", strategy)])
    result = orchestrator.search("   ")
    assert result.songs == []
    assert strategy.calls == 0
    assert len(orchestrator.cache) == 0
    assert orchestrator.history.keywords() == []


@pytest.mark.unit
def test_explicit_source_calls_that_adapter_only():
    netease = FakeAdapter("netease", songs=[make_song("1", "晴天", ["周杰伦"])])
    kugou = FakeAdapter("kugou", songs=[make_song("k", "晴天", ["周杰伦"], source="kugou")])
    orchestrator = SearchOrchestrator({"netease": netease, "kugou": kugou}, strategies=[])
    result = orchestrator.search("晴天", source="kugou")
    assert result.from_source == "kugou"
    assert [s.id for s in result.songs] == ["k"]
    assert netease.search_calls == []


@pytest.mark.unit
def test_unknown_source_returns_empty():
    orchestrator = SearchOrchestrator({}, strategies=[])
    result = orchestrator.search("晴天", source="spotify")
    assert result.songs == []
    assert result.from_source == "spotify"


class _BrokenAdapter(FakeAdapter):

    def search(self, keyword, limit=30, page=1, type=0):
        raise RuntimeError("adapter bug")


@pytest.mark.unit
def test_explicit_source_exception_returns_empty():
    orchestrator = SearchOrchestrator({"kuwo": _BrokenAdapter("kuwo")}, strategies=[])
    result = orchestrator.search("晴天", source="kuwo")
    assert result.songs == []
    assert result.from_source == "kuwo"


@pytest.mark.unit
def test_default_strategy_order():
    adapters = {
        "netease": FakeAdapter("netease"),
        "kugou": FakeAdapter("kugou"),
        "gdstudio": FakeAdapter("gdstudio"),
    }
    orchestrator = SearchOrchestrator(adapters, default_source="netease")
    assert [name for name, _ in orchestrator.strategies] == ["aggregate", "netease", "gdstudio"]


@pytest.mark.unit
def test_aggregate_strategy_excludes_legacy_adapter():
    legacy_song = make_song("g", "晴天", ["周杰伦"], source="gdstudio")
    adapters = {
        "netease": FakeAdapter("netease"),
        "gdstudio": FakeAdapter("gdstudio", songs=[legacy_song]),
    }
    orchestrator = SearchOrchestrator(adapters, default_source="netease")
    result = orchestrator.search("晴天")
    assert result.from_source == "gdstudio"
    # 聚合和默认源各查一次 netease，最后才轮到旧版接口
    assert adapters["netease"].search_calls == ["晴天", "晴天"]
    assert adapters["gdstudio"].search_calls == ["晴天"]


@pytest.mark.unit
def test_cache_evicts_in_insertion_order():
    cache = SearchCache(max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    # 读取不刷新位置
    assert "a" not in cache
    assert cache.get("b") == 2
    assert cache.get("c") == 3
    assert len(cache) == 2


@pytest.mark.unit
def test_history_dedupes_and_keeps_most_recent_first():
    history = SearchHistory(max_size=3, persist=False)
    for keyword in ["a", "b", "a", "c", "d"]:
        history.add(keyword)
    assert history.keywords() == ["d", "c", "a"]
    assert history.remove("c") is True
    assert history.remove("zzz") is False
    history.clear()
    assert history.keywords() == []


@pytest.mark.unit
def test_history_is_persisted_between_instances():
    history = SearchHistory(max_size=5)
    history.add("晴天")
    history.add("稻香")
    assert [k for k, _ in database.load_search_history()] == ["稻香", "晴天"]
    assert SearchHistory(max_size=5).keywords() == ["稻香", "晴天"]


@pytest.mark.unit
def test_suggestions_match_history_case_insensitively():
    strategy = _Strategy()
    orchestrator = _orchestrator([("aggregate", strategy)])
    for keyword in ["Jay Chou", "周杰伦", "jay park"]:
        orchestrator.search(keyword)
    assert orchestrator.get_search_suggestions("JAY") == ["jay park", "Jay Chou"]
    assert orchestrator.get_search_suggestions("jay", limit=1) == ["jay park"]
    assert orchestrator.get_search_suggestions("") == []
