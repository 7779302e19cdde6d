"""
搜索编排：缓存 -> 策略链 -> 相关性过滤 -> 写缓存 / 历史
"""
import logging
import threading
import time
from collections import OrderedDict

import config
import database
from models import SearchResult, SearchHistoryItem
from music_apis import aggregate_search, LEGACY_ADAPTER_ID
from relevance import filter_and_rank

logger = logging.getLogger(__name__)


class SearchCache:
    """按插入顺序淘汰的有界缓存（FIFO，读取不刷新位置）"""

    def __init__(self, max_size=None):
        self.max_size = config.SEARCH_CACHE_SIZE if max_size is None else max_size
        self._data = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value
            while len(self._data) > self.max_size:
                evicted, _ = self._data.popitem(last=False)
                logger.debug("🧹 淘汰搜索缓存 %s", evicted)

    def clear(self):
        with self._lock:
            self._data.clear()

    def __len__(self):
        return len(self._data)

    def __contains__(self, key):
        return key in self._data


class SearchHistory:
    """
    搜索历史：最近的在前，按关键词去重，最多 max_size 条。
    persist=True 时每次修改后写回本地数据库。
    """

    def __init__(self, max_size=None, persist=True):
        self.max_size = config.SEARCH_HISTORY_SIZE if max_size is None else max_size
        self.persist = persist
        self._items = []
        self._lock = threading.Lock()
        if persist:
            self._items = [SearchHistoryItem(keyword=k, timestamp=t)
                           for k, t in database.load_search_history(self.max_size)]

    def _save(self):
        if self.persist:
            database.save_search_history([(i.keyword, i.timestamp) for i in self._items])

    def add(self, keyword):
        keyword = (keyword or "").strip()
        if not keyword:
            return
        with self._lock:
            items = [i for i in self._items if i.keyword != keyword]
            items.insert(0, SearchHistoryItem(keyword=keyword, timestamp=int(time.time() * 1000)))
            self._items = items[:self.max_size]
            self._save()

    def remove(self, keyword):
        with self._lock:
            before = len(self._items)
            self._items = [i for i in self._items if i.keyword != keyword]
            removed = len(self._items) != before
            if removed:
                self._save()
        return removed

    def clear(self):
        with self._lock:
            self._items = []
            self._save()

    def items(self):
        with self._lock:
            return list(self._items)

    def keywords(self):
        return [i.keyword for i in self.items()]


class SearchOrchestrator:
    """
    source="auto" 时依次尝试策略（聚合 -> 默认平台 -> 兼容旧版），
    第一个返回歌曲的策略胜出；指定平台时直接调用对应适配器。
    策略之间严格串行。
    """

    def __init__(self, adapters, strategies=None, cache=None, history=None,
                 default_source=None, min_score=None, max_results=None):
        self.adapters = adapters
        self.default_source = default_source or config.DEFAULT_SOURCE
        self.strategies = strategies if strategies is not None else self.default_strategies()
        self.cache = cache if cache is not None else SearchCache()
        self.history = history if history is not None else SearchHistory(persist=False)
        self.min_score = min_score
        self.max_results = max_results

    def default_strategies(self):
        """[(策略名, callable(keyword, limit, page, type) -> SearchResult)]"""
        strategies = []
        platforms = [a for sid, a in self.adapters.items() if sid != LEGACY_ADAPTER_ID]
        if platforms:
            strategies.append(("aggregate", lambda k, limit, page, type:
                               aggregate_search(platforms, k, limit=limit, page=page, type=type)))
        default = self.adapters.get(self.default_source)
        if default is not None:
            strategies.append((default.id, default.search))
        legacy = self.adapters.get(LEGACY_ADAPTER_ID)
        if legacy is not None:
            strategies.append((legacy.id, legacy.search))
        return strategies

    def _run_auto(self, keyword, limit, page, type):
        for name, strategy in self.strategies:
            try:
                result = strategy(keyword, limit=limit, page=page, type=type)
            except Exception as e:
                # 单个策略失败不影响后续策略
                logger.error("❌ [搜索策略 %s] 异常: %s", name, e)
                continue
            if result is not None and result.songs:
                logger.info("✅ [搜索策略 %s] 命中 %d 首", name, len(result.songs))
                return SearchResult(songs=list(result.songs), total=result.total, from_source=name)
            logger.info("⚠️ [搜索策略 %s] 无结果，尝试下一个", name)
        return SearchResult(from_source="auto")

    def _run_source(self, keyword, source, limit, page, type):
        adapter = self.adapters.get(source)
        if adapter is None:
            logger.warning("⚠️ 未知音乐源: %s", source)
            return SearchResult(from_source=source)
        try:
            return adapter.search(keyword, limit=limit, page=page, type=type)
        except Exception as e:
            logger.error("❌ [%s] 搜索异常: %s", source, e)
            return SearchResult(from_source=source)

    def search(self, keyword, source="auto", type=0, limit=20, page=1):
        keyword = (keyword or "").strip()
        source = source or "auto"
        if not keyword:
            return SearchResult(from_source=source)

        cache_key = (keyword, source, type, page)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("💾 命中搜索缓存 %s", cache_key)
            return cached

        if source == "auto":
            raw = self._run_auto(keyword, limit, page, type)
        else:
            raw = self._run_source(keyword, source, limit, page, type)

        songs = filter_and_rank(raw.songs, keyword, self.min_score, self.max_results)
        result = SearchResult(songs=songs, total=max(raw.total, len(songs)), from_source=raw.from_source)

        self.cache.set(cache_key, result)
        self.history.add(keyword)
        return result

    def get_search_suggestions(self, prefix, limit=5):
        """历史关键词里包含 prefix 的（忽略大小写），最近的在前"""
        prefix = (prefix or "").strip().lower()
        if not prefix:
            return []
        matches = [k for k in self.history.keywords() if prefix in k.lower()]
        return matches[:limit]
