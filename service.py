"""
MusicService：应用启动时创建一次，关闭时释放线程池。
所有组件通过它拿到依赖，不使用模块级单例。
"""
import logging

import config
import database
from lyrics import LyricParser, LyricOffsetStore, apply_offset
from models import LyricResult
from music_apis import build_adapters
from playback import PlaybackResolver, PlaylistPlayer, SourceStats
from proxy_router import ProxyRouter
from search import SearchOrchestrator, SearchHistory, SearchCache

logger = logging.getLogger(__name__)

PREFERENCE_DEFAULTS = {
    "quality": config.DEFAULT_QUALITY,
    "theme": "auto",
}


class MusicService:

    def __init__(self, adapters=None, router=None, strategies=None, persist=True,
                 lyric_executor=None, duration_probe=None):
        if persist:
            database.init_db()
        self.router = router or ProxyRouter()
        self.adapters = adapters if adapters is not None else build_adapters()
        self.stats = SourceStats(persist=persist)
        self.history = SearchHistory(persist=persist)
        self.orchestrator = SearchOrchestrator(self.adapters, strategies=strategies,
                                               cache=SearchCache(), history=self.history)
        self.resolver = PlaybackResolver(self.adapters, self.router, stats=self.stats)
        self.player = PlaylistPlayer(self.resolver, duration_probe=duration_probe)
        self.lyric_parser = LyricParser(executor=lyric_executor)
        self.lyric_offsets = LyricOffsetStore()
        self.total_calls = 0
        # 后台监控线程的心跳
        self.monitor = {"thread_active": False, "last_heartbeat": None}

    # --- 搜索 ---

    def search(self, keyword, source="auto", type=0, limit=20, page=1):
        self.total_calls += 1
        return self.orchestrator.search(keyword, source=source, type=type, limit=limit, page=page)

    def suggestions(self, prefix, limit=5):
        return self.orchestrator.get_search_suggestions(prefix, limit)

    # --- 播放 ---

    def get_play_url(self, song, quality=None):
        self.total_calls += 1
        quality = quality or self.get_preferences()["quality"]
        return self.resolver.resolve_playback(song, quality)

    # --- 歌词 ---

    def get_lyric(self, song):
        adapter = self.adapters.get(song.source)
        if adapter is None:
            return LyricResult(from_source=song.source)
        result = adapter.get_lyric(song)
        if not result.from_source:
            result.from_source = adapter.id
        return result

    def get_lyric_lines(self, song):
        """返回 (原始歌词结果, 解析并校正后的歌词行, 偏移秒数)"""
        result = self.get_lyric(song)
        lines = self.lyric_parser.parse(result.lyric, result.translated)
        offset = self.lyric_offsets.get(song.key)
        return result, apply_offset(lines, offset), offset

    # --- 偏好 ---

    def get_preferences(self):
        prefs = dict(PREFERENCE_DEFAULTS)
        prefs.update(database.get_all_preferences())
        return prefs

    def set_preferences(self, values):
        for key, value in values.items():
            if key not in PREFERENCE_DEFAULTS:
                raise ValueError(f"未知的偏好设置: {key}")
            if key == "quality" and value not in config.QUALITY_FALLBACK:
                raise ValueError(f"不支持的音质: {value}")
            database.set_preference(key, value)
        return self.get_preferences()

    # --- 状态 ---

    def status(self):
        db_stats = database.get_source_stats()
        return {
            "thread_active": self.monitor["thread_active"],
            "last_heartbeat": self.monitor["last_heartbeat"],
            "total_ops": self.total_calls,
            "success_count": db_stats["total"],
            "source_details": db_stats["details"],
            "source_failures": db_stats["failures"],
            "source_stats": self.stats.snapshot(),
            "proxy": self.router.status(),
            "search_cache_size": len(self.orchestrator.cache),
        }

    def close(self):
        self.player.stop()
        self.lyric_parser.close()
        logger.info("👋 音乐服务已关闭")
