import concurrent.futures
import logging
import time

import config
from models import SearchResult

# 引入同目录下的适配器
from .base import SourceAdapter, MirrorPool
from .gdstudio import GdstudioAdapter
from .netease import NeteaseAdapter
from .kugou import KugouAdapter
from .kuwo import KuwoAdapter
from .bilibili import BilibiliAdapter

logger = logging.getLogger(__name__)

# 注册所有可用平台，值为工厂函数
DRIVERS = {
    "netease": NeteaseAdapter,
    "tencent": lambda **kw: GdstudioAdapter("tencent", **kw),
    "kugou": KugouAdapter,
    "kuwo": KuwoAdapter,
    "bilibili": BilibiliAdapter,
}

# 兼容旧版的 GD 音乐台搜索，作为 auto 模式最后的兜底
LEGACY_ADAPTER_ID = "gdstudio"


def build_adapters(sources=None, **kwargs):
    """
    按平台创建适配器，额外附带一个 gdstudio 兜底适配器
    """
    adapters = {}
    for source in sources or config.MUSIC_SOURCES:
        factory = DRIVERS.get(source)
        if factory is None:
            logger.warning("⚠️ 未知音乐源 %s，已跳过", source)
            continue
        adapters[source] = factory(**kwargs)
    adapters[LEGACY_ADAPTER_ID] = GdstudioAdapter("netease", adapter_id=LEGACY_ADAPTER_ID, **kwargs)
    return adapters


def _single_adapter_task(adapter, keyword, limit, page, type):
    """单个平台的工作线程"""
    start_time = time.time()
    result = adapter.search(keyword, limit=limit, page=page, type=type)
    return result, int((time.time() - start_time) * 1000)


def aggregate_search(adapters, keyword, limit=20, page=1, type=0):
    """
    聚合搜索：并发查询所有平台，等全部返回后按传入顺序合并
    （与竞速不同，这里要的是完整结果，顺序决定同分歌曲的先后）
    """
    adapters = list(adapters)
    if not adapters:
        return SearchResult(from_source="aggregate")

    logger.info("🔥 [聚合搜索] 目标源: %s | 关键词: %s", [a.id for a in adapters], keyword)
    results = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=len(adapters)) as executor:
        future_to_source = {
            executor.submit(_single_adapter_task, adapter, keyword, limit, page, type): adapter.id
            for adapter in adapters
        }
        for future in concurrent.futures.as_completed(future_to_source):
            source = future_to_source[future]
            try:
                result, duration = future.result()
            except Exception as exc:
                # 适配器本身不抛异常，这里兜住线程里的意外错误
                logger.error("❌ [%s] 线程崩溃: %s", source, exc)
                continue
            logger.debug("[%s] %d 首 (%dms)", source, len(result.songs), duration)
            results[source] = result

    songs = []
    total = 0
    for adapter in adapters:
        result = results.get(adapter.id)
        if result is None:
            continue
        songs.extend(result.songs)
        total += result.total
    return SearchResult(songs=songs, total=max(total, len(songs)), from_source="aggregate")


__all__ = [
    "SourceAdapter", "MirrorPool", "GdstudioAdapter", "NeteaseAdapter", "KugouAdapter",
    "KuwoAdapter", "BilibiliAdapter", "DRIVERS", "LEGACY_ADAPTER_ID",
    "build_adapters", "aggregate_search",
]
