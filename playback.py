"""
播放解析：音质降级 -> 备用音乐源 -> 代理改写

PlaybackResolver 只负责一次解析，不保存连续失败次数；
连续失败的计数和处理在 PlaylistPlayer（调用方）里。
"""
import io
import logging
import re
import threading
import time
from datetime import datetime

import requests
from mutagen import File, MutagenError
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4

import config
import database
from models import PlaybackResult, QualityAttemptResult

logger = logging.getLogger(__name__)

_BRACKETS = re.compile(r"\s*[(（\[【].*?[)）\]】]\s*")


def quality_queue(requested, fallback=None):
    """请求的音质排第一，其余按全局降级顺序"""
    fallback = fallback or config.QUALITY_FALLBACK
    return [requested] + [q for q in fallback if q != requested]


def build_error_message(song, last_error):
    """构建详细的错误消息"""
    message = f"无法获取音乐链接 ({song.name})"
    last_error = last_error or ""
    lowered = last_error.lower()
    if "版权" in last_error or "copyright" in lowered:
        message += " - 版权保护"
    elif "空URL" in last_error:
        message += " - 音乐源无此资源"
    elif "timeout" in lowered or "超时" in last_error:
        message += " - 网络超时"
    return message


def strip_decorations(name):
    """去掉括号里的版本说明，如 歌名(Live版) -> 歌名"""
    return _BRACKETS.sub(" ", name or "").strip()


def get_audio_duration(url, session=None, timeout=5):
    """
    通过下载文件头获取时长，支持 mp3, m4a 等
    失败返回 0
    """
    session = session or requests
    try:
        logger.info("⏳ 正在计算时长: %s...", url[:30])
        # 尝试流式下载前 128KB 数据用于分析头部
        resp = session.get(url, headers={"User-Agent": config.USER_AGENT}, stream=True, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("⚠️ 获取时长失败: %s", e)
        return 0

    data = io.BytesIO()
    try:
        for chunk in resp.iter_content(chunk_size=4096):
            data.write(chunk)
            if data.tell() > 128 * 1024:
                break
    except requests.RequestException as e:
        logger.warning("⚠️ 获取时长失败: %s", e)
        return 0
    finally:
        # 只读文件头，提前关闭连接
        resp.close()

    for parser in (MP3, MP4, File):
        data.seek(0)
        try:
            audio = parser(data)
        except (MutagenError, ValueError, EOFError):
            continue
        if audio is not None and audio.info and audio.info.length:
            duration = int(audio.info.length)
            logger.info("✅ 获取时长成功: %s秒", duration)
            return duration
    return 0


class SourceStats:
    """
    每个音乐源获取播放链接的成功 / 失败次数。
    persist=True 时同时写入 api_logs，启动时从日志恢复。
    """

    def __init__(self, persist=False):
        self.persist = persist
        self._success = {}
        self._failure = {}
        self._lock = threading.Lock()
        if persist:
            stats = database.get_source_stats()
            self._success.update(stats["details"])
            self._failure.update(stats["failures"])

    def record(self, source, ok, detail="", response="", duration_ms=0):
        with self._lock:
            bucket = self._success if ok else self._failure
            bucket[source] = bucket.get(source, 0) + 1
        if self.persist:
            database.insert_log("获取链接", f"{detail} (源:{source})", "成功" if ok else "失败",
                                response, duration_ms)

    def success_rate(self, source):
        """没有记录的源按 0.5 计算"""
        with self._lock:
            ok = self._success.get(source, 0)
            total = ok + self._failure.get(source, 0)
        if total == 0:
            return 0.5
        return ok / total

    def snapshot(self):
        with self._lock:
            sources = set(self._success) | set(self._failure)
            return {s: {"success": self._success.get(s, 0), "failure": self._failure.get(s, 0)}
                    for s in sorted(sources)}


class PlaybackResolver:

    def __init__(self, adapters, router, stats=None, enable_source_fallback=None,
                 fallback_sources=None, quality_order=None):
        self.adapters = adapters
        self.router = router
        self.stats = stats or SourceStats()
        self.enable_source_fallback = (config.ENABLE_SOURCE_FALLBACK
                                       if enable_source_fallback is None else enable_source_fallback)
        self.fallback_sources = list(fallback_sources or config.MUSIC_SOURCES)
        self.quality_order = tuple(quality_order or config.QUALITY_FALLBACK)

    def try_qualities(self, song, requested_quality, adapter=None):
        """按音质队列依次尝试，拿到第一个非空 URL 就停"""
        adapter = adapter or self.adapters.get(song.source)
        if adapter is None:
            return QualityAttemptResult(last_error=f"未知音乐源 {song.source}")

        last_error = ""
        for quality in quality_queue(requested_quality, self.quality_order):
            result = adapter.get_play_url(song, quality)
            if result.ok:
                return QualityAttemptResult(url_data=result, success_quality=quality,
                                            last_error=last_error,
                                            used_fallback=quality != requested_quality)
            if result.error:
                last_error = result.error
        return QualityAttemptResult(last_error=last_error)

    def alternate_sources(self, exclude):
        """备用源按历史成功率从高到低排序"""
        candidates = [s for s in self.fallback_sources if s != exclude and s in self.adapters]
        return sorted(candidates, key=self.stats.success_rate, reverse=True)

    def find_alternate(self, song, adapter):
        """在另一个源里找同一首歌：先搜原名，没结果再搜去掉括号的名字"""
        results = adapter.search(song.name, limit=10).songs
        if not results:
            stripped = strip_decorations(song.name)
            if stripped and stripped != song.name:
                results = adapter.search(stripped, limit=10).songs
        if not results:
            return None

        target = song.name.lower()
        for candidate in results:
            name = candidate.name.lower()
            if name == target or target in name or name in target:
                return candidate
        return results[0]

    def resolve_playback(self, song, requested_quality=None):
        requested_quality = requested_quality or config.DEFAULT_QUALITY
        start = time.time()
        played, adapter = song, self.adapters.get(song.source)
        attempt = self.try_qualities(song, requested_quality, adapter)
        switched = False

        if attempt.url_data is None and self.enable_source_fallback:
            for source in self.alternate_sources(song.source):
                alt_adapter = self.adapters[source]
                logger.info("🔀 [%s] 所有音质失败，尝试备用源 %s", song.source, source)
                alternate = self.find_alternate(song, alt_adapter)
                if alternate is None:
                    continue
                alt_attempt = self.try_qualities(alternate, requested_quality, alt_adapter)
                if alt_attempt.url_data is not None:
                    played, adapter, attempt, switched = alternate, alt_adapter, alt_attempt, True
                    break
                attempt.last_error = alt_attempt.last_error or attempt.last_error

        duration_ms = int((time.time() - start) * 1000)
        if attempt.url_data is None:
            last_error = attempt.last_error or "空URL"
            self.stats.record(song.source, False, song.name, last_error, duration_ms)
            logger.warning("❌ [%s] %s 解析失败: %s", song.source, song.name, last_error)
            return PlaybackResult(used_source=song.source, error=last_error,
                                  message=build_error_message(song, last_error))

        url_data = attempt.url_data
        used_source = url_data.used_source or played.source
        self.stats.record(used_source, True, played.name, url_data.url, duration_ms)
        route_hint = adapter.proxy_platform or used_source
        return PlaybackResult(
            url=self.router.resolve(url_data.url, route_hint),
            success_quality=attempt.success_quality,
            used_fallback=attempt.used_fallback or switched,
            used_source=used_source,
            bitrate_label=url_data.bitrate_label,
            source_url=url_data.url,
            song=played,
        )

    def get_play_url(self, song, quality=None):
        """对外接口：{url, fromSource, ...}，失败时带 error / message"""
        return self.resolve_playback(song, quality).to_dict()


class PlaylistPlayer:
    """
    歌单播放：解析当前歌曲 -> 计时 -> 到点切下一首。
    连续失败达到 switch_threshold 次切换音乐源，达到 max_failures 次停止自动播放。

    解析链接和探测时长都是网络请求，不在锁内进行：先记下当前位置，解析完再加锁，
    位置没被 next / previous / stop 改过才写回结果。
    """

    def __init__(self, resolver, switch_threshold=None, max_failures=None,
                 duration_probe=None, default_duration=None, clock=None):
        self.resolver = resolver
        self.switch_threshold = switch_threshold or config.SOURCE_SWITCH_THRESHOLD
        self.max_failures = max_failures or config.MAX_CONSECUTIVE_FAILURES
        self.duration_probe = duration_probe or get_audio_duration
        self.default_duration = default_duration or config.DEFAULT_TRACK_DURATION
        self.clock = clock or time.time
        self._lock = threading.RLock()
        self._generation = 0
        self.reset()

    def reset(self):
        self.playlist_mode = False
        self.playlist_name = ""
        self.queue = []
        self.current_index = -1
        self.quality = config.DEFAULT_QUALITY
        self.playing_start_time = 0
        self.current_duration = 0
        self.current = None
        self.consecutive_failures = 0
        self.source_override = None
        self.halted = False
        self.last_error = ""
        self._generation += 1

    def _seek(self, index):
        # 切歌期间停止计时，tick 不会重复切歌
        self.current_index = index
        self.playing_start_time = 0
        self._generation += 1

    def start(self, playlist_name, songs, quality=None):
        """songs 为 Song 列表"""
        with self._lock:
            if not songs:
                return False, "歌单为空或不存在"
            self.reset()
            self.playlist_mode = True
            self.playlist_name = playlist_name
            self.queue = list(songs)
            self.quality = quality or config.DEFAULT_QUALITY
            self._seek(0)
        self.play_current()
        return True, f"开始播放歌单: {playlist_name}"

    def stop(self):
        with self._lock:
            self.playlist_mode = False
            self.playing_start_time = 0
            self.current = None
            self._generation += 1

    def next(self):
        with self._lock:
            if not self.playlist_mode:
                return False
            self._seek(self.current_index + 1)
        self.play_current()
        return True

    def previous(self):
        with self._lock:
            if not self.playlist_mode:
                return False
            self._seek(max(0, self.current_index - 1))
        self.play_current()
        return True

    def _resolve(self, song, source_override, quality):
        if source_override and source_override != song.source:
            adapter = self.resolver.adapters.get(source_override)
            if adapter is not None:
                alternate = self.resolver.find_alternate(song, adapter)
                if alternate is not None:
                    song = alternate
        return self.resolver.resolve_playback(song, quality)

    def _on_failure(self, song, result):
        self.consecutive_failures += 1
        self.last_error = result.message or result.error
        database.insert_log("歌单播放", f"{song.name} (歌单:{self.playlist_name})", "失败", result.error, 0)

        if self.consecutive_failures >= self.max_failures:
            logger.error("🛑 连续失败 %d 次，停止自动播放", self.consecutive_failures)
            self.halted = True
            self.playlist_mode = False
            return
        if self.consecutive_failures >= self.switch_threshold:
            candidates = self.resolver.alternate_sources(self.source_override or song.source)
            if candidates:
                self.source_override = candidates[0]
                logger.warning("🔀 连续失败 %d 次，切换音乐源 -> %s",
                               self.consecutive_failures, self.source_override)

    def play_current(self):
        """播放队列中当前索引的歌曲，失败则跳到下一首"""
        while True:
            with self._lock:
                if not self.playlist_mode:
                    return None
                if self.current_index >= len(self.queue):
                    self.playlist_mode = False
                    self.current = None
                    logger.info("🏁 歌单播放结束")
                    return None
                generation = self._generation
                song = self.queue[self.current_index]
                source_override = self.source_override
                quality = self.quality
                logger.info("▶️ [歌单] 播放第 %d 首: %s", self.current_index + 1, song.name)

            result = self._resolve(song, source_override, quality)
            duration = None
            if result.ok:
                played = result.song or song
                duration = played.duration or self.duration_probe(result.source_url or result.url)

            with self._lock:
                if generation != self._generation:
                    logger.info("⏭️ [歌单] 播放位置已改变，丢弃 %s 的解析结果", song.name)
                    return None
                if not result.ok:
                    self._on_failure(song, result)
                    self.current_index += 1
                    continue

                self.consecutive_failures = 0
                # 获取失败给一个默认值，防止卡在一首歌上
                self.current_duration = int(duration) if duration else self.default_duration
                self.current = result
                self.playing_start_time = self.clock()
                database.insert_log("歌单播放", f"{played.name} (歌单:{self.playlist_name})", "成功",
                                    result.url, 0)
                return result

    def tick(self):
        """后台线程定期调用：单曲时间到了就切下一首（缓冲 2 秒）"""
        with self._lock:
            if not self.playlist_mode or self.playing_start_time <= 0:
                return False
            elapsed = self.clock() - self.playing_start_time
            if elapsed <= self.current_duration + 2:
                return False
            logger.info("⏰ 单曲时间到 (%ds)，切下一首", int(elapsed))
            self._seek(self.current_index + 1)
        self.play_current()
        return True

    def status(self):
        with self._lock:
            current = self.current
            return {
                "playlist_mode": self.playlist_mode,
                "current_playlist": self.playlist_name if self.playlist_mode else None,
                "current_index": self.current_index,
                "queue_length": len(self.queue),
                "current": current.to_dict() if current else None,
                "current_song": current.song.to_dict() if current and current.song else None,
                "current_duration": self.current_duration,
                "elapsed": int(self.clock() - self.playing_start_time) if self.playing_start_time else 0,
                "consecutive_failures": self.consecutive_failures,
                "source_override": self.source_override,
                "halted": self.halted,
                "last_error": self.last_error,
                "updated_at": datetime.now().strftime("%H:%M:%S"),
            }


__all__ = [
    "quality_queue", "build_error_message", "strip_decorations", "get_audio_duration",
    "SourceStats", "PlaybackResolver", "PlaylistPlayer",
]
