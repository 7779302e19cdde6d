"""
LRC 歌词解析

parse_lrc 是唯一的解析函数，LyricParser 只决定在哪个线程里调用它：
后台线程池优先，线程池不可用时直接在当前线程解析。
"""
import concurrent.futures
import itertools
import logging
import re
import threading

import config
import database
from errors import LyricParseTimeout
from models import LyricLine

logger = logging.getLogger(__name__)

# [mm:ss] [mm:ss.xx] [mm:ss.xxx] [hh:mm:ss.xx]
TIME_TAG = re.compile(r"\[(?:(\d+):)?(\d+):(\d{2})(?:\.(\d{1,3}))?\]")
OFFSET_TAG = re.compile(r"\[offset:\s*([+-]?\d+)\s*\]", re.IGNORECASE)
META_TAG = re.compile(r"^\s*\[(?:ti|ar|al|by|offset):", re.IGNORECASE)

EMPTY_PLACEHOLDER = "暂无歌词"
NO_TIMELINE_PLACEHOLDER = "纯音乐，请欣赏"


def _tag_seconds(match):
    hours, minutes, seconds, fraction = match.groups()
    total = int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds)
    if fraction:
        total += int(fraction.ljust(3, "0")) / 1000.0
    return total


def optimize_text(text):
    """移除回车符，合并多余空白"""
    return re.sub(r"\s+", " ", text.replace("\r", "")).strip()


def _parse_timeline(lyric):
    """解析出带时间的行，没有任何时间标签时返回空列表"""
    offset_match = OFFSET_TAG.search(lyric)
    offset = int(offset_match.group(1)) / 1000.0 if offset_match else 0.0

    lines = []
    for raw in lyric.split("\n"):
        if META_TAG.match(raw):
            continue
        text = optimize_text(TIME_TAG.sub("", raw))
        if not text:
            continue
        # 一行可能有多个时间标签，每个时间都生成一条
        for match in TIME_TAG.finditer(raw):
            lines.append(LyricLine(time=_tag_seconds(match) + offset, text=text))

    return sorted(lines, key=lambda line: line.time)


def parse_lrc(lyric):
    """
    解析 LRC 文本，返回按时间升序排列的 LyricLine 列表。
    空输入或者完全没有时间标签时返回一条占位歌词，界面永远有东西可显示。
    """
    if not lyric or not lyric.strip():
        return [LyricLine(time=0.0, text=EMPTY_PLACEHOLDER)]
    lines = _parse_timeline(lyric)
    if not lines:
        return [LyricLine(time=0.0, text=NO_TIMELINE_PLACEHOLDER)]
    return lines


def merge_translation(lines, translated, tolerance=None):
    """为每行原文找时间最接近的译文（误差不超过 tolerance 秒）"""
    if not translated or not translated.strip():
        return list(lines)
    tolerance = config.LYRIC_TRANSLATION_TOLERANCE if tolerance is None else tolerance
    translations = _parse_timeline(translated)
    if not translations:
        return list(lines)

    merged = []
    for line in lines:
        closest = None
        for trans in translations:
            diff = abs(trans.time - line.time)
            if diff <= tolerance and (closest is None or diff < closest[0]):
                closest = (diff, trans.text)
        # 译文和原文一样的行（纯音乐提示、作词作曲）不重复显示
        if closest and closest[1] != line.text:
            merged.append(LyricLine(time=line.time, text=line.text, translation=closest[1]))
        else:
            merged.append(line)
    return merged


def parse_bilingual(lyric, translated=None, tolerance=None):
    return merge_translation(parse_lrc(lyric), translated, tolerance)


def apply_offset(lines, offset):
    """整体平移歌词时间（秒），正数表示歌词延后"""
    if not offset:
        return list(lines)
    return [LyricLine(time=line.time + offset, text=line.text, translation=line.translation)
            for line in lines]


class LyricParser:
    """
    后台歌词解析：提交到线程池，超过 timeout 秒未完成则放弃等待并抛 LyricParseTimeout。
    超时的任务无法中断，会一直占着工作线程，所以超时后换一个新线程池；
    调用方传入的线程池不能替换，只要还有卡住的任务就改为同步解析。
    """

    def __init__(self, executor=None, timeout=None, max_workers=1):
        self.timeout = config.LYRIC_PARSE_TIMEOUT if timeout is None else timeout
        self.max_workers = max_workers
        self._own_executor = executor is None
        self.executor = executor or self._new_executor()
        self._pending = {}
        self._stuck = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._closed = False

    def _new_executor(self):
        return concurrent.futures.ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="lyric-parser")

    @property
    def pending_count(self):
        with self._lock:
            return len(self._pending)

    def _submit(self, lyric, translated):
        with self._lock:
            if self._closed or self.executor is None:
                return None
            self._stuck = [f for f in self._stuck if not f.done()]
            if self._stuck:
                return None
            executor = self.executor
        try:
            return executor.submit(parse_bilingual, lyric, translated)
        except RuntimeError:
            # 线程池已关闭
            logger.warning("⚠️ 歌词线程池不可用，改为同步解析")
            return None

    def _release_stuck(self, future):
        if future.cancel():
            return
        with self._lock:
            if not self._own_executor:
                self._stuck.append(future)
                return
            stuck, self.executor = self.executor, self._new_executor()
        logger.warning("🔄 歌词解析线程被超时任务占用，已切换到新的线程池")
        stuck.shutdown(wait=False)

    def parse(self, lyric, translated=None):
        future = self._submit(lyric, translated)
        if future is None:
            return parse_bilingual(lyric, translated)

        request_id = next(self._ids)
        with self._lock:
            self._pending[request_id] = future
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            self._release_stuck(future)
            logger.error("❌ 歌词解析超时 (%ss)", self.timeout)
            raise LyricParseTimeout(f"歌词解析超时 ({self.timeout}s)", source="lyrics")
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

    def close(self):
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()
        if self._own_executor:
            self.executor.shutdown(wait=False)


class LyricOffsetStore:
    """每首歌的歌词时间校正，保存在本地数据库"""

    def __init__(self, step=None, limit=None):
        self.step = config.LYRIC_OFFSET_STEP if step is None else step
        self.limit = config.LYRIC_OFFSET_LIMIT if limit is None else limit

    def get(self, song_key):
        return database.get_lyric_offset(song_key)

    def set(self, song_key, offset):
        offset = round(max(-self.limit, min(self.limit, float(offset))), 3)
        if offset == 0:
            database.delete_lyric_offset(song_key)
        else:
            database.set_lyric_offset(song_key, offset)
        return offset

    def adjust(self, song_key, steps):
        """按步长调整，steps 为正表示歌词延后"""
        return self.set(song_key, self.get(song_key) + steps * self.step)

    def reset(self, song_key):
        database.delete_lyric_offset(song_key)
        return 0.0
