"""
音乐源适配器基类与公共请求工具

每个上游目录一个适配器，对外统一三个接口：
    search(keyword, limit) -> SearchResult
    get_play_url(song, quality) -> PlayUrlResult
    get_lyric(song) -> LyricResult
这三个接口不会抛异常：上游失败统一转换成空结果 / 错误哨兵，
编排层可以直接尝试下一个源。
"""
import logging
import threading

import requests

import config
from errors import (MusicApiError, UpstreamUnavailable, UpstreamTimeout,
                    EmptyPayload, PlaybackRestricted)
from models import (Song, SearchResult, PlayUrlResult, LyricResult,
                    UNKNOWN_ARTIST, UNKNOWN_ALBUM)

logger = logging.getLogger(__name__)

# 上游返回结构不符合预期时可能出现的异常
PAYLOAD_ERRORS = (ValueError, KeyError, TypeError, AttributeError, IndexError)


def build_session(referer=None, origin=None):
    session = requests.Session()
    session.headers.update({"User-Agent": config.USER_AGENT})
    if referer:
        session.headers["Referer"] = referer
    if origin:
        session.headers["Origin"] = origin
    return session


def request_json(session, url, params=None, data=None, method="GET",
                 timeout=None, source=None, headers=None):
    """发起请求并解析 JSON，网络 / 状态码 / 解析错误转换成 MusicApiError"""
    timeout = timeout or config.REQUEST_TIMEOUT
    try:
        if method == "POST":
            resp = session.post(url, params=params, data=data, headers=headers, timeout=timeout)
        else:
            resp = session.get(url, params=params, headers=headers, timeout=timeout)
    except requests.Timeout as e:
        raise UpstreamTimeout(f"请求超时 timeout: {e}", source=source)
    except requests.RequestException as e:
        raise UpstreamUnavailable(f"网络请求异常: {e}", source=source)

    if resp.status_code >= 400:
        raise UpstreamUnavailable(f"HTTP {resp.status_code}", source=source)
    try:
        return resp.json()
    except ValueError:
        raise EmptyPayload("响应不是有效的 JSON", source=source)


class MirrorPool:
    """
    双(多)镜像切换：记住上一次可用的主机，失败时轮换到下一个
    """

    def __init__(self, hosts, name=""):
        if not hosts:
            raise ValueError("MirrorPool 至少需要一个主机")
        self.hosts = list(hosts)
        self.name = name
        self._index = 0
        self._lock = threading.Lock()

    @property
    def current(self):
        return self.hosts[self._index]

    def ordered(self):
        start = self._index
        return [self.hosts[(start + i) % len(self.hosts)] for i in range(len(self.hosts))]

    def call(self, func):
        """依次对每个主机调用 func(host)，返回第一个成功的结果"""
        last_error = None
        for host in self.ordered():
            try:
                result = func(host)
            except PlaybackRestricted:
                raise
            except MusicApiError as e:
                last_error = e
                logger.warning("⚠️ [%s] 镜像 %s 失败: %s", self.name, host, e)
                continue
            with self._lock:
                new_index = self.hosts.index(host)
                if new_index != self._index:
                    logger.info("🔀 [%s] 切换镜像 -> %s", self.name, host)
                self._index = new_index
            return result
        raise last_error


def normalize_artists(value):
    """
    把各种上游 artist 结构统一成 tuple[str]：
    字符串 / 字符串列表 / {name: ...} 列表 / {name: ...}，其余情况给占位符
    """
    names = []
    if value is None:
        pass
    elif isinstance(value, str):
        names = [value.strip()]
    elif isinstance(value, dict):
        names = [str(value.get("name") or "").strip()]
    elif isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str):
                names.append(item.strip())
            elif isinstance(item, dict):
                names.append(str(item.get("name") or "").strip())
            elif item is not None:
                names.append(str(item).strip())
    else:
        names = [str(value).strip()]

    names = [n for n in names if n]
    return tuple(names) if names else (UNKNOWN_ARTIST,)


def normalize_album(value):
    if isinstance(value, dict):
        value = value.get("name")
    value = str(value).strip() if value is not None else ""
    return value or UNKNOWN_ALBUM


def normalize_text(value):
    return str(value).strip() if value is not None else ""


class SourceAdapter:
    """适配器基类，子类实现 _search / _play_url / _lyric 和 normalize"""

    id = ""
    name = ""
    referer = None
    origin = None
    # 需要专用音频代理的平台名，解析出的播放地址按这个平台走代理
    proxy_platform = None
    supported_qualities = config.QUALITY_FALLBACK
    supported_types = (0,)

    def __init__(self, session=None, timeout=None):
        self.session = session or build_session(self.referer, self.origin)
        self.timeout = timeout or config.REQUEST_TIMEOUT

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}>"

    def _get(self, url, params=None, **kwargs):
        return request_json(self.session, url, params=params, timeout=self.timeout,
                            source=self.id, **kwargs)

    # --- 子类实现 ---

    def _search(self, keyword, limit, page):
        """返回 (原始歌曲列表, 总数)"""
        raise NotImplementedError

    def _play_url(self, song, quality):
        raise NotImplementedError

    def _lyric(self, song):
        return LyricResult(from_source=self.id)

    def normalize(self, raw):
        raise NotImplementedError

    def is_playable(self, raw):
        return True

    def _normalize_item(self, raw):
        """单条结果格式异常只跳过这一条，不影响整页"""
        if not isinstance(raw, dict):
            return None
        try:
            if not self.is_playable(raw):
                return None
            song = self.normalize(raw)
        except PAYLOAD_ERRORS as e:
            logger.warning("⚠️ [%s] 跳过格式异常的条目: %r", self.id, e)
            return None
        return song if song.name and song.id else None

    # --- 对外接口 ---

    def search(self, keyword, limit=30, page=1, type=0):
        if type not in self.supported_types:
            return SearchResult(from_source=self.id)
        try:
            raws, total = self._search(keyword, limit, page)
        except MusicApiError as e:
            logger.warning("⚠️ [%s] 搜索失败: %s", self.id, e)
            return SearchResult(from_source=self.id)
        except requests.RequestException as e:
            logger.warning("⚠️ [%s] 搜索网络异常: %s", self.id, e)
            return SearchResult(from_source=self.id)
        except PAYLOAD_ERRORS as e:
            logger.warning("⚠️ [%s] 搜索结果格式异常: %r", self.id, e)
            return SearchResult(from_source=self.id)

        songs = []
        for raw in raws or []:
            song = self._normalize_item(raw)
            if song is not None:
                songs.append(song)
        songs = songs[:limit]
        return SearchResult(songs=songs, total=max(total or 0, len(songs)), from_source=self.id)

    def get_play_url(self, song, quality):
        if quality not in self.supported_qualities:
            return PlayUrlResult.failure(f"{self.id} 不支持音质 {quality}", kind="empty", quality=quality)
        try:
            result = self._play_url(song, quality)
        except MusicApiError as e:
            logger.info("⚠️ [%s] 获取播放链接失败 (%s, %s): %s", self.id, song.name, quality, e)
            return PlayUrlResult.failure(e, kind=e.kind, quality=quality)
        except requests.RequestException as e:
            return PlayUrlResult.failure(f"网络请求异常: {e}", quality=quality)
        except PAYLOAD_ERRORS as e:
            return PlayUrlResult.failure(f"响应格式异常: {e!r}", kind="empty", quality=quality)

        if not result.url:
            return PlayUrlResult.failure(result.error or "空URL", kind=result.error_kind or "empty",
                                         quality=quality)
        if not result.used_source:
            result.used_source = self.id
        return result

    def get_lyric(self, song):
        try:
            return self._lyric(song)
        except MusicApiError as e:
            logger.info("⚠️ [%s] 获取歌词失败: %s", self.id, e)
        except requests.RequestException as e:
            logger.info("⚠️ [%s] 获取歌词网络异常: %s", self.id, e)
        except PAYLOAD_ERRORS as e:
            logger.info("⚠️ [%s] 歌词格式异常: %r", self.id, e)
        return LyricResult(from_source=self.id)

    def make_song(self, **fields):
        fields.setdefault("source", self.id)
        fields["artist"] = normalize_artists(fields.get("artist"))
        fields["album"] = normalize_album(fields.get("album"))
        fields["name"] = normalize_text(fields.get("name"))
        fields["id"] = normalize_text(fields.get("id"))
        fields["lyric_id"] = normalize_text(fields.get("lyric_id")) or fields["id"]
        fields["pic_id"] = normalize_text(fields.get("pic_id"))
        return Song(**fields)
