"""测试共用的假适配器和假 HTTP 响应"""

import json

import requests

from models import Song, SearchResult, PlayUrlResult, LyricResult


def make_song(id, name, artist=("未知艺术家",), album="未知专辑", source="netease", duration=None):
    return Song(id=str(id), name=name, artist=tuple(artist), album=album, source=source,
                lyric_id=str(id), duration=duration)


class FakeResponse:

    def __init__(self, payload=None, status_code=200, text=None, headers=None, chunks=None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")
        self.headers = headers or {}
        self._chunks = chunks or []
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    """
    按 URL 前缀返回预设响应；值可以是 FakeResponse、异常实例或它们的列表（依次返回）
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.headers = {}

    def _respond(self, url, params):
        self.calls.append((url, dict(params or {})))
        for prefix, response in self.routes.items():
            if url.startswith(prefix):
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                if isinstance(response, Exception):
                    raise response
                return response
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        return self._respond(url, params)

    def post(self, url, params=None, data=None, headers=None, timeout=None, **kwargs):
        return self._respond(url, params)


class FakeAdapter:
    """
    满足适配器接口的假实现：
    play_urls 为 {quality: url}，不在其中的音质返回 error 对应的失败结果
    """

    proxy_platform = None

    def __init__(self, source_id, songs=None, play_urls=None, error="空URL", error_kind="empty",
                 lyric="", translated=""):
        self.id = source_id
        self.songs = list(songs or [])
        self.play_urls = dict(play_urls or {})
        self.error = error
        self.error_kind = error_kind
        self.lyric = lyric
        self.translated = translated
        self.search_calls = []
        self.play_calls = []

    def search(self, keyword, limit=30, page=1, type=0):
        self.search_calls.append(keyword)
        songs = [s for s in self.songs if keyword in s.name or keyword in " ".join(s.artist)]
        return SearchResult(songs=songs[:limit], total=len(songs), from_source=self.id)

    def get_play_url(self, song, quality):
        self.play_calls.append((song.id, quality))
        url = self.play_urls.get(quality)
        if url:
            return PlayUrlResult(url=url, bitrate_label=quality, quality=quality, used_source=self.id)
        return PlayUrlResult.failure(self.error, kind=self.error_kind, quality=quality)

    def get_lyric(self, song):
        return LyricResult(lyric=self.lyric, translated=self.translated, from_source=self.id)
