import logging
import re

import requests

import config
from errors import UpstreamUnavailable, UpstreamTimeout, EmptyPayload
from models import PlayUrlResult, LyricResult
from .base import SourceAdapter, MirrorPool

logger = logging.getLogger(__name__)

# 宝塔 WAF 的放行参数，页面挑战时会下发新值
current_btwaf = "81051400"


def smart_request(session, url, params, timeout):
    """
    GD 音乐台请求：被 WAF 拦截时从挑战页提取新的 btwaf 值重试一次
    """
    global current_btwaf
    params = dict(params)
    params["btwaf"] = current_btwaf
    try:
        resp = session.get(url, params=params, timeout=timeout)
    except requests.Timeout as e:
        raise UpstreamTimeout(f"请求超时 timeout: {e}", source="gdstudio")
    except requests.RequestException as e:
        raise UpstreamUnavailable(f"网络请求异常: {e}", source="gdstudio")

    if resp.status_code >= 400:
        raise UpstreamUnavailable(f"HTTP {resp.status_code}", source="gdstudio")
    try:
        return resp.json()
    except ValueError:
        pass

    match = re.search(r"btwaf=(\d+)", resp.text or "")
    if not match:
        raise EmptyPayload("响应不是有效的 JSON", source="gdstudio")

    current_btwaf = match.group(1)
    params["btwaf"] = current_btwaf
    logger.info("🔑 [gdstudio] 更新 btwaf=%s 后重试", current_btwaf)
    try:
        return session.get(url, params=params, timeout=timeout).json()
    except requests.RequestException as e:
        raise UpstreamUnavailable(f"网络请求异常: {e}", source="gdstudio")
    except ValueError:
        raise EmptyPayload("WAF 重试后仍不是 JSON", source="gdstudio")


def extract_song_list(data):
    """GD 接口及其兼容实现返回的列表可能直接是数组，也可能包在 data/songs/result/list 里"""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if data.get("error"):
            raise UpstreamUnavailable(str(data["error"]), source="gdstudio")
        for key in ("data", "songs", "result", "list"):
            if isinstance(data.get(key), list):
                return data[key]
        raise EmptyPayload(f"未找到歌曲数组，可用字段: {', '.join(data.keys())}", source="gdstudio")
    raise EmptyPayload("返回数据既不是数组也不是对象", source="gdstudio")


class GdstudioAdapter(SourceAdapter):
    """
    GD 音乐台聚合接口，通过 source 参数访问不同平台
    """
    name = "GD音乐台"
    referer = "https://music-api.gdstudio.xyz/"

    def __init__(self, platform="netease", adapter_id=None, hosts=None, session=None, timeout=None):
        self.platform = platform
        self.id = adapter_id or platform
        super().__init__(session=session, timeout=timeout)
        self.mirrors = MirrorPool(hosts or config.GDSTUDIO_HOSTS, name="gdstudio")

    def _call(self, params):
        return self.mirrors.call(lambda host: smart_request(self.session, host, params, self.timeout))

    def _search(self, keyword, limit, page):
        data = self._call({
            "types": "search", "source": self.platform,
            "name": keyword, "count": limit, "pages": page,
        })
        songs = extract_song_list(data)
        return songs, len(songs)

    def normalize(self, raw):
        return self.make_song(
            id=raw.get("id") or raw.get("url_id") or raw.get("lyric_id"),
            name=raw.get("name"),
            artist=raw.get("artist"),
            album=raw.get("album"),
            source=self.platform,
            pic_id=raw.get("pic_id"),
            lyric_id=raw.get("lyric_id"),
        )

    def is_playable(self, raw):
        # QQ 音乐的 switch 位：第 0 位可播放，第 13 位可试听
        switch = raw.get("switch")
        if not switch:
            return True
        try:
            flags = bin(int(switch))[2:][:-1][::-1]
        except (TypeError, ValueError):
            return True
        play_flag = flags[0] if len(flags) > 0 else "0"
        try_flag = flags[13] if len(flags) > 13 else "0"
        return play_flag == "1" or try_flag == "1"

    def _play_url(self, song, quality):
        data = self._call({"types": "url", "source": self.platform, "id": song.id, "br": quality})
        if not isinstance(data, dict):
            raise EmptyPayload("播放链接响应格式不正确", source=self.id)
        url = data.get("url") or ""
        if not url:
            return PlayUrlResult.failure(data.get("error") or data.get("msg") or "空URL",
                                         kind="empty", quality=quality)
        return PlayUrlResult(url=url, bitrate_label=str(data.get("br") or quality),
                             quality=quality, used_source=self.platform)

    def _lyric(self, song):
        data = self._call({"types": "lyric", "source": self.platform, "id": song.lyric_id or song.id})
        if not isinstance(data, dict):
            raise EmptyPayload("歌词响应格式不正确", source=self.id)
        return LyricResult(lyric=data.get("lyric") or "", translated=data.get("tlyric") or "",
                           from_source=self.id)
