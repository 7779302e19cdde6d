"""
Bilibili 音频（第三方解析接口）

B 站的音频流校验 Referer，播放地址必须走 /proxy/bilibili。
"""
import config
from errors import EmptyPayload
from models import PlayUrlResult
from .base import SourceAdapter

QUALITY_LEVELS = {
    "128": "low",
    "192": "standard",
    "320": "high",
    "740": "super",
    "999": "super",
}


def parse_duration(value):
    """时长转秒数，支持 "4:29"、"1:02:03" 和纯数字"""
    if isinstance(value, str) and ":" in value:
        seconds = 0
        for part in value.strip().split(":"):
            seconds = seconds * 60 + int(part or 0)
        return float(seconds)
    return float(value) if value else None


class BilibiliAdapter(SourceAdapter):
    id = "bilibili"
    name = "Bilibili"
    referer = "https://www.bilibili.com/"
    proxy_platform = "bilibili"

    def __init__(self, base_url=None, session=None, timeout=None):
        super().__init__(session=session, timeout=timeout)
        self.base_url = base_url or config.BILIBILI_API_BASE

    def _api(self, params):
        data = self._get(self.base_url, params)
        if not isinstance(data, dict) or data.get("code") != 200:
            raise EmptyPayload(f"接口返回异常: {str(data)[:100]}", source=self.id)
        return data.get("data")

    def _search(self, keyword, limit, page):
        items = self._api({"action": "search", "query": keyword, "page": page, "limit": limit})
        if isinstance(items, dict):
            items = items.get("list") or items.get("result") or []
        items = items or []
        return items, len(items)

    def is_playable(self, raw):
        return bool(raw.get("bvid"))

    def normalize(self, raw):
        duration = parse_duration(raw.get("duration"))
        pic = raw.get("pic") or ""
        if pic.startswith("//"):
            pic = "https:" + pic
        return self.make_song(
            id=raw.get("bvid"),
            name=raw.get("title"),
            artist=raw.get("artist") or raw.get("author"),
            album="Bilibili",
            pic_id=pic,
            lyric_id=raw.get("bvid"),
            duration=duration or None,
        )

    def _play_url(self, song, quality):
        data = self._api({"action": "media", "bvid": song.id, "quality": QUALITY_LEVELS[quality]})
        if isinstance(data, str):
            url = data
        else:
            url = (data or {}).get("url") or (data or {}).get("audio_url") or ""
        if not url:
            return PlayUrlResult.failure("空URL", kind="empty", quality=quality)
        return PlayUrlResult(url=url, bitrate_label=QUALITY_LEVELS[quality], quality=quality)
