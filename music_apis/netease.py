"""
网易云音乐（NeteaseCloudMusicApi 公共镜像）
"""
import config
from errors import EmptyPayload, PlaybackRestricted
from models import PlayUrlResult, LyricResult
from .base import SourceAdapter, MirrorPool

# 音质 -> NeteaseCloudMusicApi 的 level 参数
QUALITY_LEVELS = {
    "128": "standard",
    "192": "higher",
    "320": "exhigh",
    "740": "lossless",
    "999": "hires",
}

# fee: 0=免费, 1=VIP, 4=付费专辑, 8=非会员可免费播放低音质
PLAYABLE_FEES = (0, 8)


class NeteaseAdapter(SourceAdapter):
    id = "netease"
    name = "网易云音乐"
    referer = "https://music.163.com/"

    def __init__(self, hosts=None, session=None, timeout=None):
        super().__init__(session=session, timeout=timeout)
        self.mirrors = MirrorPool(hosts or config.NETEASE_API_HOSTS, name="netease")

    def _api(self, path, params):
        return self.mirrors.call(lambda host: self._get(host.rstrip("/") + path, params))

    def _search(self, keyword, limit, page):
        data = self._api("/cloudsearch", {
            "keywords": keyword, "limit": limit,
            "offset": max(page - 1, 0) * limit, "type": 1,
        })
        if not isinstance(data, dict) or data.get("code") not in (200, None):
            raise EmptyPayload(f"搜索返回 code={data.get('code') if isinstance(data, dict) else None}",
                               source=self.id)
        result = data.get("result") or {}
        songs = result.get("songs") or []
        return songs, result.get("songCount") or len(songs)

    def is_playable(self, raw):
        fee = raw.get("fee")
        if fee is None:
            return True
        return fee in PLAYABLE_FEES

    def normalize(self, raw):
        album = raw.get("al") or raw.get("album") or {}
        duration = raw.get("dt") or raw.get("duration")
        return self.make_song(
            id=raw.get("id"),
            name=raw.get("name"),
            artist=raw.get("ar") or raw.get("artists"),
            album=album,
            pic_id=album.get("pic_str") or album.get("picStr") or album.get("picUrl") or album.get("pic") or "",
            lyric_id=raw.get("id"),
            duration=duration / 1000.0 if duration else None,
            fee=raw.get("fee"),
        )

    def _play_url(self, song, quality):
        data = self._api("/song/url/v1", {"id": song.id, "level": QUALITY_LEVELS[quality]})
        items = data.get("data") if isinstance(data, dict) else None
        if not items:
            raise EmptyPayload("播放链接响应缺少 data", source=self.id)
        item = items[0]
        url = item.get("url")
        if not url:
            if item.get("fee") in (1, 4) or item.get("code") == 404:
                raise PlaybackRestricted("版权保护或需要付费", source=self.id)
            return PlayUrlResult.failure("空URL", kind="empty", quality=quality)
        if item.get("freeTrialInfo"):
            raise PlaybackRestricted("仅提供试听片段，版权受限", source=self.id)
        br = item.get("br")
        return PlayUrlResult(url=url, bitrate_label=f"{br // 1000}kbps" if br else quality,
                             quality=quality)

    def _lyric(self, song):
        data = self._api("/lyric", {"id": song.lyric_id or song.id})
        if not isinstance(data, dict):
            raise EmptyPayload("歌词响应格式不正确", source=self.id)
        return LyricResult(
            lyric=(data.get("lrc") or {}).get("lyric") or "",
            translated=(data.get("tlyric") or {}).get("lyric") or "",
            from_source=self.id,
        )
