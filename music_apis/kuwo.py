import config
from errors import EmptyPayload
from models import PlayUrlResult, LyricResult
from .base import SourceAdapter

# 音质 -> kw.php 的 level 参数
QUALITY_LEVELS = {
    "128": "standard",
    "192": "standard",
    "320": "exhigh",
    "740": "lossless",
    "999": "hires",
}


class KuwoAdapter(SourceAdapter):
    """
    酷我音乐，走 qqmp3.vip 的解析接口
    搜索: {base}/songs.php?type=search&keyword={歌名}
    解析: {base}/kw.php?rid={id}&type=json&level=exhigh&lrc=true
    """
    id = "kuwo"
    name = "酷我音乐"
    referer = "https://www.kuwo.cn/"

    def __init__(self, base_url=None, session=None, timeout=None):
        super().__init__(session=session, timeout=timeout)
        self.base_url = (base_url or config.KUWO_API_BASE).rstrip("/")

    def _search(self, keyword, limit, page):
        data = self._get(f"{self.base_url}/songs.php",
                         {"type": "search", "keyword": keyword, "page": page, "limit": limit})
        # 结构: data['data'][i] -> rid, name, artist
        if not isinstance(data, dict) or data.get("code") != 200:
            raise EmptyPayload(f"搜索返回异常: {str(data)[:100]}", source=self.id)
        songs = data.get("data") or []
        return songs, len(songs)

    def normalize(self, raw):
        duration = raw.get("duration")
        return self.make_song(
            id=raw.get("rid"),
            name=raw.get("name"),
            artist=raw.get("artist"),
            album=raw.get("album"),
            pic_id=raw.get("pic") or "",
            lyric_id=raw.get("rid"),
            duration=float(duration) if duration else None,
        )

    def _song_data(self, rid, level, lrc=False):
        params = {"rid": rid, "type": "json", "level": level}
        if lrc:
            params["lrc"] = "true"
        data = self._get(f"{self.base_url}/kw.php", params)
        if not isinstance(data, dict) or data.get("code") != 200 or not data.get("data"):
            raise EmptyPayload(f"解析返回异常: {str(data)[:100]}", source=self.id)
        return data["data"]

    def _play_url(self, song, quality):
        data = self._song_data(song.id, QUALITY_LEVELS[quality])
        play_url = data.get("url") or ""
        # 简单的有效性校验
        if not play_url.startswith("http"):
            return PlayUrlResult.failure("空URL", kind="empty", quality=quality)
        return PlayUrlResult(url=play_url, bitrate_label=str(data.get("bitrate") or quality),
                             quality=quality)

    def _lyric(self, song):
        data = self._song_data(song.lyric_id or song.id, "standard", lrc=True)
        return LyricResult(lyric=data.get("lrc") or "", from_source=self.id)
