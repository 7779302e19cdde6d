from errors import EmptyPayload
from models import PlayUrlResult, LyricResult
from .base import SourceAdapter

SEARCH_URL = "https://songsearch.kugou.com/song_search_v2"
PLAY_INFO_URL = "https://m.kugou.com/app/i/getSongInfo.php"
SONG_DATA_URL = "https://wwwapi.kugou.com/yy/index.php"


class KugouAdapter(SourceAdapter):
    """
    酷狗音乐：歌曲以 FileHash 作为 id
    """
    id = "kugou"
    name = "酷狗音乐"
    referer = "https://www.kugou.com/"
    supported_qualities = ("320", "192", "128")

    def _search(self, keyword, limit, page):
        data = self._get(SEARCH_URL, {"keyword": keyword, "page": page, "pagesize": limit})
        lists = ((data or {}).get("data") or {}).get("lists")
        if lists is None:
            raise EmptyPayload("搜索结果缺少 data.lists", source=self.id)
        return lists, (data.get("data") or {}).get("total") or len(lists)

    def is_playable(self, raw):
        return bool(raw.get("FileHash"))

    def normalize(self, raw):
        singer = raw.get("SingerName") or ""
        # 多歌手用顿号分隔
        artists = [s for s in singer.split("、") if s.strip()] if isinstance(singer, str) else singer
        duration = raw.get("Duration")
        return self.make_song(
            id=raw.get("FileHash"),
            name=raw.get("SongName"),
            artist=artists,
            album=raw.get("AlbumName"),
            pic_id=raw.get("img") or "",
            lyric_id=raw.get("FileHash"),
            duration=float(duration) if duration else None,
        )

    def _play_url(self, song, quality):
        data = self._get(PLAY_INFO_URL, {"cmd": "playInfo", "hash": song.id})
        if not isinstance(data, dict):
            raise EmptyPayload("播放信息格式不正确", source=self.id)
        url = data.get("url") or ""
        if not url:
            return PlayUrlResult.failure(data.get("error") or "空URL", kind="empty", quality=quality)
        return PlayUrlResult(url=url, bitrate_label=f"{data.get('bitRate') or 128}kbps", quality=quality)

    def _lyric(self, song):
        data = self._get(SONG_DATA_URL, {"r": "play/getdata", "hash": song.lyric_id or song.id})
        return LyricResult(lyric=((data or {}).get("data") or {}).get("lyrics") or "",
                           from_source=self.id)
