"""
歌曲与结果数据模型
"""
import math
import time
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Tuple

UNKNOWN_ARTIST = "未知艺术家"
UNKNOWN_ALBUM = "未知专辑"


@dataclass(frozen=True)
class Song:
    """标准化后的歌曲，由适配器构造，之后只读"""
    id: str
    name: str
    artist: Tuple[str, ...] = (UNKNOWN_ARTIST,)
    album: str = UNKNOWN_ALBUM
    source: str = "netease"
    pic_id: str = ""
    lyric_id: str = ""
    duration: Optional[float] = None
    fee: Optional[int] = None

    @property
    def key(self):
        """跨源唯一标识，用于歌词偏移等按歌曲存储的数据"""
        return f"{self.source}:{self.id}"

    @property
    def artist_text(self):
        return " / ".join(self.artist)

    def to_dict(self):
        data = asdict(self)
        data["artist"] = list(self.artist)
        return data

    @classmethod
    def from_dict(cls, data):
        """从前端回传的 JSON 重建歌曲（artist 可能是字符串或列表）"""
        artist = data.get("artist")
        if isinstance(artist, str):
            artists = (artist,) if artist.strip() else (UNKNOWN_ARTIST,)
        elif isinstance(artist, (list, tuple)):
            artists = tuple(str(a) for a in artist if a) or (UNKNOWN_ARTIST,)
        else:
            artists = (UNKNOWN_ARTIST,)
        try:
            duration = float(data.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0
        # 无效时长按未知处理
        if not (duration > 0 and math.isfinite(duration)):
            duration = None
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            artist=artists,
            album=str(data.get("album") or UNKNOWN_ALBUM),
            source=str(data.get("source") or "netease"),
            pic_id=str(data.get("pic_id") or ""),
            lyric_id=str(data.get("lyric_id") or data.get("id") or ""),
            duration=duration,
            fee=data.get("fee"),
        )


@dataclass
class SearchResult:
    songs: List[Song] = field(default_factory=list)
    total: int = 0
    from_source: str = ""

    def to_dict(self):
        return {
            "songs": [s.to_dict() for s in self.songs],
            "total": self.total,
            "fromSource": self.from_source,
        }


@dataclass
class PlayUrlResult:
    """url 为空即错误哨兵，error / error_kind 说明原因"""
    url: str = ""
    bitrate_label: str = ""
    quality: str = ""
    used_source: Optional[str] = None
    error: str = ""
    error_kind: str = ""

    @property
    def ok(self):
        return bool(self.url)

    @classmethod
    def failure(cls, error, kind="upstream", quality=""):
        return cls(url="", quality=quality, error=str(error), error_kind=kind)


@dataclass
class QualityAttemptResult:
    url_data: Optional[PlayUrlResult] = None
    success_quality: str = ""
    last_error: str = ""
    used_fallback: bool = False


@dataclass
class PlaybackResult:
    url: str = ""
    success_quality: str = ""
    used_fallback: bool = False
    used_source: str = ""
    bitrate_label: str = ""
    error: str = ""
    message: str = ""
    # 代理改写前的上游地址，只在服务端使用（探测时长等）
    source_url: str = ""
    song: Optional[Song] = None

    @property
    def ok(self):
        return bool(self.url)

    def to_dict(self):
        data = {
            "url": self.url,
            "quality": self.success_quality,
            "br": self.bitrate_label,
            "usedFallback": self.used_fallback,
            "fromSource": self.used_source,
        }
        if not self.ok:
            data["error"] = self.error
            data["message"] = self.message
        return data


@dataclass
class LyricResult:
    lyric: str = ""
    translated: str = ""
    from_source: str = ""


@dataclass(frozen=True)
class LyricLine:
    time: float
    text: str
    translation: Optional[str] = None

    def to_dict(self):
        data = {"time": round(self.time, 3), "text": self.text}
        if self.translation:
            data["translation"] = self.translation
        return data


@dataclass(frozen=True)
class SearchHistoryItem:
    keyword: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
