import os

# === 核心配置 ===
# 全部支持环境变量覆盖，未设置时使用下面的默认值

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name, default):
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


# --- 存储 ---
DB_FILE = os.getenv("MUSIC_DB_FILE", os.path.join(BASE_DIR, "music_player.db"))

# --- 服务 ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))

# --- 上游 API ---
GDSTUDIO_HOSTS = _env_list("GDSTUDIO_HOSTS", [
    "https://music-api.gdstudio.xyz/api.php",
    "https://music-api.gdstudio.org/api.php",
])
NETEASE_API_HOSTS = _env_list("NETEASE_API_HOSTS", [
    "https://netease-cloud-music-api-sigma-five.vercel.app",
    "https://api-enhanced-three-indol.vercel.app",
])
BILIBILI_API_BASE = os.getenv("BILIBILI_API_BASE", "https://api.cenguigui.cn/api/bilibili/bilibili.php")
KUWO_API_BASE = os.getenv("KUWO_API_BASE", "https://api.qqmp3.vip/api")

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))
USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")

# 按优先级排序的音乐源，聚合搜索与备用源切换都按这个顺序
MUSIC_SOURCES = _env_list("MUSIC_SOURCES", ["netease", "tencent", "kugou", "kuwo", "bilibili"])
DEFAULT_SOURCE = os.getenv("DEFAULT_SOURCE", "netease")
SOURCE_NAMES = {
    "netease": "网易云音乐",
    "tencent": "QQ音乐",
    "kugou": "酷狗音乐",
    "kuwo": "酷我音乐",
    "bilibili": "Bilibili音乐",
    "gdstudio": "GD音乐台",
}

# --- 跨域代理 ---
USE_PROXY = _env_bool("USE_PROXY", True)
AUTO_HTTPS = _env_bool("AUTO_HTTPS", True)
API_PROXY_PATH = "/proxy/api"
AUDIO_PROXY_PATH = "/proxy/audio"
# 拥有专用代理的平台 -> 代理路径
PLATFORM_PROXIES = {
    "bilibili": "/proxy/bilibili",
}
# 专用代理转发时注入的 Referer / Origin
PLATFORM_REFERERS = {
    "bilibili": "https://www.bilibili.com/",
}
# 平台专用代理允许访问的域名
PLATFORM_DOMAINS = {
    "bilibili": ["bilibili.com", "bilivideo.com", "bilivideo.cn", "hdslb.com", "akamaized.net"],
}
PROXY_CHUNK_SIZE = 64 * 1024
PROXY_MAX_REDIRECTS = 5
# 需要走代理的上游域名（目录 API + 音频 CDN），按后缀匹配
PROXY_DOMAINS = _env_list("PROXY_DOMAINS", [
    "music.163.com",
    "music.126.net",
    "music-api.gdstudio.xyz",
    "music-api.gdstudio.org",
    "y.qq.com",
    "stream.qqmusic.qq.com",
    "kuwo.cn",
    "kugou.com",
    "migu.cn",
    "bilibili.com",
    "bilivideo.com",
    "bilivideo.cn",
    "hdslb.com",
])
# 音频代理只接受这些 CDN
AUDIO_PROXY_DOMAINS = _env_list("AUDIO_PROXY_DOMAINS", [
    "music.163.com",
    "music.126.net",
    "y.qq.com",
    "stream.qqmusic.qq.com",
    "kuwo.cn",
    "kugou.com",
    "migu.cn",
    "bilivideo.com",
    "bilivideo.cn",
])
AUDIO_EXTENSIONS = (".mp3", ".m4a", ".flac", ".aac", ".ogg", ".wav", ".ape", ".m4s")
AUDIO_HOST_PATTERNS = (
    r"^m\d*\.music\.126\.net$",
    r"(^|\.)stream\.qqmusic\.qq\.com$",
    r"(^|\.)sycdn\.kuwo\.cn$",
    r"^webfs\.[\w.]*kugou\.com$",
    r"^freetyst\.nf\.migu\.cn$",
    r"(^|\.)bilivideo\.(com|cn)$",
)
# 网易云外链下载地址
OUTER_LINK_PATTERNS = (
    r"music\.163\.com/song/media/outer/url",
)

# --- 搜索 ---
SEARCH_CACHE_SIZE = int(os.getenv("SEARCH_CACHE_SIZE", "100"))
SEARCH_HISTORY_SIZE = int(os.getenv("SEARCH_HISTORY_SIZE", "50"))

# --- 相关性权重（经验值，改动需要配套的测试用例） ---
RELEVANCE_WEIGHTS = {
    "name_exact": 50,
    "name_contains": 40,
    "name_similarity": 30,
    "artist_exact": 40,
    "artist_contains": 35,
    "artist_similarity": 25,
    "album_contains": 10,
    "initials": 15,
}
RELEVANCE_MIN_SCORE = 30
RELEVANCE_MAX_RESULTS = 100

# --- 播放 ---
QUALITY_FALLBACK = ("999", "740", "320", "192", "128")
QUALITY_NAMES = {
    "128": "标准 128K",
    "192": "较高 192K",
    "320": "高品质 320K",
    "740": "无损 FLAC",
    "999": "Hi-Res",
}
DEFAULT_QUALITY = os.getenv("DEFAULT_QUALITY", "320")
ENABLE_SOURCE_FALLBACK = _env_bool("ENABLE_SOURCE_FALLBACK", True)
SOURCE_SWITCH_THRESHOLD = int(os.getenv("SOURCE_SWITCH_THRESHOLD", "2"))
MAX_CONSECUTIVE_FAILURES = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "5"))
# 获取不到时长时的兜底值（秒），防止歌单卡死
DEFAULT_TRACK_DURATION = 210
MONITOR_INTERVAL = float(os.getenv("MONITOR_INTERVAL", "2"))

# --- 歌词 ---
LYRIC_PARSE_TIMEOUT = float(os.getenv("LYRIC_PARSE_TIMEOUT", "5"))
LYRIC_TRANSLATION_TOLERANCE = 0.3
LYRIC_OFFSET_STEP = 0.5
LYRIC_OFFSET_LIMIT = 10.0
