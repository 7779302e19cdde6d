"""
搜索结果智能过滤和去重

纯函数，没有 I/O：相同的 (songs, keyword) 永远得到相同的输出顺序。
"""
import re

from rapidfuzz.distance import Levenshtein

import config

_LATIN = re.compile(r"[a-zA-Z]")


def levenshtein(s1, s2):
    """编辑距离"""
    return Levenshtein.distance(s1, s2)


def similarity(str1, str2):
    """1 - 编辑距离 / 较长字符串长度，范围 [0, 1]"""
    s1 = str1.lower().strip()
    s2 = str2.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return Levenshtein.normalized_similarity(s1, s2)


def normalize_artist(artist):
    """artist 统一成小写字符串，多个歌手用空格连接"""
    if not artist:
        return ""
    if isinstance(artist, (list, tuple)):
        return " ".join(str(a) for a in artist).lower().strip()
    return str(artist).lower().strip()


def extract_initials(text):
    """提取英文字母（目前没有拼音库，中文字符直接忽略）"""
    return "".join(_LATIN.findall(text)).lower()


def _contains(a, b):
    return bool(a) and bool(b) and (a in b or b in a)


def calculate_relevance_score(song, keyword, weights=None):
    """计算搜索相关性分数（0-100）"""
    w = weights or config.RELEVANCE_WEIGHTS
    term = (keyword or "").lower().strip()
    name = (song.name or "").lower().strip()
    artist = normalize_artist(song.artist)
    album = (song.album or "").lower().strip()

    score = 0.0

    # 1. 歌曲名
    if name == term:
        score += w["name_exact"]
    elif _contains(name, term):
        score += w["name_contains"]
    else:
        score += w["name_similarity"] * similarity(name, term)

    # 2. 歌手名
    if artist == term:
        score += w["artist_exact"]
    elif _contains(artist, term):
        score += w["artist_contains"]
    else:
        score += w["artist_similarity"] * similarity(artist, term)

    # 3. 专辑名（只看包含，不给相似度分）
    if term and term in album:
        score += w["album_contains"]

    # 4. 英文缩写
    initials = extract_initials(artist)
    if initials and initials == term:
        score += w["initials"]

    return min(100, int(score + 0.5))


def song_identity(song):
    if song.id:
        return f"{song.source}:{song.id}"
    return f"{song.name}_{normalize_artist(song.artist)}".lower().strip()


def deduplicate_songs(songs):
    """去重，保留第一次出现的歌曲"""
    seen = set()
    unique = []
    for song in songs:
        key = song_identity(song)
        if key in seen:
            continue
        seen.add(key)
        unique.append(song)
    return unique


def filter_and_rank(songs, keyword, min_score=None, max_results=None, weights=None):
    """
    去重 -> 打分 -> 丢弃低分 -> 按分数降序（同分保持原顺序）-> 截断
    """
    if not songs:
        return []
    min_score = config.RELEVANCE_MIN_SCORE if min_score is None else min_score
    max_results = config.RELEVANCE_MAX_RESULTS if max_results is None else max_results

    scored = [(calculate_relevance_score(song, keyword, weights), song)
              for song in deduplicate_songs(songs)]
    scored = [item for item in scored if item[0] >= min_score]
    # sorted 是稳定排序
    scored = sorted(scored, key=lambda item: item[0], reverse=True)
    return [song for _, song in scored[:max_results]]
