import pytest

from relevance import (
    calculate_relevance_score,
    deduplicate_songs,
    extract_initials,
    filter_and_rank,
    levenshtein,
    similarity,
)
from tests.support.stubs import make_song


@pytest.mark.unit
def test_levenshtein_and_similarity():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert similarity("ABC", "abc") == 1.0
    assert similarity("", "abc") == 0.0
    assert similarity("abcd", "abce") == pytest.approx(0.75)
    assert similarity("晴天", "晴天了") == pytest.approx(2 / 3)


@pytest.mark.unit
def test_exact_name_and_artist_scores():
    song = make_song("1", "Yellow", ["Coldplay"], album="Parachutes")
    assert calculate_relevance_score(song, "yellow") >= 50
    assert calculate_relevance_score(song, "coldplay") >= 40


@pytest.mark.unit
def test_artist_exact_match_keeps_song_at_default_threshold():
    song = make_song("1", "晴天", ["周杰伦"], album="叶惠美")
    score = calculate_relevance_score(song, "周杰伦")
    # 歌手完全匹配 40 分，歌名无相似度
    assert score == 40
    assert filter_and_rank([song], "周杰伦") == [song]


@pytest.mark.unit
def test_unrelated_song_is_excluded():
    song = make_song("9", "Hello", ["Adele"], album="25")
    assert calculate_relevance_score(song, "周杰伦") < 30
    assert filter_and_rank([song], "周杰伦") == []


@pytest.mark.unit
def test_name_containment_either_direction():
    song = make_song("1", "稻香 (Live)", ["周杰伦"])
    assert calculate_relevance_score(song, "稻香") >= 40
    short = make_song("2", "稻香", ["周杰伦"])
    assert calculate_relevance_score(short, "稻香 live") >= 40


@pytest.mark.unit
def test_album_and_initials_bonus():
    assert extract_initials("JJ Lin 林俊杰") == "jjlin"
    song = make_song("1", "江南", ["JJ Lin"], album="第二天堂")
    base = make_song("2", "江南", ["林俊杰"], album="第二天堂")
    assert calculate_relevance_score(song, "jjlin") > calculate_relevance_score(base, "jjlin")
    with_album = make_song("3", "Intro", ["Nobody"], album="Greatest Hits of jjlin")
    without_album = make_song("4", "Intro", ["Nobody"], album="Other")
    assert (calculate_relevance_score(with_album, "jjlin")
            - calculate_relevance_score(without_album, "jjlin")) == 10


@pytest.mark.unit
def test_score_is_capped_at_100():
    song = make_song("1", "abc", ["abc"], album="abc")
    assert calculate_relevance_score(song, "abc") == 100


@pytest.mark.unit
def test_deduplicate_by_catalog_id_first_wins():
    first = make_song("42", "Song", ["Artist"])
    second = make_song("42", "SONG", ["ARTIST"])
    other_source = make_song("42", "Song", ["Artist"], source="kugou")
    assert deduplicate_songs([first, second, other_source]) == [first, other_source]


@pytest.mark.unit
def test_deduplicate_without_id_uses_name_and_artist():
    a = make_song("", "Song", ["Artist"])
    b = make_song("", "song", ["artist"])
    assert deduplicate_songs([a, b]) == [a]


@pytest.mark.unit
def test_filter_and_rank_orders_by_score_and_is_stable():
    keyword = "晴天"
    exact_a = make_song("1", "晴天", ["周杰伦"])
    partial = make_song("2", "晴天娃娃", ["某人"])
    exact_b = make_song("3", "晴天", ["别人"])
    ranked = filter_and_rank([partial, exact_a, exact_b], keyword)
    assert ranked[0] is exact_a
    assert ranked[1] is exact_b
    assert ranked[2] is partial


@pytest.mark.unit
def test_filter_and_rank_respects_limits_and_is_deterministic():
    songs = [make_song(str(i), f"love song {i}", ["Band"]) for i in range(30)]
    songs.append(make_song("x", "zzzz", ["qqqq"]))
    first = filter_and_rank(songs, "love", min_score=30, max_results=10)
    second = filter_and_rank(songs, "love", min_score=30, max_results=10)
    assert len(first) == 10
    assert first == second
    assert all(calculate_relevance_score(s, "love") >= 30 for s in first)


@pytest.mark.unit
def test_filter_and_rank_empty_input():
    assert filter_and_rank([], "anything") == []
