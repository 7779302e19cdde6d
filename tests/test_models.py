import pytest

from models import UNKNOWN_ARTIST, Song


@pytest.mark.unit
@pytest.mark.parametrize("value,expected", [
    ("abc", None),
    ({"x": 1}, None),
    ("-5", None),
    ("nan", None),
    ("inf", None),
    (0, None),
    ("269.5", 269.5),
    (180, 180.0),
])
def test_from_dict_coerces_duration(value, expected):
    song = Song.from_dict({"id": "1", "name": "晴天", "duration": value})
    assert song.duration == expected


@pytest.mark.unit
def test_from_dict_fills_defaults():
    song = Song.from_dict({"id": 7, "name": "晴天", "artist": ""})
    assert song.id == "7"
    assert song.lyric_id == "7"
    assert song.artist == (UNKNOWN_ARTIST,)
    assert song.source == "netease"
