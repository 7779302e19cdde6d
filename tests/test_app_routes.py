import logging
import threading

import pytest

import app as app_module

SONG = {"id": "1", "name": "晴天", "artist": ["周杰伦"], "album": "叶惠美", "source": "netease"}


def _netease(service):
    return service.adapters["netease"]


@pytest.mark.unit
def test_search_requires_keyword(client):
    resp = client.get("/api/search")
    assert resp.status_code == 400
    assert "keyword" in resp.get_json()["error"]


@pytest.mark.unit
def test_search_rejects_unknown_type(client):
    resp = client.get("/api/search", query_string={"keyword": "晴天", "type": 7})
    assert resp.status_code == 400


@pytest.mark.unit
def test_search_returns_ranked_songs_and_records_history(client):
    resp = client.get("/api/search", query_string={"keyword": "周杰伦"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["fromSource"] == "aggregate"
    assert [s["name"] for s in body["songs"]] == ["晴天", "七里香"]
    assert body["songs"][0]["artist"] == ["周杰伦"]

    history = client.get("/api/history").get_json()
    assert [h["keyword"] for h in history] == ["周杰伦"]
    assert client.get("/api/suggestions", query_string={"prefix": "周"}).get_json() == ["周杰伦"]

    logs = client.get("/api/logs").get_json()
    assert logs[0]["type"] == "搜索"
    assert logs[0]["detail"] == "周杰伦 (源:aggregate)"


@pytest.mark.unit
def test_search_with_explicit_source(client):
    body = client.get("/api/search", query_string={"keyword": "晴天", "source": "kugou"}).get_json()
    assert body["songs"] == []
    assert body["fromSource"] == "kugou"


@pytest.mark.unit
def test_history_delete_endpoints(client):
    client.get("/api/search", query_string={"keyword": "晴天"})
    client.get("/api/search", query_string={"keyword": "七里香"})
    assert client.delete("/api/history/晴天").get_json() == {"success": True}
    assert [h["keyword"] for h in client.get("/api/history").get_json()] == ["七里香"]
    client.delete("/api/history")
    assert client.get("/api/history").get_json() == []


@pytest.mark.unit
def test_play_url_resolves_through_proxy(client, service):
    _netease(service).play_urls = {"320": "http://m7.music.126.net/a.mp3"}
    resp = client.post("/api/play_url", json={"song": SONG, "quality": "320"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["url"].startswith("/proxy/audio?url=")
    assert body["quality"] == "320"
    assert body["usedFallback"] is False
    assert body["fromSource"] == "netease"
    assert body["song"]["id"] == "1"


@pytest.mark.unit
def test_play_url_failure_has_message(client):
    body = client.post("/api/play_url", json={"song": SONG, "quality": "999"}).get_json()
    assert body["url"] == ""
    assert body["message"] == "无法获取音乐链接 (晴天) - 音乐源无此资源"


@pytest.mark.unit
def test_play_url_validates_input(client):
    assert client.post("/api/play_url", json={}).status_code == 400
    assert client.post("/api/play_url", json={"song": {"name": "no id"}}).status_code == 400
    assert client.post("/api/play_url", json={"song": SONG, "quality": "1"}).status_code == 400


@pytest.mark.unit
def test_play_url_uses_quality_preference(client, service):
    _netease(service).play_urls = {"128": "https://example.com/a.mp3"}
    client.post("/api/preferences", json={"quality": "128"})
    body = client.post("/api/play_url", json={"song": SONG}).get_json()
    assert body["quality"] == "128"
    assert _netease(service).play_calls[0] == ("1", "128")


@pytest.mark.unit
def test_lyric_returns_parsed_lines_with_offset(client):
    client.post("/api/lyric_offset", json={"key": "netease:1", "delta": 1})
    body = client.post("/api/lyric", json={"song": SONG}).get_json()
    assert body["fromSource"] == "netease"
    assert body["offset"] == 0.5
    assert body["lines"] == [
        {"time": 1.5, "text": "故事的小黄花"},
        {"time": 4.0, "text": "从出生那年就飘着"},
    ]


@pytest.mark.unit
def test_lyric_for_song_without_lyric_gets_placeholder(client):
    song = dict(SONG, source="kugou")
    body = client.post("/api/lyric", json={"song": song}).get_json()
    assert body["lines"] == [{"time": 0.0, "text": "暂无歌词"}]


@pytest.mark.unit
def test_lyric_offset_endpoints(client):
    assert client.get("/api/lyric_offset").status_code == 400
    assert client.post("/api/lyric_offset", json={"key": "k", "offset": 2.25}).get_json()["offset"] == 2.25
    assert client.get("/api/lyric_offset", query_string={"key": "k"}).get_json()["offset"] == 2.25
    assert client.post("/api/lyric_offset", json={"key": "k", "delta": -2}).get_json()["offset"] == 1.25
    assert client.post("/api/lyric_offset", json={"key": "k", "reset": True}).get_json()["offset"] == 0
    assert client.post("/api/lyric_offset", json={"key": "k", "delta": "abc"}).status_code == 400
    assert client.post("/api/lyric_offset", json={"key": "k"}).status_code == 400


@pytest.mark.unit
def test_preferences(client):
    assert client.get("/api/preferences").get_json() == {"quality": "320", "theme": "auto"}
    body = client.post("/api/preferences", json={"theme": "dark"}).get_json()
    assert body["theme"] == "dark"
    assert client.post("/api/preferences", json={"quality": "64"}).status_code == 400
    assert client.post("/api/preferences", json={"volume": 1}).status_code == 400


@pytest.mark.unit
def test_playlist_routes(client):
    assert client.post("/api/playlists", json={"name": "收藏"}).get_json()["success"] is True
    assert client.post("/api/playlists", json={"name": ""}).status_code == 400
    assert client.post("/api/playlists/收藏/songs", json={"song": SONG}).get_json()["success"] is True

    songs = client.get("/api/playlists/收藏/songs").get_json()
    assert songs[0]["song"]["name"] == "晴天"
    assert client.get("/api/playlists").get_json()[0]["count"] == 1

    assert client.post("/api/playlists/收藏/rename", json={"new_name": "最爱"}).get_json()["success"] is True
    assert client.delete(f"/api/songs/{songs[0]['id']}").get_json()["success"] is True
    assert client.delete("/api/playlists/最爱").get_json()["success"] is True


@pytest.mark.unit
def test_player_routes(client, service):
    _netease(service).play_urls = {"320": "https://example.com/a.mp3"}
    client.post("/api/playlists", json={"name": "收藏"})
    client.post("/api/playlists/收藏/songs", json={"song": SONG})
    client.post("/api/playlists/收藏/songs", json={"song": dict(SONG, id="2", name="七里香")})

    body = client.post("/api/player/start", json={"name": "收藏", "quality": "320"}).get_json()
    assert body["success"] is True
    assert body["status"]["playlist_mode"] is True
    assert body["status"]["current_duration"] == 180

    body = client.post("/api/player/next").get_json()
    assert body["status"]["current_index"] == 1
    body = client.post("/api/player/previous").get_json()
    assert body["status"]["current_index"] == 0

    client.post("/api/player/stop")
    status = client.get("/api/player/status").get_json()
    assert status["playlist_mode"] is False
    assert client.post("/api/player/next").get_json()["success"] is False
    assert client.post("/api/player/shuffle").status_code == 400


@pytest.mark.unit
def test_player_start_with_unknown_playlist(client):
    body = client.post("/api/player/start", json={"name": "不存在"}).get_json()
    assert body["success"] is False


@pytest.mark.unit
def test_stats_merges_service_and_player_status(client):
    client.get("/api/search", query_string={"keyword": "晴天"})
    stats = client.get("/api/stats").get_json()
    assert stats["total_ops"] == 1
    assert stats["search_cache_size"] == 1
    assert stats["proxy"]["enabled"] is True
    assert stats["playlist_mode"] is False


@pytest.mark.unit
def test_clear_logs_route(client):
    client.get("/api/search", query_string={"keyword": "晴天"})
    assert client.post("/api/clear_logs").get_json() == {"success": True}
    assert client.get("/api/logs").get_json() == []


@pytest.mark.unit
def test_background_monitor_ticks_player(service):
    stop_event = threading.Event()
    ticks = []

    def tick():
        ticks.append(1)
        stop_event.set()
        return False

    service.player.tick = tick
    app_module.background_monitor(service, stop_event, interval=0.01)
    assert ticks == [1]
    assert service.monitor["last_heartbeat"] is not None
    assert service.monitor["thread_active"] is False


@pytest.mark.unit
def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    level = root.level
    try:
        app_module.configure_logging()
        app_module.configure_logging()
        handlers = [h for h in root.handlers if getattr(h, "_music_handler", False)]
        assert len(handlers) == 1
        assert logging.getLogger("werkzeug").level == logging.ERROR
    finally:
        for h in [h for h in root.handlers if getattr(h, "_music_handler", False)]:
            root.removeHandler(h)
        root.setLevel(level)


@pytest.mark.unit
def test_play_url_tolerates_bad_duration(client, service):
    _netease(service).play_urls = {"320": "https://example.com/a.mp3"}
    song = {"id": "1", "name": "晴天", "duration": "abc"}
    resp = client.post("/api/play_url", json={"song": song, "quality": "320"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["fromSource"] == "netease"
    assert body["song"]["duration"] is None
