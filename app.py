import logging
import threading
import time
from datetime import datetime

from flask import Flask, Blueprint, current_app, jsonify, request
from flask_cors import CORS

import config
import database
from errors import LyricParseTimeout
from models import Song
from proxy_routes import CORS_OPTIONS, proxy_bp
from service import MusicService

logger = logging.getLogger(__name__)

api_bp = Blueprint("api_bp", __name__, url_prefix="/api")

SEARCH_TYPES = (0, 1, 1000)


def configure_logging(level=logging.INFO):
    """
    根日志输出到控制台；werkzeug 的访问日志只保留错误
    重复调用不会叠加 handler
    """
    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_music_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"))
        handler._music_handler = True
        root.addHandler(handler)

    log = logging.getLogger("werkzeug")
    log.setLevel(logging.ERROR)
    log.propagate = False


def get_service():
    return current_app.extensions["music_service"]


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _song_from_body(data):
    raw = data.get("song")
    if not isinstance(raw, dict):
        return None
    song = Song.from_dict(raw)
    if not song.id or not song.name:
        return None
    return song


def record_action(action_type, detail, status, api_response="", duration=0):
    database.insert_log(action_type, detail, status, str(api_response)[:500], duration)


# ================= 搜索 =================

@api_bp.route("/search", methods=["GET"])
def search():
    keyword = request.args.get("keyword", "").strip()
    if not keyword:
        return jsonify({"error": "keyword 不能为空"}), 400
    search_type = _int_arg("type", 0)
    if search_type not in SEARCH_TYPES:
        return jsonify({"error": f"不支持的搜索类型: {search_type}"}), 400
    limit = min(max(1, _int_arg("limit", 20)), 100)
    page = max(1, _int_arg("page", _int_arg("curpage", 1)))
    source = request.args.get("source", "auto").strip() or "auto"

    t_start = time.time()
    result = get_service().search(keyword, source=source, type=search_type, limit=limit, page=page)
    record_action("搜索", f"{keyword} (源:{result.from_source or source})",
                  "成功" if result.songs else "无结果", f"{len(result.songs)} 首",
                  int((time.time() - t_start) * 1000))
    return jsonify(result.to_dict())


@api_bp.route("/suggestions", methods=["GET"])
def suggestions():
    prefix = request.args.get("prefix", "")
    return jsonify(get_service().suggestions(prefix, _int_arg("limit", 5)))


@api_bp.route("/history", methods=["GET"])
def list_history():
    return jsonify([{"keyword": i.keyword, "timestamp": i.timestamp} for i in get_service().history.items()])


@api_bp.route("/history", methods=["DELETE"])
def clear_history():
    get_service().history.clear()
    return jsonify({"success": True})


@api_bp.route("/history/<path:keyword>", methods=["DELETE"])
def delete_history(keyword):
    removed = get_service().history.remove(keyword)
    return jsonify({"success": removed})


# ================= 播放 / 歌词 =================

@api_bp.route("/play_url", methods=["POST"])
def play_url():
    data = _json_body()
    song = _song_from_body(data)
    if song is None:
        return jsonify({"error": "缺少歌曲信息"}), 400
    quality = data.get("quality")
    if quality is not None and str(quality) not in config.QUALITY_FALLBACK:
        return jsonify({"error": f"不支持的音质: {quality}"}), 400

    result = get_service().get_play_url(song, str(quality) if quality else None)
    body = result.to_dict()
    if result.song is not None:
        body["song"] = result.song.to_dict()
    return jsonify(body)


@api_bp.route("/lyric", methods=["POST"])
def lyric():
    song = _song_from_body(_json_body())
    if song is None:
        return jsonify({"error": "缺少歌曲信息"}), 400
    try:
        result, lines, offset = get_service().get_lyric_lines(song)
    except LyricParseTimeout as e:
        return jsonify({"error": str(e)}), 504
    return jsonify({
        "lyric": result.lyric,
        "tlyric": result.translated,
        "fromSource": result.from_source,
        "lines": [line.to_dict() for line in lines],
        "offset": offset,
    })


@api_bp.route("/lyric_offset", methods=["GET"])
def get_lyric_offset():
    key = request.args.get("key", "").strip()
    if not key:
        return jsonify({"error": "缺少 key"}), 400
    return jsonify({"key": key, "offset": get_service().lyric_offsets.get(key)})


@api_bp.route("/lyric_offset", methods=["POST"])
def set_lyric_offset():
    data = _json_body()
    key = str(data.get("key") or "").strip()
    if not key:
        return jsonify({"error": "缺少 key"}), 400
    store = get_service().lyric_offsets
    try:
        if data.get("reset"):
            offset = store.reset(key)
        elif "delta" in data:
            offset = store.adjust(key, float(data["delta"]))
        elif "offset" in data:
            offset = store.set(key, float(data["offset"]))
        else:
            return jsonify({"error": "需要 delta / offset / reset 之一"}), 400
    except (TypeError, ValueError):
        return jsonify({"error": "偏移量必须是数字"}), 400
    return jsonify({"key": key, "offset": offset})


# ================= 偏好 / 状态 =================

@api_bp.route("/preferences", methods=["GET"])
def get_preferences():
    return jsonify(get_service().get_preferences())


@api_bp.route("/preferences", methods=["POST"])
def set_preferences():
    data = _json_body()
    if not data:
        return jsonify({"error": "请求体为空"}), 400
    try:
        return jsonify(get_service().set_preferences(data))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@api_bp.route("/stats", methods=["GET"])
def get_stats():
    service = get_service()
    stats = service.status()
    stats.update(service.player.status())
    return jsonify(stats)


@api_bp.route("/logs", methods=["GET"])
def get_logs():
    return jsonify(database.fetch_logs(limit=_int_arg("limit", 30)))


@api_bp.route("/clear_logs", methods=["POST"])
def clear_logs():
    return jsonify({"success": database.clear_all_logs()})


# ================= 歌单管理 =================

@api_bp.route("/playlists", methods=["GET"])
def list_playlists():
    return jsonify(database.get_all_playlists())


@api_bp.route("/playlists", methods=["POST"])
def create_playlist():
    name = (_json_body().get("name") or "").strip()
    if not name:
        return jsonify({"success": False, "msg": "名称为空"}), 400
    success, msg = database.create_playlist(name)
    return jsonify({"success": success, "msg": msg})


@api_bp.route("/playlists/<name>", methods=["DELETE"])
def delete_playlist(name):
    success, msg = database.delete_playlist(name)
    return jsonify({"success": success, "msg": msg})


@api_bp.route("/playlists/<name>/rename", methods=["POST"])
def rename_playlist(name):
    new_name = (_json_body().get("new_name") or "").strip()
    if not new_name:
        return jsonify({"success": False, "msg": "名称为空"}), 400
    success, msg = database.rename_playlist(name, new_name)
    return jsonify({"success": success, "msg": msg})


@api_bp.route("/playlists/<name>/songs", methods=["GET"])
def get_playlist_songs(name):
    return jsonify(database.get_playlist_songs(name))


@api_bp.route("/playlists/<name>/songs", methods=["POST"])
def add_song_to_playlist_route(name):
    song = _song_from_body(_json_body())
    if song is None:
        return jsonify({"success": False, "msg": "缺少歌曲信息"}), 400
    success, msg = database.add_song_to_playlist(name, song.to_dict())
    return jsonify({"success": success, "msg": msg})


@api_bp.route("/songs/<int:song_id>", methods=["DELETE"])
def delete_song(song_id):
    success, msg = database.remove_song_from_playlist(song_id)
    return jsonify({"success": success, "msg": msg})


# ================= 歌单播放 =================

@api_bp.route("/player/start", methods=["POST"])
def player_start():
    data = _json_body()
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"success": False, "msg": "缺少歌单名"}), 400
    songs = [Song.from_dict(item["song"]) for item in database.get_playlist_songs(name)]
    success, msg = get_service().player.start(name, songs, quality=data.get("quality"))
    record_action("歌单播放", f"播放歌单: {name}", "成功" if success else "失败", msg, 0)
    return jsonify({"success": success, "msg": msg, "status": get_service().player.status()})


@api_bp.route("/player/status", methods=["GET"])
def player_status():
    return jsonify(get_service().player.status())


@api_bp.route("/player/<action>", methods=["POST"])
def player_control(action):
    player = get_service().player
    if action == "next":
        success, msg = player.next(), "歌单下一首"
    elif action == "previous":
        success, msg = player.previous(), "歌单上一首"
    elif action == "stop":
        player.stop()
        success, msg = True, "已停止"
    else:
        return jsonify({"success": False, "msg": "不支持的指令"}), 400
    if not success:
        msg = "当前不在歌单播放模式"
    return jsonify({"success": success, "msg": msg, "status": player.status()})


# === 后台监控线程：歌单自动切歌 ===
def background_monitor(service, stop_event, interval=None):
    interval = interval or config.MONITOR_INTERVAL
    service.monitor["thread_active"] = True
    try:
        while not stop_event.is_set():
            service.monitor["last_heartbeat"] = datetime.now().strftime("%H:%M:%S")
            try:
                service.player.tick()
            except Exception as e:
                # 监控线程不能因为单次异常退出
                logger.error("Monitor Error: %s", e)
            stop_event.wait(interval)
    finally:
        service.monitor["thread_active"] = False


def start_monitor(app):
    stop_event = threading.Event()
    monitor = threading.Thread(target=background_monitor,
                               args=(app.extensions["music_service"], stop_event), daemon=True)
    monitor.start()
    app.extensions["monitor_stop"] = stop_event
    return monitor


def create_app(service=None):
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.extensions["music_service"] = service or MusicService()
    app.register_blueprint(api_bp)
    app.register_blueprint(proxy_bp)
    CORS(app, resources={r"/proxy/*": CORS_OPTIONS})
    return app


if __name__ == "__main__":
    configure_logging()
    application = create_app()
    start_monitor(application)
    logger.info("🚀 音乐服务器启动 | 默认源: %s", config.DEFAULT_SOURCE)
    try:
        application.run(host=config.HOST, port=config.PORT, debug=False)
    finally:
        application.extensions["monitor_stop"].set()
        application.extensions["music_service"].close()
