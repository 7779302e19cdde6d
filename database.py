import functools
import json
import logging
import re
import sqlite3
from datetime import datetime

import config

logger = logging.getLogger(__name__)

# 运行时读取，测试可以直接替换
DB_FILE = config.DB_FILE


def get_db_connection():
    conn = sqlite3.connect(DB_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def _now():
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def check_and_fix_schema(conn):
    """
    智能修复数据库结构：
    1. 创建缺失的表
    2. 检查现有表是否缺少关键字段（自动迁移）
    """
    c = conn.cursor()

    # --- 1. 定义所有需要的表结构 ---
    tables = {
        "api_logs": '''CREATE TABLE IF NOT EXISTS api_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT,
                        action_type TEXT,
                        detail TEXT,
                        status TEXT,
                        api_response TEXT,
                        duration_ms INTEGER DEFAULT 0
                    )''',
        "playlists": '''CREATE TABLE IF NOT EXISTS playlists (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT UNIQUE,
                        created_at TEXT
                    )''',
        "playlist_songs": '''CREATE TABLE IF NOT EXISTS playlist_songs (
                            id INTEGER PRIMARY KEY AUTOINCREMENT,
                            playlist_id INTEGER,
                            name TEXT,
                            song_json TEXT,
                            added_at TEXT,
                            FOREIGN KEY(playlist_id) REFERENCES playlists(id)
                        )''',
        "search_history": '''CREATE TABLE IF NOT EXISTS search_history (
                            keyword TEXT PRIMARY KEY,
                            timestamp INTEGER
                        )''',
        "preferences": '''CREATE TABLE IF NOT EXISTS preferences (
                        key TEXT PRIMARY KEY,
                        value TEXT
                    )''',
        "lyric_offsets": '''CREATE TABLE IF NOT EXISTS lyric_offsets (
                            song_key TEXT PRIMARY KEY,
                            offset_seconds REAL,
                            updated_at TEXT
                        )''',
    }

    # --- 2. 创建或修复表 ---
    for table_name, create_sql in tables.items():
        try:
            c.execute(create_sql)

            # --- 3. 字段补全 (简单的 Migration 逻辑) ---
            c.execute(f"PRAGMA table_info({table_name})")
            existing_columns = [row['name'] for row in c.fetchall()]

            if table_name == "api_logs" and "duration_ms" not in existing_columns:
                logger.info("🔧 正在修复表 %s: 添加 duration_ms 字段", table_name)
                c.execute("ALTER TABLE api_logs ADD COLUMN duration_ms INTEGER DEFAULT 0")

            # 旧版歌单只存了 url，这里补上完整歌曲信息字段
            if table_name == "playlist_songs" and "song_json" not in existing_columns:
                logger.info("🔧 正在修复表 %s: 添加 song_json 字段", table_name)
                c.execute("ALTER TABLE playlist_songs ADD COLUMN song_json TEXT")

        except sqlite3.DatabaseError as e:
            logger.warning("⚠️ 初始化表 %s 时遇到非致命错误: %s", table_name, e)

    conn.commit()


def init_db():
    """初始化入口"""
    conn = get_db_connection()
    try:
        check_and_fix_schema(conn)
    finally:
        conn.close()


# === 装饰器：自动修复与重试 ===
def safe_db_execute(func):
    """
    装饰器：当数据库操作遇到 'no such table' 错误时，
    自动执行 init_db() 进行修复，然后重试一次。
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.OperationalError as e:
            error_msg = str(e).lower()
            # 捕获表缺失或列缺失错误
            if "no such table" in error_msg or "no such column" in error_msg:
                logger.warning("⚠️ 检测到数据库结构缺失 (%s)，正在尝试自动修复...", e)
                init_db()
                logger.info("🔄 修复完成，正在重试操作...")
                return func(*args, **kwargs)
            logger.error("❌ 数据库操作未知错误: %s", e)
            raise
    return wrapper


# === 日志相关功能 ===

@safe_db_execute
def insert_log(action_type, detail, status, api_response="", duration_ms=0):
    conn = get_db_connection()
    c = conn.cursor()
    timestamp = _now()
    resp_str = str(api_response)[:500]

    c.execute(
        "INSERT INTO api_logs (timestamp, action_type, detail, status, api_response, duration_ms) VALUES (?, ?, ?, ?, ?, ?)",
        (timestamp, action_type, detail, status, resp_str, duration_ms))
    conn.commit()
    conn.close()

    if status not in ["成功", "自动忽略"]:
        logger.info("[%s] %s: %s -> %s", timestamp, action_type, detail, status)
    return True


@safe_db_execute
def fetch_logs(limit=30):
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT * FROM api_logs ORDER BY id DESC LIMIT ?", (limit,))
    rows = c.fetchall()
    conn.close()

    data = []
    for row in rows:
        data.append({
            "id": row['id'],
            "time": row['timestamp'].split(' ')[1] if ' ' in row['timestamp'] else row['timestamp'],
            "type": row['action_type'],
            "detail": row['detail'],
            "status": row['status'],
            "duration": row['duration_ms'] or 0,
            "response": row['api_response']
        })
    return data


@safe_db_execute
def clear_all_logs():
    conn = get_db_connection()
    conn.execute("DELETE FROM api_logs")
    conn.commit()
    conn.close()
    return True


@safe_db_execute
def get_source_stats():
    """
    按 '获取链接' 日志统计每个源的成功 / 失败次数，
    日志 detail 里用 "(源:xxx)" 标注来源
    """
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT detail, status FROM api_logs WHERE action_type='获取链接'")
    rows = c.fetchall()
    conn.close()

    stats = {}
    failures = {}
    total = 0
    for row in rows:
        match = re.search(r'\(源:(.*?)\)', row['detail'] or "")
        source_name = match.group(1) if match else "unknown"
        if row['status'] == "成功":
            total += 1
            stats[source_name] = stats.get(source_name, 0) + 1
        else:
            failures[source_name] = failures.get(source_name, 0) + 1
    return {"total": total, "details": stats, "failures": failures}


# === 搜索历史 ===

@safe_db_execute
def save_search_history(items):
    """整体覆盖保存，items 为 (keyword, timestamp) 列表"""
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("DELETE FROM search_history")
    c.executemany("INSERT INTO search_history (keyword, timestamp) VALUES (?, ?)", list(items))
    conn.commit()
    conn.close()
    return True


@safe_db_execute
def load_search_history(limit=None):
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT keyword, timestamp FROM search_history ORDER BY timestamp DESC, rowid ASC")
    rows = c.fetchall()
    conn.close()
    items = [(row['keyword'], row['timestamp']) for row in rows]
    return items[:limit] if limit else items


# === 偏好设置（JSON 值） ===

@safe_db_execute
def get_preference(key, default=None):
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT value FROM preferences WHERE key=?", (key,))
    row = c.fetchone()
    conn.close()
    if not row:
        return default
    try:
        return json.loads(row['value'])
    except ValueError:
        logger.warning("⚠️ 偏好 %s 的值不是合法 JSON，已忽略", key)
        return default


@safe_db_execute
def set_preference(key, value):
    conn = get_db_connection()
    conn.execute("INSERT OR REPLACE INTO preferences (key, value) VALUES (?, ?)",
                 (key, json.dumps(value, ensure_ascii=False)))
    conn.commit()
    conn.close()
    return True


@safe_db_execute
def get_all_preferences():
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT key, value FROM preferences")
    rows = c.fetchall()
    conn.close()
    prefs = {}
    for row in rows:
        try:
            prefs[row['key']] = json.loads(row['value'])
        except ValueError:
            continue
    return prefs


# === 歌词偏移 ===

@safe_db_execute
def get_lyric_offset(song_key):
    conn = get_db_connection()
    c = conn.cursor()
    c.execute("SELECT offset_seconds FROM lyric_offsets WHERE song_key=?", (song_key,))
    row = c.fetchone()
    conn.close()
    return float(row["offset_seconds"]) if row else 0.0


@safe_db_execute
def set_lyric_offset(song_key, offset):
    conn = get_db_connection()
    conn.execute("INSERT OR REPLACE INTO lyric_offsets (song_key, offset_seconds, updated_at) VALUES (?, ?, ?)",
                 (song_key, offset, _now()))
    conn.commit()
    conn.close()
    return True


@safe_db_execute
def delete_lyric_offset(song_key):
    conn = get_db_connection()
    conn.execute("DELETE FROM lyric_offsets WHERE song_key=?", (song_key,))
    conn.commit()
    conn.close()
    return True


# === 歌单 ===

def _playlist_id(conn, name):
    row = conn.execute("SELECT id FROM playlists WHERE name=?", (name,)).fetchone()
    return row["id"] if row else None


@safe_db_execute
def create_playlist(name):
    conn = get_db_connection()
    try:
        with conn:
            conn.execute("INSERT INTO playlists (name, created_at) VALUES (?, ?)", (name, _now()))
        return True, "创建成功"
    except sqlite3.IntegrityError:
        return False, "歌单名已存在"
    finally:
        conn.close()


@safe_db_execute
def rename_playlist(old_name, new_name):
    conn = get_db_connection()
    try:
        with conn:
            cur = conn.execute("UPDATE playlists SET name=? WHERE name=?", (new_name, old_name))
        if cur.rowcount == 0:
            return False, "歌单不存在"
        return True, "重命名成功"
    except sqlite3.IntegrityError:
        return False, "歌单名已存在"
    finally:
        conn.close()


@safe_db_execute
def delete_playlist(name):
    conn = get_db_connection()
    try:
        pid = _playlist_id(conn, name)
        if pid is None:
            return False, "歌单不存在"
        with conn:
            conn.execute("DELETE FROM playlist_songs WHERE playlist_id=?", (pid,))
            conn.execute("DELETE FROM playlists WHERE id=?", (pid,))
        return True, "删除成功"
    finally:
        conn.close()


@safe_db_execute
def add_song_to_playlist(playlist_name, song):
    """song 为 Song.to_dict() 的结果，整条存成 JSON"""
    conn = get_db_connection()
    try:
        pid = _playlist_id(conn, playlist_name)
        if pid is None:
            return False, "歌单不存在"
        with conn:
            conn.execute(
                "INSERT INTO playlist_songs (playlist_id, name, song_json, added_at) VALUES (?, ?, ?, ?)",
                (pid, song.get("name", ""), json.dumps(song, ensure_ascii=False), _now()))
        return True, "添加成功"
    finally:
        conn.close()


@safe_db_execute
def remove_song_from_playlist(entry_id):
    conn = get_db_connection()
    try:
        with conn:
            cur = conn.execute("DELETE FROM playlist_songs WHERE id=?", (entry_id,))
    finally:
        conn.close()
    if cur.rowcount == 0:
        return False, "歌曲不存在"
    return True, "移除成功"


@safe_db_execute
def get_all_playlists():
    conn = get_db_connection()
    try:
        rows = conn.execute("""SELECT p.id, p.name, COUNT(s.id) AS count
                               FROM playlists p LEFT JOIN playlist_songs s ON s.playlist_id = p.id
                               GROUP BY p.id ORDER BY p.created_at DESC, p.id DESC""").fetchall()
    finally:
        conn.close()
    return [{"id": row["id"], "name": row["name"], "count": row["count"]} for row in rows]


@safe_db_execute
def get_playlist_songs(playlist_name):
    """返回 [{id: 条目 id, name, song: 歌曲字典}]，歌单不存在时返回空列表"""
    conn = get_db_connection()
    try:
        pid = _playlist_id(conn, playlist_name)
        if pid is None:
            return []
        rows = conn.execute("SELECT id, name, song_json FROM playlist_songs WHERE playlist_id=? ORDER BY id ASC",
                            (pid,)).fetchall()
    finally:
        conn.close()

    entries = []
    for row in rows:
        try:
            song = json.loads(row["song_json"]) if row["song_json"] else {}
        except ValueError:
            song = {}
        if not song.get("id"):
            # 旧数据只有 url，没有歌曲信息，无法重新解析
            continue
        entries.append({"id": row["id"], "name": row["name"], "song": song})
    return entries
