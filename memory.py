import os
import sqlite3

DB_NAME = "bot.db"
SYNC_TOKEN_KEY = "sync:next_batch"


def init_db(data_path: str) -> str:
    os.makedirs(data_path, exist_ok=True)
    db_path = os.path.join(data_path, DB_NAME)

    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    cur.execute("""
    CREATE TABLE IF NOT EXISTS kv (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """)
    conn.commit()
    conn.close()
    return db_path


def kv_get(db_path: str, key: str, default: str = "") -> str:
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    cur.execute("SELECT value FROM kv WHERE key=?", (key,))
    row = cur.fetchone()
    conn.close()
    return row[0] if row else default


def kv_set(db_path: str, key: str, value: str):
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    cur.execute("INSERT OR REPLACE INTO kv VALUES (?, ?)", (key, value))
    conn.commit()
    conn.close()


def get_sync_token(db_path: str) -> str:
    return kv_get(db_path, SYNC_TOKEN_KEY)


def set_sync_token(db_path: str, token: str):
    kv_set(db_path, SYNC_TOKEN_KEY, token)
