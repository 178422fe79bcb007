import json
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple


class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for providers, jobs, params, roles
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Event log: append-only, read by indexers and the relay
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    call_id TEXT,
                    event_type TEXT,
                    data TEXT,
                    timestamp INTEGER
                )
            ''')
            self.cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_type ON events (event_type)')
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            self.conn.commit()

    def write_batch(self, items: Dict[str, Optional[str]], events: Iterable[Tuple[str, str, Dict[str, Any], int]] = ()):
        """Writes state keys (None deletes) and appends events in one sqlite transaction."""
        with self._lock:
            try:
                for key, value in items.items():
                    if value is None:
                        self.cursor.execute('DELETE FROM state WHERE key = ?', (key,))
                    else:
                        self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
                for call_id, event_type, data, ts in events:
                    self.cursor.execute(
                        'INSERT INTO events (call_id, event_type, data, timestamp) VALUES (?, ?, ?, ?)',
                        (call_id, event_type, json.dumps(data, sort_keys=True, default=str), ts),
                    )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    def clear_state(self):
        with self._lock:
            self.cursor.execute('DELETE FROM state')
            self.cursor.execute('DELETE FROM events')
            self.conn.commit()

    # --- Event Methods ---
    def get_events(self, since_seq: int = 0, event_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            if event_type:
                self.cursor.execute(
                    'SELECT seq, call_id, event_type, data, timestamp FROM events '
                    'WHERE seq > ? AND event_type = ? ORDER BY seq LIMIT ?',
                    (since_seq, event_type, limit),
                )
            else:
                self.cursor.execute(
                    'SELECT seq, call_id, event_type, data, timestamp FROM events '
                    'WHERE seq > ? ORDER BY seq LIMIT ?',
                    (since_seq, limit),
                )
            return [
                {"seq": r[0], "call_id": r[1], "event_type": r[2], "data": json.loads(r[3]), "timestamp": r[4]}
                for r in self.cursor.fetchall()
            ]
