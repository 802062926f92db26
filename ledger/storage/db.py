import sqlite3
import threading
from typing import Dict, List, Optional, Tuple


class StorageDB:
    """
    SQLite store for the pool.

    `records` is a key/value table holding the serialized ledger, one row per
    participant and the last known vault balances. `settlements` is an
    append-only journal of executed custody instructions.
    """

    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._create_tables()

    def _create_tables(self):
        with self._lock, self.conn:
            self.conn.execute(
                'CREATE TABLE IF NOT EXISTS records (key TEXT PRIMARY KEY, value TEXT NOT NULL)'
            )
            self.conn.execute('''
                CREATE TABLE IF NOT EXISTS settlements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sequence INTEGER NOT NULL,
                    action_hash TEXT NOT NULL,
                    instruction TEXT NOT NULL
                )
            ''')
            self.conn.execute(
                'CREATE INDEX IF NOT EXISTS idx_settlements_sequence ON settlements (sequence)'
            )

    # --- Records ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute('SELECT value FROM records WHERE key = ?', (key,)).fetchone()
        return row[0] if row else None

    def set_state(self, key: str, value: str):
        self.set_state_many({key: value})

    def set_state_many(self, items: Dict[str, str]):
        """Upserts every key in a single transaction."""
        with self._lock, self.conn:
            self.conn.executemany('INSERT OR REPLACE INTO records (key, value) VALUES (?, ?)', items.items())

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        if not prefix:
            with self._lock:
                return dict(self.conn.execute('SELECT key, value FROM records').fetchall())
        # Range scan on the primary key instead of LIKE, so '%' and '_' in ids are literal
        upper = prefix[:-1] + chr(ord(prefix[-1]) + 1)
        with self._lock:
            rows = self.conn.execute(
                'SELECT key, value FROM records WHERE key >= ? AND key < ?', (prefix, upper)
            ).fetchall()
        return dict(rows)

    def replace_all(self, items: Dict[str, str]):
        """Replaces every record with `items` in a single transaction."""
        with self._lock, self.conn:
            self.conn.execute('DELETE FROM records')
            self.conn.executemany('INSERT INTO records (key, value) VALUES (?, ?)', items.items())

    # --- Settlement journal ---
    def append_settlements(self, sequence: int, action_hash: str, entries: List[str]):
        if not entries:
            return
        with self._lock, self.conn:
            self.conn.executemany(
                'INSERT INTO settlements (sequence, action_hash, instruction) VALUES (?, ?, ?)',
                [(sequence, action_hash, entry) for entry in entries],
            )

    def get_settlements(self, since_sequence: int = 0, limit: int = 100) -> List[Tuple[int, str, str]]:
        """(sequence, action_hash, instruction JSON) in the order they were executed."""
        with self._lock:
            rows = self.conn.execute(
                'SELECT sequence, action_hash, instruction FROM settlements '
                'WHERE sequence >= ? ORDER BY id LIMIT ?',
                (since_sequence, limit),
            ).fetchall()
        return [tuple(row) for row in rows]

    def close(self):
        with self._lock:
            self.conn.close()
