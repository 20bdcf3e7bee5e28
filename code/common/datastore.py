# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import os
import sqlite3, threading
from pathlib import Path
from typing import Optional, Union


class FileDataStore:
    """
    Stores each named record set as a text file under ``data_dir``.

    Saves go through a temp file and ``os.replace`` so a crash mid-write
    leaves the previous contents intact.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.lock = threading.RLock()

    def _path(self, name: str) -> Path:
        return self.data_dir / f"{name}.txt"

    def load(self, name: str) -> Optional[str]:
        path = self._path(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def save(self, name: str, text: str) -> None:
        path = self._path(name)
        tmp = path.with_suffix(".tmp")
        with self.lock:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)


class SqliteDataStore:
    def __init__(self, db_path: str):
        self.path = db_path
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("PRAGMA journal_mode = DELETE;")
        self.conn.execute("PRAGMA synchronous = FULL;")
        self.conn.execute("PRAGMA busy_timeout = 5000;")
        self.lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        with self.lock, self.conn:
            self.conn.execute(
                """
            CREATE TABLE IF NOT EXISTS data_store(
            name          TEXT PRIMARY KEY,
            value         TEXT NOT NULL DEFAULT '',
            last_updated  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
            )

    def load(self, name: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM data_store WHERE name=?", (name,)
        ).fetchone()
        return row["value"] if row else None

    def save(self, name: str, text: str) -> None:
        with self.lock, self.conn:
            self.conn.execute(
                "INSERT INTO data_store(name,value) VALUES(?,?) "
                "ON CONFLICT(name) DO UPDATE SET value=excluded.value, "
                "last_updated=CURRENT_TIMESTAMP",
                (name, text),
            )

    def close(self) -> None:
        with self.lock:
            self.conn.close()
