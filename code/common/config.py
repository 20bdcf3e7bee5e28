# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import os
import logging
from pathlib import Path
from typing import Optional

from common.datastore import FileDataStore, SqliteDataStore

logger = logging.getLogger(__name__)
CURRENT_VERSION = "v1.2.0"


class Config:
    def __init__(self, logger: Optional[logging.Logger] = None):

        def _str(key: str, env_default: Optional[str] = None) -> Optional[str]:
            v = os.getenv(key)
            if v is None or v.strip() == "":
                v = env_default
            return v

        def _int(key: str, env_default: str = "0") -> int:
            raw = _str(key, env_default)
            try:
                return int(str(raw).strip())
            except Exception:
                try:
                    return int(env_default)
                except Exception:
                    return 0

        def _float(key: str, env_default: str = "0") -> float:
            raw = _str(key, env_default)
            try:
                return float(str(raw).strip())
            except Exception:
                return float(env_default)

        self.BOT_TOKEN = _str("BOT_TOKEN")

        self.DATA_DIR = Path(_str("DATA_DIR", "/data"))
        self.BACKUP_DIR = Path(_str("BACKUP_DIR", str(self.DATA_DIR / "Backup")))
        self.REMOVED_DIR = Path(
            _str("REMOVED_DIR", str(self.DATA_DIR / "Backup-Removed"))
        )

        self.STATE_BACKEND = (_str("STATE_BACKEND", "file") or "file").lower()
        self.DB_PATH = _str("DB_PATH", str(self.DATA_DIR / "data.db"))

        self.PAGE_SIZE = max(1, min(_int("PAGE_SIZE", "100"), 100))
        self.PAGE_DELAY_SECONDS = _float("PAGE_DELAY_SECONDS", "1.0")
        self.DOWNLOAD_TIMEOUT_SECONDS = _float("DOWNLOAD_TIMEOUT_SECONDS", "180")

        self.LOG_LEVEL = (_str("LOG_LEVEL", "INFO") or "INFO").upper()

        self.logger = (logger or logging.getLogger(__name__)).getChild(
            self.__class__.__name__
        )

    def make_data_store(self):
        """
        Build the persistence backend selected by STATE_BACKEND.
        Unknown values fall back to plain files.
        """
        if self.STATE_BACKEND == "sqlite":
            self.logger.debug("[💾] Using sqlite state backend at %s", self.DB_PATH)
            return SqliteDataStore(self.DB_PATH)

        if self.STATE_BACKEND != "file":
            self.logger.warning(
                "[⚠️] Unknown STATE_BACKEND %r, falling back to files",
                self.STATE_BACKEND,
            )
        return FileDataStore(self.DATA_DIR)
