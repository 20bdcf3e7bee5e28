# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger("backup")


@dataclass(frozen=True)
class ChannelMetadata:
    channel_id: int
    name: str
    category_id: int


class _MapStore:
    """
    In-memory map mirrored to one record set of a data store.

    Every mutation rewrites the whole record set. Subclasses provide
    line parsing/formatting.
    """

    RECORD_NAME = ""

    def __init__(self, data_store):
        self.data_store = data_store
        self._data: dict = {}

    def _parse_line(self, line: str):
        raise NotImplementedError

    def _format_item(self, key, value) -> str:
        raise NotImplementedError

    def load_all(self) -> dict:
        raw = self.data_store.load(self.RECORD_NAME)
        self._data.clear()
        if raw is None:
            return dict(self._data)

        for lineno, line in enumerate(raw.splitlines(), 1):
            line = line.strip()
            if not line:
                continue
            try:
                key, value = self._parse_line(line)
            except (ValueError, TypeError):
                logger.warning(
                    "[⚠️] Skipping malformed line %d in %s: %r",
                    lineno,
                    self.RECORD_NAME,
                    line,
                )
                continue
            self._data[key] = value

        logger.debug("[💾] Loaded %d entries from %s", len(self._data), self.RECORD_NAME)
        return dict(self._data)

    def save_all(self) -> None:
        text = "".join(
            self._format_item(k, v) + "\n" for k, v in list(self._data.items())
        )
        self.data_store.save(self.RECORD_NAME, text)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, channel_id) -> bool:
        return int(channel_id) in self._data

    def items(self):
        return list(self._data.items())


class CursorStore(_MapStore):
    """Last processed message id per channel."""

    RECORD_NAME = "backup_channel_read"

    def _parse_line(self, line: str):
        cid, sep, mid = line.partition("=")
        if not sep:
            raise ValueError("missing '='")
        return int(cid), int(mid)

    def _format_item(self, key, value) -> str:
        return f"{key}={value}"

    def get(self, channel_id: int) -> int:
        return self._data.get(int(channel_id), 0)

    def set(self, channel_id: int, message_id: int) -> bool:
        """
        Advance the cursor and persist the full map.

        Returns False without writing when ``message_id`` is not newer than
        the stored cursor, so a stale writer can never move it backwards.
        """
        cid = int(channel_id)
        mid = int(message_id)
        if mid <= self._data.get(cid, 0):
            return False
        self._data[cid] = mid
        self.save_all()
        return True


class MetadataStore(_MapStore):
    RECORD_NAME = "backup_channel_names"

    def _parse_line(self, line: str):
        cid, sep, rest = line.partition("=")
        if not sep:
            raise ValueError("missing '='")
        name, comma, cat = rest.rpartition(",")
        if not comma:
            raise ValueError("missing ','")
        channel_id = int(cid)
        return channel_id, ChannelMetadata(channel_id, name, int(cat))

    def _format_item(self, key, value: ChannelMetadata) -> str:
        return f"{key}={value.name},{value.category_id}"

    def get(self, channel_id: int) -> Optional[ChannelMetadata]:
        return self._data.get(int(channel_id))

    def set(self, channel_id: int, name: str, category_id: int) -> bool:
        cid = int(channel_id)
        cur = self._data.get(cid)
        if cur is not None and cur.name == name and cur.category_id == int(category_id):
            return False
        self._data[cid] = ChannelMetadata(cid, name, int(category_id))
        self.save_all()
        return True


def is_valid_key(key: str) -> bool:
    """Whitelist keys name a single backup folder, so no separators or dot names."""
    key = (key or "").strip()
    if not key or key in (".", ".."):
        return False
    return "/" not in key and "\\" not in key and "\0" not in key


class WhitelistStore:
    """Ordered list of whitelist keys. First match in list order wins."""

    RECORD_NAME = "backup_whitelist"

    def __init__(self, data_store):
        self.data_store = data_store
        self._keys: List[str] = []

    def load_all(self) -> List[str]:
        raw = self.data_store.load(self.RECORD_NAME)
        if raw is None:
            return list(self._keys)
        keys = []
        for ln in raw.splitlines():
            ln = ln.strip()
            if not ln:
                continue
            if not is_valid_key(ln):
                logger.warning("[⚠️] Ignoring invalid whitelist key %r", ln)
                continue
            keys.append(ln)
        self._keys = keys
        return list(self._keys)

    def save_all(self) -> None:
        self.data_store.save(self.RECORD_NAME, "".join(k + "\n" for k in self._keys))

    def keys(self) -> List[str]:
        return list(self._keys)

    def add(self, key: str) -> bool:
        key = key.strip()
        if not is_valid_key(key) or key in self._keys:
            return False
        self._keys.append(key)
        self.save_all()
        return True

    def remove(self, key: str) -> bool:
        key = key.strip()
        if key not in self._keys:
            return False
        self._keys.remove(key)
        self.save_all()
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __iter__(self):
        return iter(list(self._keys))

    def __len__(self) -> int:
        return len(self._keys)


def load_id_groups(data_store, name: str = "backup_groups") -> Dict[str, set]:
    """
    Parse ``key=id1,id2,...`` lines into named id groups.
    Unparsable ids are logged and ignored.
    """
    groups: Dict[str, set] = {}
    raw = data_store.load(name)
    if raw is None:
        return groups

    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        key, sep, ids = line.partition("=")
        if not sep or not key.strip():
            logger.warning("[⚠️] Skipping malformed line in %s: %r", name, line)
            continue
        bucket = groups.setdefault(key.strip(), set())
        for tok in ids.split(","):
            tok = tok.strip()
            if not tok:
                continue
            try:
                bucket.add(int(tok))
            except ValueError:
                logger.warning("[⚠️] Ignoring bad id %r for group %s", tok, key)
    return groups
