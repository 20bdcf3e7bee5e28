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
from typing import Callable, Dict, Iterable, Optional, Tuple

from discord import ChannelType

logger = logging.getLogger("backup")

NO_CATEGORY = 0

TEXT_CHANNEL_TYPES = (ChannelType.text, ChannelType.news)


def is_text_channel(ch) -> bool:
    return getattr(ch, "type", None) in TEXT_CHANNEL_TYPES


class ObjectWhitelist:
    """
    Default match policy for whitelist keys.

    A key matches an object id when the key is that id written in decimal,
    or when the key names a group (``key=id1,id2`` in the groups record)
    containing the id.
    """

    def __init__(self, groups: Optional[Dict[str, Iterable[int]]] = None):
        self.groups: Dict[str, set[int]] = {
            k: {int(x) for x in v} for k, v in (groups or {}).items()
        }

    def object_ok(self, key: str, object_id: int) -> bool:
        if not object_id:
            return False
        members = self.groups.get(key)
        if members is not None and int(object_id) in members:
            return True
        try:
            return int(key) == int(object_id)
        except (TypeError, ValueError):
            return False

    __call__ = object_ok


class ChannelSelector:
    def __init__(
        self,
        whitelist,
        object_ok: Callable[[str, int], bool],
    ):
        self.whitelist = whitelist
        self.object_ok = object_ok
        self._category_cache: dict[int, int] = {}

    def _match(self, object_id: int) -> Optional[str]:
        for key in self.whitelist:
            try:
                if self.object_ok(key, object_id):
                    return key
            except Exception:
                logger.exception("[⛔] Whitelist check failed for key %r", key)
        return None

    def is_eligible(self, channel_id: int, category_id: int) -> Tuple[bool, Optional[str]]:
        """
        Channel entries are tested before the category, so a direct channel
        match wins over a category match.
        """
        key = self._match(channel_id)
        if key is None and category_id:
            key = self._match(category_id)
        return key is not None, key

    def category_of(self, channel) -> int:
        cid = int(channel.id)
        if cid in self._category_cache:
            return self._category_cache[cid]

        guild = getattr(channel, "guild", None)
        try:
            for cat in list(getattr(guild, "categories", None) or []):
                for sub in list(getattr(cat, "channels", None) or []):
                    self._category_cache[int(sub.id)] = int(cat.id)
        except Exception:
            logger.debug("[📁] Category rescan failed for %s", cid, exc_info=True)

        return self._category_cache.get(cid, NO_CATEGORY)

    def resolve(self, channel) -> Tuple[bool, Optional[str]]:
        return self.is_eligible(int(channel.id), self.category_of(channel))

    def invalidate(self, channel_id: Optional[int] = None) -> None:
        if channel_id is None:
            self._category_cache.clear()
        else:
            self._category_cache.pop(int(channel_id), None)
