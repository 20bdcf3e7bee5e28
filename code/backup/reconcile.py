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
import shutil
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple, Union

from backup.selector import ChannelSelector, is_text_channel

logger = logging.getLogger("backup")


class ArchiveReconciler:
    """
    Moves backup folders of channels that are gone or out of scope into the
    removed-backups root. Nothing is ever deleted.

    A folder filed under a key that no longer wins for its channel is moved
    under the winning key, or retired when that folder already exists.
    """

    def __init__(
        self,
        *,
        guilds: Callable[[], Iterable],
        selector: ChannelSelector,
        backup_root: Union[str, Path],
        removed_root: Union[str, Path],
    ):
        self._guilds = guilds
        self.selector = selector
        self.backup_root = Path(backup_root)
        self.removed_root = Path(removed_root)

    def _current_key(self, channel_id: int, known: dict) -> Tuple[Optional[str], str]:
        """Returns (whitelist key, reason); the key is None when the folder retires."""
        ch = known.get(channel_id)
        if ch is None:
            return None, "channel no longer exists"
        if not is_text_channel(ch):
            return None, "not a text channel"
        ok, key = self.selector.resolve(ch)
        if not ok:
            return None, "no longer whitelisted"
        return key, ""

    def _move(self, src: Path, target: Path) -> bool:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(target))
        except OSError:
            logger.exception("[⛔] Could not move %s to %s", src, target)
            return False
        return True

    def _free_target(self, name: str) -> Path:
        target = self.removed_root / name
        i = 0
        while target.exists():
            i += 1
            target = self.removed_root / f"{name}-{i}"
        return target

    def run(self) -> list[Path]:
        self.backup_root.mkdir(parents=True, exist_ok=True)
        self.removed_root.mkdir(parents=True, exist_ok=True)

        known: dict[int, object] = {}
        for guild in list(self._guilds()):
            for ch in list(getattr(guild, "channels", None) or []):
                known[int(ch.id)] = ch

        moved: list[Path] = []
        for key_dir in sorted(p for p in self.backup_root.iterdir() if p.is_dir()):
            for chan_dir in sorted(p for p in key_dir.iterdir() if p.is_dir()):
                try:
                    channel_id = int(chan_dir.name)
                except ValueError:
                    continue

                key, reason = self._current_key(channel_id, known)
                if key == key_dir.name:
                    continue

                if key is not None:
                    rekeyed = self.backup_root / key / chan_dir.name
                    if not rekeyed.exists():
                        if self._move(chan_dir, rekeyed):
                            logger.info(
                                "[🗂️] Moved backup %s/%s under key %s",
                                key_dir.name,
                                chan_dir.name,
                                key,
                            )
                            moved.append(rekeyed)
                        continue
                    reason = f"superseded by key {key}"

                target = self._free_target(chan_dir.name)
                if not self._move(chan_dir, target):
                    continue
                logger.info(
                    "[🗄️] Moved backup %s/%s to %s (%s)",
                    key_dir.name,
                    chan_dir.name,
                    target,
                    reason,
                )
                moved.append(target)

        if moved:
            logger.info("[🗄️] Relocated %d backup folder(s)", len(moved))
        return moved
