# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

import discord
from discord.errors import Forbidden

from backup.downloader import DownloadQueue, DownloadTask
from backup.selector import ChannelSelector, is_text_channel
from common import logctx
from common.state import CursorStore, MetadataStore

logger = logging.getLogger("backup")


class DiscordHistorySource:
    """Pages of channel history, oldest first, strictly after a message id."""

    def __init__(self, page_size: int = 100):
        self.page_size = page_size

    def can_read_history(self, channel) -> bool:
        me = getattr(getattr(channel, "guild", None), "me", None)
        if me is None:
            return False
        return bool(channel.permissions_for(me).read_message_history)

    async def fetch_page(self, channel, after_id: int) -> list:
        after = discord.Object(id=after_id) if after_id else None
        return [
            m
            async for m in channel.history(
                limit=self.page_size, after=after, oldest_first=True
            )
        ]


class BackupManager:
    def __init__(
        self,
        *,
        guilds: Callable[[], Iterable],
        selector: ChannelSelector,
        cursors: CursorStore,
        metadata: MetadataStore,
        queue: DownloadQueue,
        source: Optional[DiscordHistorySource] = None,
        page_delay: float = 1.0,
    ):
        self._guilds = guilds
        self.selector = selector
        self.cursors = cursors
        self.metadata = metadata
        self.queue = queue
        self.source = source or DiscordHistorySource()
        self.page_delay = page_delay
        self._sweep_task: asyncio.Task | None = None
        self._rerun = False

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def enqueue_attachments(self, channel, message, whitelist_key: str) -> int:
        guild_id = int(getattr(getattr(channel, "guild", None), "id", 0) or 0)
        queued = 0
        for att in list(getattr(message, "attachments", None) or []):
            self.queue.enqueue(
                DownloadTask(
                    server_id=guild_id,
                    channel_id=int(channel.id),
                    message_id=int(message.id),
                    attachment_id=int(att.id),
                    url=att.url,
                    whitelist_key=whitelist_key,
                )
            )
            logger.debug("[🧷] Queued download for message %s", message.id)
            queued += 1
        return queued

    async def backup_channel(
        self, channel, whitelist_key: str, start_after: Optional[int] = None
    ) -> int:
        """
        Walk the channel's history from its cursor to the head.

        ``start_after`` overrides the stored cursor as the starting point; a
        sweep passes the value it saw when it began so live messages that
        arrive before this channel's turn do not hide older history.

        After each page the cursor is moved to the highest id seen and the
        next page is only requested once the download queue is drained.
        Returns the number of downloads queued.
        """
        if not self.source.can_read_history(channel):
            logger.info("[🔒] Insufficient access to #%s", channel.name)
            return 0

        logger.info("[📦] Backing up #%s", channel.name)
        if start_after is None:
            start_after = self.cursors.get(channel.id)
        cursor = start_after
        queued = 0

        while True:
            try:
                page = await self.source.fetch_page(channel, cursor)
            except Forbidden:
                logger.info("[🔒] History of #%s is forbidden, skipping", channel.name)
                return queued

            if not page:
                break

            highest = cursor
            for message in page:
                if message.id > highest:
                    highest = message.id
                queued += self.enqueue_attachments(channel, message, whitelist_key)

            if highest <= cursor:
                break

            cursor = highest
            self.cursors.set(channel.id, cursor)
            logger.info("[📍] #%s is now on position %s", channel.name, cursor)

            if self.page_delay:
                await asyncio.sleep(self.page_delay)
            await self.queue.wait_drained()

        logger.info("[✅] Done backing up #%s", channel.name)
        return queued

    async def backup_all(self) -> None:
        started_at = dict(self.cursors.items())
        for guild in list(self._guilds()):
            for channel in list(getattr(guild, "channels", None) or []):
                if not is_text_channel(channel):
                    continue

                category_id = self.selector.category_of(channel)
                ok, key = self.selector.is_eligible(channel.id, category_id)
                if not ok:
                    logger.debug(
                        "[⏭️] Skipping backup of #%s, not on whitelist", channel.name
                    )
                    continue

                self.metadata.set(channel.id, channel.name, category_id)
                with logctx.bind(guild=guild.name, channel=channel.name):
                    try:
                        await self.backup_channel(
                            channel, key, start_after=started_at.get(channel.id, 0)
                        )
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception(
                            "[⛔] Backup of #%s (%s) failed", channel.name, channel.id
                        )

    def schedule_sweep(self) -> asyncio.Task:
        """
        Start a full sweep, or ask the running one to go around once more
        so whitelist changes made mid-sweep are picked up.
        """
        if self.is_sweeping:
            self._rerun = True
            return self._sweep_task
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="backup-sweep")
        return self._sweep_task

    async def _sweep_loop(self) -> None:
        while True:
            self._rerun = False
            logger.info("[🔄] Starting backup sweep")
            try:
                await self.backup_all()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[⛔] Backup sweep failed")
            if not self._rerun:
                logger.info("[✅] Backup sweep complete")
                return
            logger.info("[🔁] Whitelist changed during sweep, running again")

    def handle_message(self, message) -> bool:
        """
        Live path: queue the new message's attachments and move the cursor
        to it. Returns True when the channel is in scope.
        """
        channel = message.channel
        if getattr(message, "guild", None) is None or not is_text_channel(channel):
            return False

        category_id = self.selector.category_of(channel)
        ok, key = self.selector.is_eligible(channel.id, category_id)
        if not ok:
            return False

        self.metadata.set(channel.id, channel.name, category_id)
        self.enqueue_attachments(channel, message, key)
        self.cursors.set(channel.id, message.id)
        return True
