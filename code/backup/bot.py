# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import aiohttp
import discord
from discord.errors import LoginFailure
from dotenv import load_dotenv
from common import logctx
from common.config import Config, CURRENT_VERSION
from common.state import CursorStore, MetadataStore, WhitelistStore, load_id_groups
from backup.backfill import BackupManager, DiscordHistorySource
from backup.commands import BackupCommands
from backup.downloader import DownloadQueue, Downloader
from backup.reconcile import ArchiveReconciler
from backup.selector import ChannelSelector, ObjectWhitelist, is_text_channel

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

LEVEL_NAME = os.getenv("LOG_LEVEL", "INFO").upper()
LEVEL = getattr(logging, LEVEL_NAME, logging.INFO)

formatter = logging.Formatter(
    "%(asctime)s | %(levelname)-5s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

root = logging.getLogger()
root.setLevel(LEVEL)

ch = logging.StreamHandler()
ch.setFormatter(formatter)
ch.setLevel(LEVEL)
root.addHandler(ch)

for lib in (
    "discord",
    "discord.client",
    "discord.gateway",
    "discord.state",
    "discord.http",
):
    logging.getLogger(lib).setLevel(logging.WARNING)
logging.getLogger("discord.client").setLevel(logging.ERROR)

logger = logging.getLogger("backup")


class _ChannelPrefixFilter(logging.Filter):
    """
    Prepend guild/channel names to every backup log line.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            prefix = logctx.format_prefix()
        except Exception:
            prefix = ""

        if prefix and not getattr(record, "_channel_prefix_injected", False):
            record.msg = prefix + str(record.msg)
            record._channel_prefix_injected = True
        return True


logger.addFilter(_ChannelPrefixFilter())

logger.setLevel(LEVEL)


class BackupBot:
    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config(logger=logger)
        self.bot = discord.Bot(intents=discord.Intents.all())

        self.data_store = self.config.make_data_store()
        self.cursors = CursorStore(self.data_store)
        self.metadata = MetadataStore(self.data_store)
        self.whitelist = WhitelistStore(self.data_store)
        self.cursors.load_all()
        self.metadata.load_all()
        self.whitelist.load_all()

        self.policy = ObjectWhitelist(load_id_groups(self.data_store))
        self.selector = ChannelSelector(self.whitelist, self.policy.object_ok)
        self.queue = DownloadQueue()
        self.downloader = Downloader(
            self.queue,
            self.config.BACKUP_DIR,
            timeout=self.config.DOWNLOAD_TIMEOUT_SECONDS,
        )
        self.manager = BackupManager(
            guilds=lambda: self.bot.guilds,
            selector=self.selector,
            cursors=self.cursors,
            metadata=self.metadata,
            queue=self.queue,
            source=DiscordHistorySource(page_size=self.config.PAGE_SIZE),
            page_delay=self.config.PAGE_DELAY_SECONDS,
        )
        self.reconciler = ArchiveReconciler(
            guilds=lambda: self.bot.guilds,
            selector=self.selector,
            backup_root=self.config.BACKUP_DIR,
            removed_root=self.config.REMOVED_DIR,
        )

        self.session: aiohttp.ClientSession | None = None
        self._download_task: asyncio.Task | None = None
        self._started = False

        self.bot.event(self.on_ready)
        self.bot.event(self.on_message)
        self.bot.event(self.on_guild_channel_update)
        self.bot.event(self.on_guild_channel_delete)
        self.bot.add_cog(BackupCommands(self.bot, self.whitelist, self.manager))

    async def on_ready(self):
        """
        Event handler that is called when the bot is ready. Gateway resumes
        fire it again, so startup work only runs once.
        """
        logger.info("[🤖] Logged in as %s", self.bot.user)
        if self._started:
            return
        self._started = True

        logger.info(
            "[⚙️] %d whitelist entries, %d channel cursors",
            len(self.whitelist),
            len(self.cursors),
        )

        self.session = aiohttp.ClientSession()
        self.downloader.set_session(self.session)

        try:
            self.reconciler.run()
        except Exception:
            logger.exception("[⛔] Backup folder reconciliation failed")

        self._download_task = asyncio.create_task(
            self.downloader.run(), name="attachment-downloader"
        )
        self.manager.schedule_sweep()

    async def on_message(self, message: discord.Message):
        try:
            self.manager.handle_message(message)
        except Exception:
            logger.exception("[⛔] Failed to back up message %s", message.id)

    async def on_guild_channel_update(self, before, after):
        if getattr(before, "category_id", None) != getattr(after, "category_id", None):
            self.selector.invalidate(after.id)
        if is_text_channel(after) and after.id in self.metadata:
            self.metadata.set(after.id, after.name, self.selector.category_of(after))

    async def on_guild_channel_delete(self, channel):
        self.selector.invalidate(channel.id)

    async def _shutdown(self):
        logger.info("Shutting down backup bot…")

        async def _cancel_and_wait(task, name: str):
            if not task:
                return
            try:
                task.cancel()
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.debug(
                    "[shutdown] %s task error during cancel/wait", name, exc_info=True
                )

        await _cancel_and_wait(self.manager._sweep_task, "sweep")
        await _cancel_and_wait(self._download_task, "downloader")

        try:
            if self.session is not None and not self.session.closed:
                await self.session.close()
        except Exception:
            logger.debug("[shutdown] aiohttp session close failed", exc_info=True)

        with contextlib.suppress(Exception):
            if not self.bot.is_closed():
                await self.bot.close()

        close = getattr(self.data_store, "close", None)
        if callable(close):
            with contextlib.suppress(Exception):
                close()

        logger.info("Shutdown complete.")

    def run(self):
        """
        Starts the backup bot and manages the event loop.
        """
        logger.info("[✨] Starting Backcord %s", CURRENT_VERSION)

        token = (self.config.BOT_TOKEN or "").strip()
        if not token:
            logger.error(
                "[⛔] BOT_TOKEN is missing. Set BOT_TOKEN in your environment "
                "before starting the bot."
            )
            return

        loop = asyncio.get_event_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig, lambda s=sig: asyncio.create_task(self._shutdown())
                )
            except (NotImplementedError, RuntimeError):
                break

        try:
            loop.run_until_complete(self.bot.start(token))
        except LoginFailure as e:
            logger.error(
                "[⛔] Discord login failed (LoginFailure): %s. Check BOT_TOKEN.", e
            )
        finally:
            loop.run_until_complete(self._shutdown())
            pending = asyncio.all_tasks(loop=loop)
            for task in pending:
                task.cancel()
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()


def main():
    BackupBot().run()


if __name__ == "__main__":
    main()
