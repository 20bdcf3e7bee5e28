# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import discord
from discord.ext import commands
from discord import Option
from discord import errors as discord_errors
import logging

from common.state import WhitelistStore, is_valid_key

logger = logging.getLogger("backup")


def _chunk_lines(xs: list[str], limit: int = 1900) -> list[str]:
    chunks, cur = [], ""
    for line in xs:
        if cur and len(cur) + len(line) + 1 > limit:
            chunks.append(cur)
            cur = ""
        cur = f"{cur}\n{line}" if cur else line
    if cur:
        chunks.append(cur)
    return chunks


def can_manage_backups(member) -> bool:
    perms = getattr(member, "guild_permissions", None)
    if perms is None:
        return False
    return bool(perms.administrator or perms.manage_channels)


class BackupCommands(commands.Cog):
    """
    Slash commands for editing the backup whitelist. Restricted to guild
    members with Administrator or Manage Channels.
    """

    def __init__(self, bot, whitelist: WhitelistStore, manager):
        self.bot = bot
        self.whitelist = whitelist
        self.manager = manager

    async def cog_check(self, ctx: discord.ApplicationContext):
        if ctx.guild is None:
            await ctx.respond(
                "This command can only be used from within a guild", ephemeral=True
            )
            return False

        if not can_manage_backups(ctx.author):
            await ctx.respond("This command is an admin only command", ephemeral=True)
            logger.warning(
                "[⚠️] Unauthorized access: %s (%s) attempted to run %s",
                ctx.author,
                getattr(ctx.author, "id", "?"),
                ctx.command.name if ctx.command else "<unknown>",
            )
            return False
        return True

    @commands.Cog.listener()
    async def on_application_command_error(self, ctx, error):
        orig = getattr(error, "original", None)
        err = orig or error

        if isinstance(err, (commands.CheckFailure, discord_errors.CheckFailure)):
            return

        cmd = ctx.command.name if ctx.command else "<unknown>"
        logger.exception(f"Error in command '{cmd}':", exc_info=err)

    def list_lines(self) -> list[str]:
        return ["Currently whitelisted objects:"] + self.whitelist.keys()

    def add_key(self, value: str) -> str:
        value = (value or "").strip()
        if not value:
            return "A whitelist object is required"
        if not is_valid_key(value):
            return f"{value} is not a valid whitelist object"
        if not self.whitelist.add(value):
            return f"{value} is already backed up"
        logger.info("[➕] Added %s to backups", value)
        self.manager.schedule_sweep()
        return f"Adding {value} to backups"

    def remove_key(self, value: str) -> str:
        value = (value or "").strip()
        if not self.whitelist.remove(value):
            return f"Removing {value} failed, key does not exist"
        logger.info("[➖] Removed %s from backups", value)
        self.manager.schedule_sweep()
        return f"Removing {value} from backups"

    @commands.slash_command(
        name="listbackup",
        description="List currently backed up objects",
    )
    async def listbackup(self, ctx: discord.ApplicationContext):
        chunks = _chunk_lines(self.list_lines())
        await ctx.respond(chunks[0])
        for extra in chunks[1:]:
            await ctx.followup.send(extra)

    @commands.slash_command(
        name="addbackup",
        description="Add a whitelist object to the backups",
    )
    async def addbackup(
        self,
        ctx: discord.ApplicationContext,
        value: str = Option(str, "ID of the whitelist object", required=True),
    ):
        await ctx.respond(self.add_key(value))

    @commands.slash_command(
        name="removebackup",
        description="Remove a whitelist object from the backups",
    )
    async def removebackup(
        self,
        ctx: discord.ApplicationContext,
        value: str = Option(str, "ID of the whitelist object", required=True),
    ):
        await ctx.respond(self.remove_key(value))
