"""
Unit tests for the backup whitelist slash commands.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from backup.commands import BackupCommands, _chunk_lines, can_manage_backups


def _member(admin=False, manage=False):
    return SimpleNamespace(
        id=1,
        guild_permissions=SimpleNamespace(administrator=admin, manage_channels=manage),
    )


@pytest.fixture
def cog(whitelist):
    return BackupCommands(MagicMock(), whitelist, MagicMock())


class TestPermissions:
    def test_admin_or_manage_channels(self):
        assert can_manage_backups(_member(admin=True))
        assert can_manage_backups(_member(manage=True))
        assert not can_manage_backups(_member())

    def test_user_outside_guild(self):
        assert not can_manage_backups(SimpleNamespace(id=1))

    @pytest.mark.asyncio
    async def test_cog_check_rejects_dm(self, cog):
        ctx = SimpleNamespace(guild=None, author=_member(admin=True), respond=AsyncMock())
        assert await cog.cog_check(ctx) is False
        ctx.respond.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cog_check_rejects_regular_member(self, cog):
        ctx = SimpleNamespace(
            guild=SimpleNamespace(id=1),
            author=_member(),
            command=SimpleNamespace(name="addbackup"),
            respond=AsyncMock(),
        )
        assert await cog.cog_check(ctx) is False
        assert "admin only" in ctx.respond.await_args.args[0]

    @pytest.mark.asyncio
    async def test_cog_check_allows_manager(self, cog):
        ctx = SimpleNamespace(
            guild=SimpleNamespace(id=1), author=_member(manage=True), respond=AsyncMock()
        )
        assert await cog.cog_check(ctx) is True
        ctx.respond.assert_not_awaited()


class TestWhitelistEdits:
    def test_add_saves_and_schedules_sweep(self, cog, whitelist):
        assert cog.add_key(" 123 ") == "Adding 123 to backups"
        assert whitelist.keys() == ["123"]
        cog.manager.schedule_sweep.assert_called_once()

    def test_add_duplicate(self, cog):
        cog.add_key("123")
        cog.manager.schedule_sweep.reset_mock()
        assert "already" in cog.add_key("123")
        cog.manager.schedule_sweep.assert_not_called()

    def test_add_rejects_key_with_path_separator(self, cog, whitelist):
        assert cog.add_key("a/b") == "a/b is not a valid whitelist object"
        assert whitelist.keys() == []
        cog.manager.schedule_sweep.assert_not_called()

    def test_remove_missing_key(self, cog):
        assert cog.remove_key("nope") == "Removing nope failed, key does not exist"
        cog.manager.schedule_sweep.assert_not_called()

    def test_remove_existing_key(self, cog, whitelist):
        cog.add_key("a")
        cog.add_key("b")
        assert cog.remove_key("a") == "Removing a from backups"
        assert whitelist.keys() == ["b"]
        assert cog.manager.schedule_sweep.call_count == 3

    def test_list_lines_in_order(self, cog):
        cog.add_key("z")
        cog.add_key("a")
        assert cog.list_lines() == ["Currently whitelisted objects:", "z", "a"]


def test_chunk_lines_respects_limit():
    lines = ["x" * 40] * 10
    chunks = _chunk_lines(lines, limit=100)
    assert all(len(c) <= 100 for c in chunks)
    assert "\n".join(chunks).count("x") == 400
