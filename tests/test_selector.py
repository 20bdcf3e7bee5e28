"""
Unit tests for channel eligibility and the category cache.
"""

from discord import ChannelType

from backup.selector import (
    NO_CATEGORY,
    ChannelSelector,
    ObjectWhitelist,
    is_text_channel,
)
from fakes import make_category, make_channel, make_guild


def _selector(keys, groups=None):
    policy = ObjectWhitelist(groups)
    return ChannelSelector(keys, policy.object_ok)


class TestObjectWhitelist:
    def test_numeric_key_matches_its_own_id(self):
        policy = ObjectWhitelist()
        assert policy.object_ok("123", 123)
        assert not policy.object_ok("123", 124)

    def test_group_key(self):
        policy = ObjectWhitelist({"art": [5, 6]})
        assert policy.object_ok("art", 6)
        assert not policy.object_ok("art", 7)

    def test_non_numeric_unknown_key(self):
        assert not ObjectWhitelist().object_ok("nope", 1)

    def test_zero_id_never_matches(self):
        assert not ObjectWhitelist({"all": [0]}).object_ok("all", 0)


class TestIsEligible:
    def test_channel_match_beats_category_match(self):
        sel = _selector(["B", "A"], {"A": [10], "B": [20]})
        assert sel.is_eligible(10, 20) == (True, "A")

    def test_category_fallback(self):
        sel = _selector(["B"], {"B": [20]})
        assert sel.is_eligible(10, 20) == (True, "B")

    def test_first_matching_key_in_list_order_wins(self):
        sel = _selector(["first", "second"], {"first": [10], "second": [10]})
        assert sel.is_eligible(10, 0) == (True, "first")

    def test_no_match(self):
        sel = _selector(["1"])
        assert sel.is_eligible(10, 20) == (False, None)

    def test_no_category_is_not_tested(self):
        calls = []

        def spy(key, oid):
            calls.append(oid)
            return False

        sel = ChannelSelector(["k"], spy)
        sel.is_eligible(10, NO_CATEGORY)
        assert calls == [10]

    def test_broken_predicate_is_treated_as_no_match(self):
        def boom(key, oid):
            if key == "bad":
                raise RuntimeError("x")
            return True

        sel = ChannelSelector(["bad", "good"], boom)
        assert sel.is_eligible(1, 0) == (True, "good")

    def test_reads_live_whitelist(self):
        keys = []
        sel = _selector(keys)
        assert sel.is_eligible(10, 0)[0] is False
        keys.append("10")
        assert sel.is_eligible(10, 0) == (True, "10")

    def test_sees_whitelist_store_edits(self, whitelist):
        sel = ChannelSelector(whitelist, ObjectWhitelist().object_ok)
        assert sel.is_eligible(10, 20) == (False, None)

        whitelist.add("20")
        assert sel.is_eligible(10, 20) == (True, "20")

        whitelist.add("10")
        assert sel.is_eligible(10, 20) == (True, "10")

        whitelist.remove("10")
        assert sel.is_eligible(10, 20) == (True, "20")


class TestCategoryCache:
    def _guild(self):
        a, b, c = make_channel(1), make_channel(2), make_channel(3)
        guild = make_guild(
            categories=[make_category(100, [a, b]), make_category(200, [c])],
            channels=[a, b, c, make_channel(4)],
        )
        return guild, a, b, c

    def test_miss_caches_all_siblings(self):
        guild, a, b, c = self._guild()
        sel = _selector([])
        assert sel.category_of(a) == 100

        guild.categories.clear()
        assert sel.category_of(b) == 100
        assert sel.category_of(c) == 200

    def test_uncategorised_channel_gets_sentinel(self):
        guild, *_ = self._guild()
        sel = _selector([])
        assert sel.category_of(guild.channels[3]) == NO_CATEGORY

    def test_channel_without_guild_gets_sentinel(self):
        sel = _selector([])
        assert sel.category_of(make_channel(77)) == NO_CATEGORY

    def test_invalidate_picks_up_moves(self):
        guild, a, b, c = self._guild()
        sel = _selector([])
        assert sel.category_of(a) == 100

        guild.categories[0].channels.remove(a)
        guild.categories[1].channels.append(a)
        assert sel.category_of(a) == 100
        sel.invalidate(a.id)
        assert sel.category_of(a) == 200

    def test_resolve_uses_category(self):
        guild, a, *_ = self._guild()
        sel = _selector(["100"])
        assert sel.resolve(a) == (True, "100")


def test_is_text_channel():
    assert is_text_channel(make_channel(1))
    assert is_text_channel(make_channel(1, ctype=ChannelType.news))
    assert not is_text_channel(make_channel(1, ctype=ChannelType.voice))
    assert not is_text_channel(make_category(1, []))
