# =============================================================================
#  Backcord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import contextlib
import contextvars

guild_name = contextvars.ContextVar("guild_name", default=None)
channel_name = contextvars.ContextVar("channel_name", default=None)


def format_prefix() -> str:
    """
    Build a prefix like:
      - "[<guild>][#<channel>] " while a channel pass is running,
      - "[<guild>] " when only the guild is known, else "".
    """
    g = guild_name.get()
    c = channel_name.get()

    parts = []
    if g:
        parts.append(f"[{g}]")
    if c:
        parts.append(f"[#{c}]")

    return "".join(parts) + " " if parts else ""


@contextlib.contextmanager
def bind(guild: str | None = None, channel: str | None = None):
    """Set guild/channel names for log lines emitted inside the block."""
    g_tok = guild_name.set(guild)
    c_tok = channel_name.set(channel)
    try:
        yield
    finally:
        channel_name.reset(c_tok)
        guild_name.reset(g_tok)
