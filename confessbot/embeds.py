from __future__ import annotations

from typing import Optional

import discord

VOTE_PREFIX = "vote_"
LEADERBOARD_PREV = "lb_prev"
LEADERBOARD_NEXT = "lb_next"


# -----------------------------
# Utilities
# -----------------------------
def defang_everyone_here(text: str) -> str:
    # Extra safety beyond AllowedMentions.none()
    return (
        text.replace("@everyone", "@\u200beveryone")
            .replace("@here", "@\u200bhere")
    )

def jump_link(guild_id: Optional[int], channel_id: int, message_id: int) -> str:
    return f"https://discord.com/channels/{guild_id or '@me'}/{channel_id}/{message_id}"

def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def parse_vote_custom_id(custom_id: str) -> Optional[int]:
    """vote_3 -> 3; anything else -> None."""
    if not custom_id.startswith(VOTE_PREFIX):
        return None
    raw = custom_id[len(VOTE_PREFIX):]
    if not raw.isdigit():
        return None
    stars = int(raw)
    return stars if 1 <= stars <= 5 else None


# -----------------------------
# Confession + log embeds
# -----------------------------
def build_confession_embed(content: str) -> discord.Embed:
    emb = discord.Embed(
        title="Anonymous confession",
        description=truncate(defang_everyone_here(content), 4096),
        timestamp=discord.utils.utcnow(),
    )
    emb.set_footer(text="This confession is anonymous. Rate it with the buttons below.")
    return emb

def build_vote_view() -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    for stars in range(1, 6):
        view.add_item(
            discord.ui.Button(
                label=f"{stars} ⭐",
                style=discord.ButtonStyle.secondary,
                custom_id=f"{VOTE_PREFIX}{stars}",
            )
        )
    return view

def build_log_embed(
    *,
    author: discord.abc.User,
    content: str,
    guild_id: Optional[int],
    channel_id: int,
    message_id: int,
) -> discord.Embed:
    emb = discord.Embed(
        title="Confession log",
        description="(Private log entry)",
        timestamp=discord.utils.utcnow(),
    )
    emb.add_field(name="Author", value=f"{author} (`{author.id}`)", inline=False)
    emb.add_field(name="Posted", value=jump_link(guild_id, channel_id, message_id), inline=False)
    emb.add_field(name="Content", value=truncate(content, 1024), inline=False)
    return emb
