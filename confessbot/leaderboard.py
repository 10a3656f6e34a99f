"""
Leaderboard over confession votes.

Every build re-reads the vote table and re-fetches each rated message, so
deleted confessions drop out on their own and nothing is cached between
calls. Pages wrap around: "previous" on the first page goes to the last.
"""

from __future__ import annotations

import asyncio
import enum
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import discord

from .embeds import LEADERBOARD_NEXT, LEADERBOARD_PREV, jump_link
from .logs import get_logger
from .sessions import LeaderboardSession, LeaderboardSessions
from .store import ConfessionStore

logger = get_logger(__name__)

STAR = "⭐"


@dataclass(frozen=True)
class LeaderboardEntry:
    message_id: int
    vote_count: int
    average_stars: float
    created_at: datetime


@dataclass
class LeaderboardPage:
    embed: discord.Embed
    view: Optional[discord.ui.View]
    page: int
    total_pages: int
    total_entries: int


def sort_entries(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    # Ties on average and count go to the older confession, then the lower id.
    return sorted(
        entries,
        key=lambda e: (-e.average_stars, -e.vote_count, e.created_at, e.message_id),
    )


async def aggregate(store: ConfessionStore, channel) -> List[LeaderboardEntry]:
    """Rank every voted message that can still be fetched from `channel`."""
    entries: List[LeaderboardEntry] = []
    for total in store.vote_totals():
        try:
            message = await channel.fetch_message(total.message_id)
        except discord.NotFound:
            continue
        except discord.HTTPException as e:
            logger.warning("Could not resolve message %s for leaderboard: %s", total.message_id, e)
            continue
        entries.append(
            LeaderboardEntry(
                message_id=total.message_id,
                vote_count=total.vote_count,
                average_stars=total.average_stars,
                created_at=message.created_at,
            )
        )
    return sort_entries(entries)


# -----------------------------
# Pagination
# -----------------------------
def total_pages(total_entries: int, page_size: int) -> int:
    return max(1, math.ceil(total_entries / page_size))

def clamp_page(page: int, pages: int) -> int:
    return max(0, min(page, pages - 1))

def step_page(page: int, delta: int, pages: int) -> int:
    return (clamp_page(page, pages) + delta) % pages

def star_count(average: float) -> int:
    # Half rounds up: 2.5 -> 3
    return max(1, min(5, math.floor(average + 0.5)))

def star_glyphs(average: float) -> str:
    return STAR * star_count(average)


def build_pagination_view() -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(discord.ui.Button(label="◀", style=discord.ButtonStyle.secondary, custom_id=LEADERBOARD_PREV))
    view.add_item(discord.ui.Button(label="▶", style=discord.ButtonStyle.secondary, custom_id=LEADERBOARD_NEXT))
    return view


def render_page(
    entries: List[LeaderboardEntry],
    page: int,
    page_size: int,
    *,
    guild_id: Optional[int],
    channel_id: int,
) -> LeaderboardPage:
    pages = total_pages(len(entries), page_size)
    page = clamp_page(page, pages)
    start = page * page_size
    chunk = entries[start:start + page_size]

    emb = discord.Embed(title="🏆 Top confessions", colour=discord.Colour.gold())
    if not chunk:
        emb.description = "No rated confessions yet."
    else:
        lines = []
        for rank, entry in enumerate(chunk, start=start + 1):
            votes = "vote" if entry.vote_count == 1 else "votes"
            lines.append(
                f"**#{rank}** {star_glyphs(entry.average_stars)} "
                f"**{entry.average_stars:.1f}**/5 · {entry.vote_count} {votes}\n"
                f"[Jump to confession]({jump_link(guild_id, channel_id, entry.message_id)})"
                f" · {discord.utils.format_dt(entry.created_at, 'f')}"
            )
        emb.description = "\n\n".join(lines)
    emb.set_footer(text=f"Page {page + 1}/{pages} · {len(entries)} rated confessions")

    view = build_pagination_view() if pages > 1 else None
    return LeaderboardPage(embed=emb, view=view, page=page, total_pages=pages, total_entries=len(entries))


# -----------------------------
# Live leaderboards
# -----------------------------
class RefreshOutcome(str, enum.Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass
class RefreshReport:
    outcomes: Counter = field(default_factory=Counter)

    def add(self, outcome: RefreshOutcome) -> None:
        self.outcomes[outcome] += 1

    def __getitem__(self, outcome: RefreshOutcome) -> int:
        return self.outcomes[outcome]

    def __str__(self) -> str:
        return ", ".join(f"{o.value}={self.outcomes[o]}" for o in RefreshOutcome)


class LeaderboardService:
    def __init__(
        self,
        store: ConfessionStore,
        sessions: LeaderboardSessions,
        resolve_channel: Callable[[int], object],
        page_size: int = 5,
    ):
        self.store = store
        self.sessions = sessions
        self.resolve_channel = resolve_channel
        self.page_size = page_size

    def _render(self, source_channel, entries: List[LeaderboardEntry], page: int, page_size: int) -> LeaderboardPage:
        guild = getattr(source_channel, "guild", None)
        return render_page(
            entries,
            page,
            page_size,
            guild_id=guild.id if guild else None,
            channel_id=source_channel.id,
        )

    async def build(self, source_channel, page: int = 0, page_size: Optional[int] = None) -> LeaderboardPage:
        entries = await aggregate(self.store, source_channel)
        return self._render(source_channel, entries, page, page_size or self.page_size)

    def track(self, message_id: int, channel_id: int, source_channel_id: int, page: int = 0) -> LeaderboardSession:
        return self.sessions.track(
            message_id, channel_id, source_channel_id, page=page, page_size=self.page_size
        )

    async def paginate(self, message_id: int, delta: int) -> Optional[LeaderboardPage]:
        """
        Move a displayed leaderboard by `delta` pages on fresh data.
        Returns None when the message is no longer tracked.
        """
        session = self.sessions.get(message_id)
        if session is None:
            return None
        source = self.resolve_channel(session.source_channel_id)
        if source is None:
            return None

        entries = await aggregate(self.store, source)
        # Cursor is read after the await, never across it.
        pages = total_pages(len(entries), session.page_size)
        session.page = step_page(session.page, delta, pages)
        self.sessions.touch(message_id)
        return self._render(source, entries, session.page, session.page_size)

    async def _entries_for(self, source_channel, shared: Optional[Dict[int, asyncio.Task]]) -> List[LeaderboardEntry]:
        if shared is None:
            return await aggregate(self.store, source_channel)
        task = shared.get(source_channel.id)
        if task is None:
            task = asyncio.create_task(aggregate(self.store, source_channel))
            shared[source_channel.id] = task
        return await task

    async def refresh_one(
        self,
        session: LeaderboardSession,
        shared: Optional[Dict[int, asyncio.Task]] = None,
    ) -> RefreshOutcome:
        """
        Re-render one live leaderboard at its current page.

        `shared` maps source channel ids to in-flight aggregations so
        leaderboards ranking the same channel resolve its messages once.
        """
        channel = self.resolve_channel(session.channel_id)
        if channel is None:
            return RefreshOutcome.SKIPPED
        try:
            message = await channel.fetch_message(session.message_id)
        except discord.NotFound:
            self.sessions.discard(session.message_id)
            return RefreshOutcome.REMOVED
        except discord.HTTPException:
            return RefreshOutcome.SKIPPED

        source = self.resolve_channel(session.source_channel_id)
        if source is None:
            return RefreshOutcome.SKIPPED

        entries = await self._entries_for(source, shared)
        # Cursor is read after the await, never across it.
        rendered = self._render(source, entries, session.page, session.page_size)
        session.page = rendered.page
        try:
            await message.edit(embed=rendered.embed, view=rendered.view)
        except discord.NotFound:
            self.sessions.discard(session.message_id)
            return RefreshOutcome.REMOVED
        except discord.HTTPException as e:
            logger.warning("Failed to refresh leaderboard %s: %s", session.message_id, e)
            return RefreshOutcome.FAILED

        self.sessions.touch(session.message_id)
        return RefreshOutcome.UPDATED

    async def refresh_all(self) -> RefreshReport:
        sessions = self.sessions.snapshot()
        shared: Dict[int, asyncio.Task] = {}
        results = await asyncio.gather(
            *(self.refresh_one(session, shared) for session in sessions),
            return_exceptions=True,
        )

        report = RefreshReport()
        for session, result in zip(sessions, results):
            if isinstance(result, BaseException):
                logger.error("Leaderboard %s refresh raised", session.message_id, exc_info=result)
                report.add(RefreshOutcome.FAILED)
            else:
                report.add(result)

        if sessions:
            logger.debug("Leaderboard refresh: %s", report)
        return report
