"""
Registry of leaderboard messages currently on display.

Everything runs on the bot's single event loop, so the registry is not
locked. Size is bounded: tracking past max_sessions evicts the session that
was refreshed least recently.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import List, Optional

from .logs import get_logger

logger = get_logger(__name__)


@dataclass
class LeaderboardSession:
    message_id: int
    channel_id: int          # where the leaderboard message lives
    source_channel_id: int   # confession channel whose votes are ranked
    page: int = 0
    page_size: int = 5


class LeaderboardSessions:
    def __init__(self, max_sessions: int = 50):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[int, LeaderboardSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._sessions

    def track(
        self,
        message_id: int,
        channel_id: int,
        source_channel_id: int,
        *,
        page: int = 0,
        page_size: int = 5,
    ) -> LeaderboardSession:
        session = LeaderboardSession(
            message_id=message_id,
            channel_id=channel_id,
            source_channel_id=source_channel_id,
            page=page,
            page_size=page_size,
        )
        self._sessions[message_id] = session
        self._sessions.move_to_end(message_id)
        while len(self._sessions) > self.max_sessions:
            evicted_id, _ = self._sessions.popitem(last=False)
            logger.info("Evicted leaderboard session %s (limit %s)", evicted_id, self.max_sessions)
        return session

    def get(self, message_id: int) -> Optional[LeaderboardSession]:
        return self._sessions.get(message_id)

    def touch(self, message_id: int) -> None:
        if message_id in self._sessions:
            self._sessions.move_to_end(message_id)

    def discard(self, message_id: int) -> None:
        self._sessions.pop(message_id, None)

    def snapshot(self) -> List[LeaderboardSession]:
        return list(self._sessions.values())
