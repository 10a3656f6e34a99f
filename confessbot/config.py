from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from .errors import ConfigError
from .store import ConfessionStore

CONFESSION_CHANNEL_KEY = "confession_channel"
LOGS_CHANNEL_KEY = "logs_channel"


def _parse_owner_ids(raw: str) -> FrozenSet[int]:
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ConfigError(f"OWNER_IDS contains a non-numeric id: {part!r}")
        ids.add(int(part))
    return frozenset(ids)


def _int_env(env: Mapping[str, str], name: str, default: int, lo: int, hi: Optional[int] = None) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


@dataclass(frozen=True)
class BotConfig:
    token: str
    db_path: str = "confessions.sqlite3"
    owner_ids: FrozenSet[int] = field(default_factory=frozenset)
    page_size: int = 5
    refresh_seconds: int = 60
    max_sessions: int = 50
    stream_url: str = "https://www.twitch.tv/discord"
    log_level: str = "INFO"
    log_file: str = "logs/bot.log"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BotConfig":
        env = os.environ if env is None else env
        token = env.get("DISCORD_TOKEN")
        if not token:
            raise ConfigError("DISCORD_TOKEN env var is required.")
        return cls(
            token=token,
            db_path=env.get("DB_PATH") or "confessions.sqlite3",
            owner_ids=_parse_owner_ids(env.get("OWNER_IDS", "")),
            page_size=_int_env(env, "LEADERBOARD_PAGE_SIZE", 5, 1, 10),
            refresh_seconds=_int_env(env, "LEADERBOARD_REFRESH_SECONDS", 60, 10),
            max_sessions=_int_env(env, "LEADERBOARD_MAX_SESSIONS", 50, 1),
            stream_url=env.get("STREAM_URL") or "https://www.twitch.tv/discord",
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            log_file=env.get("LOG_FILE") or "logs/bot.log",
        )

    def is_owner(self, user_id: int) -> bool:
        return user_id in self.owner_ids


class ChannelSettings:
    """
    Confession/log channel ids shared by every handler.

    The in-memory values are authoritative until reload(); setters write
    through to the store before touching memory.
    """

    def __init__(self, store: ConfessionStore):
        self.store = store
        self.confession_channel_id: Optional[int] = None
        self.logs_channel_id: Optional[int] = None

    def load(self) -> None:
        self.confession_channel_id = self._read(CONFESSION_CHANNEL_KEY)
        self.logs_channel_id = self._read(LOGS_CHANNEL_KEY)

    reload = load

    def _read(self, key: str) -> Optional[int]:
        value = self.store.get_setting(key)
        if value is None or not value.isdigit():
            return None
        return int(value)

    def set_confession_channel(self, channel_id: int) -> None:
        self.store.set_setting(CONFESSION_CHANNEL_KEY, str(channel_id))
        self.confession_channel_id = channel_id

    def set_logs_channel(self, channel_id: int) -> None:
        self.store.set_setting(LOGS_CHANNEL_KEY, str(channel_id))
        self.logs_channel_id = channel_id
