from __future__ import annotations

import pytest
import pytest_asyncio

from confessbot.bot import ConfessionsBot
from confessbot.config import BotConfig
from confessbot.store import ConfessionStore
from tests.fakes import OWNER_ID


@pytest.fixture
def store(tmp_path) -> ConfessionStore:
    return ConfessionStore(str(tmp_path / "test.db"))


@pytest_asyncio.fixture
async def bot(store):
    config = BotConfig(token="test-token", owner_ids=frozenset({OWNER_ID}), page_size=5)
    client = ConfessionsBot(store=store, config=config)
    client.test_channels = {}
    client.get_channel = lambda channel_id: client.test_channels.get(channel_id)
    yield client
