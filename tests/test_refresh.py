import asyncio
from unittest.mock import AsyncMock

import pytest

from confessbot.leaderboard import LeaderboardService, RefreshOutcome
from confessbot.sessions import LeaderboardSessions
from tests.fakes import FakeChannel, fake_message, http_error

SOURCE_ID = 1
DISPLAY_ID = 2


class SlowChannel(FakeChannel):
    """Yields to the loop on every fetch and counts the calls."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fetches = 0

    async def fetch_message(self, message_id: int):
        self.fetches += 1
        await asyncio.sleep(0)
        return await super().fetch_message(message_id)


@pytest.fixture
def channels(store):
    # 12 rated confessions -> 3 pages of 5
    confessions = [fake_message(100 + i, minutes=i) for i in range(12)]
    for i, message in enumerate(confessions):
        store.record_vote(message.id, 1, 1 + i % 5)
    return {
        SOURCE_ID: SlowChannel(SOURCE_ID, confessions),
        DISPLAY_ID: FakeChannel(DISPLAY_ID),
    }


@pytest.fixture
def service(store, channels):
    return LeaderboardService(store, LeaderboardSessions(max_sessions=10), channels.get, page_size=5)


def _display(channels, service, message_id, page=0):
    message = fake_message(message_id)
    channels[DISPLAY_ID].add(message)
    service.track(message_id, DISPLAY_ID, SOURCE_ID, page=page)
    return message


@pytest.mark.asyncio
async def test_deleted_leaderboard_skipped_others_refresh(service, channels) -> None:
    kept = _display(channels, service, 900)
    _display(channels, service, 901)
    del channels[DISPLAY_ID].messages[901]

    report = await service.refresh_all()

    assert report[RefreshOutcome.UPDATED] == 1
    assert report[RefreshOutcome.REMOVED] == 1
    kept.edit.assert_awaited_once()
    assert 900 in service.sessions
    assert 901 not in service.sessions


@pytest.mark.asyncio
async def test_failures_are_isolated_per_session(service, channels) -> None:
    broken_edit = _display(channels, service, 900)
    broken_edit.edit = AsyncMock(side_effect=http_error(403))
    _display(channels, service, 901)
    channels[DISPLAY_ID].fetch_errors[901] = RuntimeError("unexpected")
    healthy = _display(channels, service, 902)
    _display(channels, service, 903)
    channels[DISPLAY_ID].fetch_errors[903] = http_error(502)

    report = await service.refresh_all()

    assert report[RefreshOutcome.FAILED] == 2
    assert report[RefreshOutcome.SKIPPED] == 1
    assert report[RefreshOutcome.UPDATED] == 1
    healthy.edit.assert_awaited_once()
    # transient failures keep the session
    assert all(m in service.sessions for m in (900, 901, 902, 903))


@pytest.mark.asyncio
async def test_refresh_rerenders_current_page_on_fresh_votes(service, channels, store) -> None:
    message = _display(channels, service, 900, page=2)
    await service.refresh_one(service.sessions.get(900))
    embed = message.edit.await_args.kwargs["embed"]
    assert embed.footer.text.startswith("Page 3/3")

    newcomer = fake_message(500)
    channels[SOURCE_ID].add(newcomer)
    store.record_vote(500, 7, 5)
    await service.refresh_one(service.sessions.get(900))
    embed = message.edit.await_args.kwargs["embed"]
    assert embed.footer.text == "Page 3/3 · 13 rated confessions"


@pytest.mark.asyncio
async def test_missing_display_channel_skips_without_removing(service, channels) -> None:
    _display(channels, service, 900)
    del channels[DISPLAY_ID]
    assert await service.refresh_one(service.sessions.get(900)) is RefreshOutcome.SKIPPED
    assert 900 in service.sessions


@pytest.mark.asyncio
async def test_paginate_wraps_in_both_directions(service, channels) -> None:
    _display(channels, service, 900)

    page = await service.paginate(900, -1)
    assert (page.page, page.total_pages) == (2, 3)
    assert service.sessions.get(900).page == 2

    page = await service.paginate(900, 1)
    assert page.page == 0
    assert "**#1**" in page.embed.description


@pytest.mark.asyncio
async def test_paginate_expired_session(service) -> None:
    assert await service.paginate(12345, 1) is None


@pytest.mark.asyncio
async def test_paginate_uses_fresh_data(service, channels, store) -> None:
    _display(channels, service, 900, page=2)
    # shrink to two pages: the stale cursor is clamped before stepping
    for message_id in range(100, 103):
        store.delete_votes(message_id)
    page = await service.paginate(900, 1)
    assert page.total_pages == 2
    assert page.page == 0


@pytest.mark.asyncio
async def test_refresh_keeps_page_chosen_during_aggregation(service, channels) -> None:
    message = _display(channels, service, 900)

    click = asyncio.create_task(service.paginate(900, 1))
    await asyncio.sleep(0)  # click is now resolving confessions
    outcome = await service.refresh_one(service.sessions.get(900))
    shown = await click

    assert shown.page == 1
    assert outcome is RefreshOutcome.UPDATED
    assert service.sessions.get(900).page == 1
    embed = message.edit.await_args.kwargs["embed"]
    assert embed.footer.text.startswith("Page 2/3")


@pytest.mark.asyncio
async def test_refresh_resolves_each_source_channel_once(service, channels) -> None:
    for message_id in (900, 901, 902):
        _display(channels, service, message_id)

    report = await service.refresh_all()

    assert report[RefreshOutcome.UPDATED] == 3
    assert channels[SOURCE_ID].fetches == 12


@pytest.mark.asyncio
async def test_broken_source_only_fails_its_own_leaderboards(service, channels, store) -> None:
    healthy = _display(channels, service, 900)
    broken = FakeChannel(3, [fake_message(700)])
    broken.fetch_errors[700] = RuntimeError("unexpected")
    channels[3] = broken
    store.record_vote(700, 1, 5)
    orphan = fake_message(901)
    channels[DISPLAY_ID].add(orphan)
    service.track(901, DISPLAY_ID, 3)

    report = await service.refresh_all()

    assert report[RefreshOutcome.UPDATED] == 1
    assert report[RefreshOutcome.FAILED] == 1
    healthy.edit.assert_awaited_once()
    orphan.edit.assert_not_awaited()
