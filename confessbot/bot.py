"""
Confessions Bot (anonymous posts, star ratings, live leaderboard)
- discord.py slash commands + persistent buttons
- Vote buttons (vote_1..vote_5) and leaderboard buttons (lb_prev/lb_next) are
  routed by custom_id in on_interaction, so they keep working across restarts
- Confession audit log, settings and votes persisted in SQLite

Run:
  python -m confessbot

Env:
  DISCORD_TOKEN=...
  OWNER_IDS=123,456                (privileged users)
  DB_PATH=confessions.sqlite3      (optional; default)
  LEADERBOARD_REFRESH_SECONDS=60   (optional)
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import tasks
from dotenv import load_dotenv

from .config import BotConfig, ChannelSettings
from .embeds import (
    LEADERBOARD_NEXT,
    LEADERBOARD_PREV,
    build_confession_embed,
    build_log_embed,
    build_vote_view,
    parse_vote_custom_id,
)
from .errors import (
    DUPLICATE_VOTE,
    INVALID_CONFESSION_CHANNEL,
    LEADERBOARD_EXPIRED,
    NO_CONFESSION_CHANNEL,
    NO_PERMISSION,
    TEXT_CHANNEL_REQUIRED,
    TRY_AGAIN,
    UNEXPECTED,
    OwnerOnly,
)
from .leaderboard import LeaderboardService, star_glyphs
from .logs import get_logger, setup_logging
from .sessions import LeaderboardSessions
from .store import ConfessionStore

logger = get_logger(__name__)

STATUSES = {
    "online": discord.Status.online,
    "idle": discord.Status.idle,
    "dnd": discord.Status.dnd,
    "invisible": discord.Status.invisible,
}

ACTIVITY_TYPES = {
    "playing": discord.ActivityType.playing,
    "watching": discord.ActivityType.watching,
    "streaming": discord.ActivityType.streaming,
    "competing": discord.ActivityType.competing,
}


def build_activity(kind: str, text: str, stream_url: str) -> discord.BaseActivity:
    if kind not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {kind}")
    if kind == "streaming":
        return discord.Streaming(name=text, url=stream_url)
    return discord.Activity(type=ACTIVITY_TYPES[kind], name=text)


async def download_image(url: str, *, timeout: float = 15.0) -> bytes:
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()


# -----------------------------
# Bot
# -----------------------------
class ConfessionsBot(discord.Client):
    def __init__(self, store: ConfessionStore, config: BotConfig):
        intents = discord.Intents.default()
        intents.guilds = True
        super().__init__(intents=intents)

        self.tree = app_commands.CommandTree(self)
        self.tree.error(self.on_app_command_error)
        self.store = store
        self.config = config
        self.channels = ChannelSettings(store)
        self.sessions = LeaderboardSessions(max_sessions=config.max_sessions)
        self.leaderboards = LeaderboardService(
            store, self.sessions, lambda channel_id: self.get_channel(channel_id), page_size=config.page_size
        )

        self._presence_status = discord.Status.online
        self._presence_activity: Optional[discord.BaseActivity] = None

        self._register_commands()

    async def setup_hook(self) -> None:
        self.channels.load()
        await self.tree.sync()
        self.refresh_leaderboards.change_interval(seconds=self.config.refresh_seconds)
        self.refresh_leaderboards.start()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%s)", self.user, self.user.id if self.user else "?")

    async def close(self) -> None:
        self.refresh_leaderboards.cancel()
        await super().close()

    @tasks.loop(seconds=60)
    async def refresh_leaderboards(self) -> None:
        await self.leaderboards.refresh_all()

    @refresh_leaderboards.before_loop
    async def _before_refresh(self) -> None:
        await self.wait_until_ready()

    # --- gates / helpers ---
    def _owner_check(self, interaction: discord.Interaction) -> bool:
        if not self.config.is_owner(interaction.user.id):
            raise OwnerOnly(f"{interaction.user.id} is not an owner")
        return True

    def _confession_channel(self) -> Optional[discord.TextChannel]:
        channel_id = self.channels.confession_channel_id
        if channel_id is None:
            return None
        channel = self.get_channel(channel_id)
        return channel if isinstance(channel, discord.TextChannel) else None

    async def _safe_ephemeral(self, interaction: discord.Interaction, message: str) -> None:
        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException as e:
            logger.debug("Could not deliver ephemeral notice: %s", e)

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, OwnerOnly):
            await self._safe_ephemeral(interaction, NO_PERMISSION)
            return
        command = interaction.command.name if interaction.command else "?"
        logger.error("Command /%s failed", command, exc_info=error)
        await self._safe_ephemeral(interaction, UNEXPECTED)

    # --- confessions ---
    async def submit_confession(self, interaction: discord.Interaction, description: str) -> None:
        content = description.strip()
        if not content:
            await self._safe_ephemeral(interaction, "Confession can't be empty.")
            return
        if self.channels.confession_channel_id is None:
            await self._safe_ephemeral(interaction, NO_CONFESSION_CHANNEL)
            return
        channel = self._confession_channel()
        if channel is None:
            await self._safe_ephemeral(interaction, INVALID_CONFESSION_CHANNEL)
            return

        try:
            sent = await channel.send(
                embed=build_confession_embed(content),
                view=build_vote_view(),
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.HTTPException as e:
            logger.warning("Failed to post confession to %s: %s", channel.id, e)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        try:
            self.store.log_confession(interaction.user.id, content)
        except sqlite3.Error:
            logger.exception("Failed to write audit row for confession %s", sent.id)

        await self._safe_ephemeral(interaction, "Your confession has been sent.")
        await self._log_confession(interaction, content, channel, sent)

    async def _log_confession(
        self,
        interaction: discord.Interaction,
        content: str,
        channel: discord.TextChannel,
        sent: discord.Message,
    ) -> None:
        if self.channels.logs_channel_id is None:
            return
        logs = self.get_channel(self.channels.logs_channel_id)
        if not isinstance(logs, discord.TextChannel):
            logger.warning("Logs channel %s is not reachable", self.channels.logs_channel_id)
            return
        emb = build_log_embed(
            author=interaction.user,
            content=content,
            guild_id=channel.guild.id if channel.guild else None,
            channel_id=channel.id,
            message_id=sent.id,
        )
        try:
            await logs.send(embed=emb, allowed_mentions=discord.AllowedMentions.none())
        except discord.HTTPException as e:
            logger.warning("Failed to write confession log entry: %s", e)

    async def delete_confession(self, interaction: discord.Interaction, message_id: str) -> None:
        message_id = message_id.strip()
        if not message_id.isdigit():
            await self._safe_ephemeral(interaction, "That isn't a valid message id.")
            return
        channel = self._confession_channel()
        if channel is None:
            await self._safe_ephemeral(interaction, NO_CONFESSION_CHANNEL)
            return

        try:
            message = await channel.fetch_message(int(message_id))
        except discord.NotFound:
            await self._safe_ephemeral(interaction, "That confession no longer exists.")
            return
        except discord.HTTPException as e:
            logger.warning("Failed to fetch confession %s: %s", message_id, e)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        if self.user is not None and message.author.id != self.user.id:
            await self._safe_ephemeral(interaction, "That message isn't a confession.")
            return

        try:
            await message.delete()
        except discord.HTTPException as e:
            logger.warning("Failed to delete confession %s: %s", message.id, e)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        try:
            removed = self.store.delete_votes(message.id)
        except sqlite3.Error:
            logger.exception("Failed to purge votes for deleted confession %s", message.id)
            await self._safe_ephemeral(interaction, "Confession deleted, but its votes could not be cleared.")
            return
        await self._safe_ephemeral(interaction, f"Confession deleted ({removed} votes removed).")

    # --- votes ---
    async def handle_vote(self, interaction: discord.Interaction, stars: int) -> None:
        message = interaction.message
        if message is None:
            return
        try:
            recorded = self.store.record_vote(message.id, interaction.user.id, stars)
        except sqlite3.Error:
            logger.exception("Failed to record vote on %s", message.id)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        if not recorded:
            await self._safe_ephemeral(interaction, DUPLICATE_VOTE)
            return
        await self._safe_ephemeral(interaction, f"Thanks! You rated this confession {star_glyphs(stars)} ({stars}/5).")

    # --- leaderboard ---
    async def show_leaderboard(self, interaction: discord.Interaction) -> None:
        if self.channels.confession_channel_id is None:
            await self._safe_ephemeral(interaction, NO_CONFESSION_CHANNEL)
            return
        source = self._confession_channel()
        if source is None:
            await self._safe_ephemeral(interaction, INVALID_CONFESSION_CHANNEL)
            return

        await interaction.response.defer(thinking=True)
        try:
            page = await self.leaderboards.build(source)
        except sqlite3.Error:
            logger.exception("Failed to build leaderboard")
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        kwargs = {"embed": page.embed, "wait": True}
        if page.view is not None:
            kwargs["view"] = page.view
        try:
            sent = await interaction.followup.send(**kwargs)
        except discord.HTTPException as e:
            logger.warning("Failed to post leaderboard: %s", e)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return

        self.leaderboards.track(sent.id, interaction.channel_id, source.id, page=page.page)

    async def handle_leaderboard_page(self, interaction: discord.Interaction, delta: int) -> None:
        message = interaction.message
        if message is None:
            return
        if message.id not in self.sessions:
            await self._safe_ephemeral(interaction, LEADERBOARD_EXPIRED)
            return

        await interaction.response.defer()
        try:
            page = await self.leaderboards.paginate(message.id, delta)
        except sqlite3.Error:
            logger.exception("Failed to paginate leaderboard %s", message.id)
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return
        if page is None:
            await self._safe_ephemeral(interaction, LEADERBOARD_EXPIRED)
            return

        try:
            await interaction.edit_original_response(embed=page.embed, view=page.view)
        except discord.HTTPException as e:
            logger.warning("Failed to update leaderboard %s: %s", message.id, e)

    # --- settings ---
    async def set_channel(
        self, interaction: discord.Interaction, channel: discord.abc.GuildChannel, *, logs: bool = False
    ) -> None:
        if not isinstance(channel, discord.TextChannel):
            await self._safe_ephemeral(interaction, TEXT_CHANNEL_REQUIRED)
            return
        try:
            if logs:
                self.channels.set_logs_channel(channel.id)
            else:
                self.channels.set_confession_channel(channel.id)
        except sqlite3.Error:
            logger.exception("Failed to save %s channel", "logs" if logs else "confession")
            await self._safe_ephemeral(interaction, TRY_AGAIN)
            return
        label = "Logs" if logs else "Confession"
        logger.info("%s channel set to %s by %s", label, channel.id, interaction.user.id)
        await self._safe_ephemeral(interaction, f"{label} channel set to {channel.mention}")

    # --- presence ---
    async def set_presence(
        self,
        *,
        status: Optional[discord.Status] = None,
        activity: Optional[discord.BaseActivity] = None,
    ) -> None:
        if status is not None:
            self._presence_status = status
        if activity is not None:
            self._presence_activity = activity
        await self.change_presence(status=self._presence_status, activity=self._presence_activity)

    def _register_commands(self) -> None:
        owner_only = app_commands.check(self._owner_check)

        @self.tree.command(name="confession", description="Send an anonymous confession.")
        @app_commands.describe(description="Your confession")
        async def confession(interaction: discord.Interaction, description: str):
            await self.submit_confession(interaction, description)

        @self.tree.command(name="top-confession", description="Show the best-rated confessions.")
        async def top_confession(interaction: discord.Interaction):
            await self.show_leaderboard(interaction)

        @self.tree.command(name="setchannel", description="Set the confession channel (owner only).")
        @app_commands.describe(channel="Confession channel")
        @owner_only
        async def setchannel(interaction: discord.Interaction, channel: discord.abc.GuildChannel):
            await self.set_channel(interaction, channel)

        @self.tree.command(name="setlogs", description="Set the private logs channel (owner only).")
        @app_commands.describe(channel="Logs channel")
        @owner_only
        async def setlogs(interaction: discord.Interaction, channel: discord.abc.GuildChannel):
            await self.set_channel(interaction, channel, logs=True)

        @self.tree.command(name="reload-settings", description="Reload channel settings from the database (owner only).")
        @owner_only
        async def reload_settings(interaction: discord.Interaction):
            self.channels.reload()
            await self._safe_ephemeral(interaction, "Settings reloaded.")

        @self.tree.command(name="delete-confession", description="Delete a confession and its votes (owner only).")
        @app_commands.describe(message_id="Id of the confession message")
        @owner_only
        async def delete_confession(interaction: discord.Interaction, message_id: str):
            await self.delete_confession(interaction, message_id)

        @self.tree.command(name="bot-avatar", description="Change the bot avatar (owner only).")
        @app_commands.describe(url="Image URL")
        @owner_only
        async def bot_avatar(interaction: discord.Interaction, url: str):
            await interaction.response.defer(ephemeral=True, thinking=True)
            try:
                data = await download_image(url)
                await self.user.edit(avatar=data)
            except (aiohttp.ClientError, asyncio.TimeoutError, discord.HTTPException, ValueError) as e:
                logger.warning("Avatar update from %s failed: %s", url, e)
                await self._safe_ephemeral(interaction, TRY_AGAIN)
                return
            await self._safe_ephemeral(interaction, "Bot avatar updated.")

        @self.tree.command(name="bot-name", description="Change the bot username (owner only).")
        @app_commands.describe(name="New username")
        @owner_only
        async def bot_name(interaction: discord.Interaction, name: str):
            try:
                await self.user.edit(username=name)
            except discord.HTTPException as e:
                logger.warning("Username update failed: %s", e)
                await self._safe_ephemeral(interaction, TRY_AGAIN)
                return
            await self._safe_ephemeral(interaction, "Bot name updated.")

        @self.tree.command(name="bot-status", description="Change the bot status (owner only).")
        @app_commands.choices(status=[app_commands.Choice(name=s, value=s) for s in STATUSES])
        @owner_only
        async def bot_status(interaction: discord.Interaction, status: app_commands.Choice[str]):
            await self.set_presence(status=STATUSES[status.value])
            await self._safe_ephemeral(interaction, "Status updated.")

        @self.tree.command(name="bot-activities", description="Change the bot activity (owner only).")
        @app_commands.rename(kind="type")
        @app_commands.describe(kind="Activity type", description="Activity text")
        @app_commands.choices(kind=[app_commands.Choice(name=k.capitalize(), value=k) for k in ACTIVITY_TYPES])
        @owner_only
        async def bot_activities(interaction: discord.Interaction, kind: app_commands.Choice[str], description: str):
            activity = build_activity(kind.value, description, self.config.stream_url)
            await self.set_presence(activity=activity)
            await self._safe_ephemeral(interaction, "Activity updated.")

    # --- Restart-persistent button handling ---
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        if not interaction.data or not isinstance(interaction.data, dict):
            return
        custom_id = interaction.data.get("custom_id")
        if not isinstance(custom_id, str):
            return

        try:
            stars = parse_vote_custom_id(custom_id)
            if stars is not None:
                await self.handle_vote(interaction, stars)
            elif custom_id == LEADERBOARD_PREV:
                await self.handle_leaderboard_page(interaction, -1)
            elif custom_id == LEADERBOARD_NEXT:
                await self.handle_leaderboard_page(interaction, 1)
        except Exception:
            logger.exception("Unhandled error for component %s", custom_id)
            await self._safe_ephemeral(interaction, UNEXPECTED)


# -----------------------------
# Entrypoint
# -----------------------------
def main() -> None:
    load_dotenv()
    config = BotConfig.from_env()
    setup_logging(config.log_file, config.log_level)

    store = ConfessionStore(db_path=config.db_path)
    bot = ConfessionsBot(store=store, config=config)
    bot.run(config.token, log_handler=None)

if __name__ == "__main__":
    main()
