"""
Anonymous confessions bot.

- /confession posts an anonymous confession with 1-5 star vote buttons
- /top-confession shows a paginated leaderboard that keeps itself up to date
- Owner-only commands configure channels and the bot's presence
"""

__version__ = "0.2.0"
