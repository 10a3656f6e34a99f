from discord import app_commands


class BotError(Exception):
    """Base exception for bot-related errors."""


class ConfigError(BotError):
    """Raised when the environment configuration is missing or malformed."""


class OwnerOnly(app_commands.CheckFailure):
    """Raised by the owner gate when a non-owner invokes a privileged command."""


# User-facing notices (always sent ephemeral)
NO_PERMISSION = "You don't have permission to use this command."
TRY_AGAIN = "Something went wrong on our side. Please try again."
UNEXPECTED = "Something went wrong handling that."
NO_CONFESSION_CHANNEL = "No confession channel is configured. Ask an owner to run /setchannel."
INVALID_CONFESSION_CHANNEL = "The configured confession channel is invalid or unreachable."
TEXT_CHANNEL_REQUIRED = "You must pick a text channel."
DUPLICATE_VOTE = "You already rated this confession. Votes can't be changed."
LEADERBOARD_EXPIRED = "This leaderboard has expired. Run /top-confession again."
