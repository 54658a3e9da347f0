"""
Guardcord Anti-Nuke Bot
=======================

A Discord bot that watches for destructive server activity (mass kicks and
bans, bursts of channel, role and webhook creation, unauthorized bots) and
stops it by removing the offending executor and what they created.
"""

import os
import sys
from pathlib import Path

def resolve_base_dir() -> Path:
    """Determine the base directory of the project. Designed for compiled/bundled execution.
    Resolution order:
    1. GUARDCORD_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("GUARDCORD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]

BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from guardcord.configuration.app_configuration import ConfigurationError, ProtectionSettings, app_config
from guardcord.configuration.guild_policy import GuildPolicyStore
from guardcord.protection.abuse_detector import AbuseDetector
from guardcord.protection.action_window import ActionWindow
from guardcord.protection.remediation import DiscordRemediationInvoker
from guardcord.protection.security_log import DiscordLogSink
from guardcord.util.logger import get_logger, handle_exception


logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Returns
    -------
    str
        Discord bot token extracted from the loaded environment.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Construct the Discord intents required for Guardcord protection features.

    Returns
    -------
    discord.Intents
        Intents enabling guild, member, moderation and webhook events.
    """
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.bans = True
    intents.webhooks = True
    return intents


def build_detector(bot: discord.Bot, settings: ProtectionSettings) -> tuple[AbuseDetector, DiscordRemediationInvoker]:
    """Wire the protection core around ``bot`` using validated settings."""
    invoker = DiscordRemediationInvoker(bot, timeout_seconds=settings.remediation_timeout_seconds)
    detector = AbuseDetector(
        GuildPolicyStore(settings.policy_path),
        invoker,
        DiscordLogSink(bot, settings),
        settings.rules,
        cooldown_seconds=settings.punishment_cooldown_seconds,
        universal_bypass_role_id=settings.universal_bypass_role,
        window=ActionWindow(max_entries_per_key=settings.max_timestamps_per_key),
    )
    return detector, invoker


def load_cogs(
    discord_bot_instance: discord.Bot,
    settings: ProtectionSettings,
    detector: AbuseDetector,
    invoker: DiscordRemediationInvoker,
) -> None:
    """Register all operational cogs with the provided Discord bot instance."""
    from guardcord.bot.cogs import events_listener, protection_listener

    events_listener.setup(discord_bot_instance, settings, detector)
    protection_listener.setup(discord_bot_instance, settings, detector, invoker)

    logger.info("All cogs loaded successfully.")


def create_bot(settings: ProtectionSettings) -> tuple[discord.Bot, AbuseDetector]:
    """Instantiate the Discord bot, the protection core and register all cogs."""
    bot = discord.Bot(intents=build_intents())
    detector, invoker = build_detector(bot, settings)
    load_cogs(bot, settings, detector, invoker)
    return bot, detector


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection.

    Parameters
    ----------
    bot:
        Discord client to start.
    token:
        Authentication token used to connect to Discord.
    """
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot | None = None, detector: AbuseDetector | None = None) -> None:
    """Stop the window sweeper, pending latch timers and the Discord connection."""
    if detector is not None:
        try:
            await detector.shutdown()
        except Exception as exc:
            logger.exception("Error during detector shutdown: %s", exc)

    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Validate configuration, start the bot and return an exit code.

    Returns
    -------
    int
        Process exit code reflecting success or failure of initialization.
    """
    token = load_environment()

    try:
        settings = app_config.protection
    except ConfigurationError as exc:
        logger.critical("Invalid protection configuration: %s", exc)
        return 1

    try:
        bot, detector = create_bot(settings)
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        return 1

    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, detector)

    return exit_code


def main() -> int:
    """Entrypoint that orchestrates the async runtime and returns the process code.

    Returns
    -------
    int
        Exit code propagated to the operating system.
    """
    logger.info("Starting Guardcord…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        if code is None:
            return 1
        try:
            return int(code)
        except (ValueError, TypeError):
            logger.warning("SystemExit.code is not an int (%r); defaulting to 1", code)
            return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    print(f"Exited with code: {main()}")
