"""Event listener Cog for Guardcord.

This cog has exactly ONE responsibility: handle bot lifecycle events
(on_ready, on_guild_join, on_guild_remove).
"""

import discord
from discord.ext import commands

from guardcord.configuration.app_configuration import ProtectionSettings
from guardcord.protection.abuse_detector import AbuseDetector
from guardcord.util.logger import get_logger

logger = get_logger("events_listener")

UNAPPROVED_GUILD_MESSAGE = (
    "Hello! I was added to your server **{guild_name}**, but I'm currently only available "
    "for approved servers. If you'd like to use this bot, please contact the bot owner for approval."
)


class EventsListenerCog(commands.Cog):
    """Handles Discord bot lifecycle events."""

    def __init__(self, bot: discord.Bot, settings: ProtectionSettings, detector: AbuseDetector) -> None:
        self.bot = bot
        self.settings = settings
        self.detector = detector
        logger.info("[EVENTS LISTENER] Events listener cog loaded")

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    async def _update_presence(self) -> None:
        count = len(self.bot.guilds)
        await self.bot.change_presence(
            status=discord.Status.online,
            activity=discord.Activity(
                type=discord.ActivityType.watching,
                name=f"{count} server{'s' if count != 1 else ''}",
            ),
        )

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self) -> None:
        """Set bot presence and start the window sweeper."""
        if not self.bot.user:
            logger.warning("[EVENTS LISTENER] Bot partially connected - user info not yet available.")
            return

        await self._update_presence()
        self.detector.start_sweeper(self.settings.sweep_interval_seconds)
        logger.info(
            "Bot connected as %s (ID: %s), protecting %d server(s)",
            self.bot.user, self.bot.user.id, len(self.bot.guilds),
        )

    @commands.Cog.listener(name="on_guild_join")
    async def on_guild_join(self, guild: discord.Guild) -> None:
        """Leave guilds that are not on the approved list, telling the owner why."""
        if self.settings.guild_allowed(guild.id):
            logger.info("[EVENTS LISTENER] Added to approved guild: %s (ID: %s)", guild.name, guild.id)
            await self._update_presence()
            return

        logger.warning("[EVENTS LISTENER] Added to non-approved guild: %s (ID: %s). Leaving...", guild.name, guild.id)
        try:
            owner = guild.owner or await guild.fetch_member(guild.owner_id)
            await owner.send(UNAPPROVED_GUILD_MESSAGE.format(guild_name=guild.name))
        except (discord.Forbidden, discord.HTTPException, AttributeError):
            logger.info("[EVENTS LISTENER] Could not DM the owner of guild %s about approval", guild.id)

        try:
            await guild.leave()
            logger.info("[EVENTS LISTENER] Left non-approved guild: %s (ID: %s)", guild.name, guild.id)
        except discord.HTTPException:
            logger.exception("[EVENTS LISTENER] Failed to leave non-approved guild %s", guild.id)

    @commands.Cog.listener(name="on_guild_remove")
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        # Policy is kept on disk in case the bot is added back
        logger.debug("[EVENTS LISTENER] Bot removed from guild: %s (ID: %s)", guild.name, guild.id)
        await self._update_presence()


def setup(bot: discord.Bot, settings: ProtectionSettings, detector: AbuseDetector) -> None:
    """Register the EventsListenerCog with the bot."""
    bot.add_cog(EventsListenerCog(bot, settings, detector))
