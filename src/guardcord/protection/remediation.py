"""
Remediation calls the protection core makes against Discord.

Every call returns a :class:`RemediationResult` and never raises: permission
errors, missing targets, HTTP failures and timeouts are all reported as
failures with a reason string. Preconditions (bot privilege, owner and self
protection, role hierarchy, target still present) are checked here, not by
the detector.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Protocol

import discord

from guardcord.datatypes.action_datatypes import RemediationResult, RemediationType
from guardcord.util.logger import get_logger

logger = get_logger("remediation")

DEFAULT_TIMEOUT_SECONDS = 10.0


class RemediationInvoker(Protocol):
    """Outbound remediation boundary used by the abuse detector."""

    async def kick(self, guild_id: int, actor_id: int, reason: str) -> RemediationResult: ...

    async def ban(self, guild_id: int, actor_id: int, reason: str) -> RemediationResult: ...


async def remediate(invoker: RemediationInvoker, remediation: RemediationType, guild_id: int, actor_id: int, reason: str) -> RemediationResult | None:
    """Dispatch ``remediation`` through ``invoker``. Returns None for :attr:`RemediationType.NONE`."""
    match remediation:
        case RemediationType.KICK:
            return await invoker.kick(guild_id, actor_id, reason)
        case RemediationType.BAN:
            return await invoker.ban(guild_id, actor_id, reason)
        case _:
            return None


class DiscordRemediationInvoker:
    """
    Remediation invoker backed by a py-cord client.

    Args:
        bot: Connected client used to resolve guilds and members.
        timeout_seconds: Upper bound for each remote call; slower calls are
            reported as failed rather than awaited forever.
    """

    def __init__(self, bot: discord.Client, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.bot = bot
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, call: Awaitable[object], description: str) -> RemediationResult:
        try:
            await asyncio.wait_for(call, timeout=self.timeout_seconds)
            return RemediationResult.success()
        except asyncio.TimeoutError:
            logger.warning("[REMEDIATION] %s timed out after %ss", description, self.timeout_seconds)
            return RemediationResult.failure(f"Timed out after {self.timeout_seconds:g}s")
        except discord.Forbidden:
            logger.warning("[REMEDIATION] %s forbidden", description)
            return RemediationResult.failure("Missing permissions")
        except discord.NotFound:
            return RemediationResult.failure("Target no longer exists")
        except discord.HTTPException as exc:
            logger.error("[REMEDIATION] %s failed: %s", description, exc)
            return RemediationResult.failure(f"Discord error: {exc}")

    async def _resolve_member(self, guild: discord.Guild, user_id: int) -> discord.Member | None:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await asyncio.wait_for(guild.fetch_member(user_id), timeout=self.timeout_seconds)
        except (discord.NotFound, discord.HTTPException, asyncio.TimeoutError):
            return None

    async def _check_member_target(self, guild_id: int, actor_id: int, permission: str) -> tuple[discord.Guild | None, discord.Member | None, RemediationResult | None]:
        """Resolve the guild and target member, or explain why remediation cannot proceed."""
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None, None, RemediationResult.failure("Guild not available")

        me = guild.me
        if me is None or not getattr(me.guild_permissions, permission, False):
            return guild, None, RemediationResult.failure(f"Bot lacks the {permission} permission")

        if actor_id == guild.owner_id:
            return guild, None, RemediationResult.failure("Target is the server owner")
        if self.bot.user is not None and actor_id == self.bot.user.id:
            return guild, None, RemediationResult.failure("Target is this bot")

        member = await self._resolve_member(guild, actor_id)
        if member is None:
            return guild, None, RemediationResult.failure("Target is no longer in the server")

        if member.top_role >= me.top_role:
            return guild, member, RemediationResult.failure("Target's highest role is not below the bot's")

        return guild, member, None

    async def kick(self, guild_id: int, actor_id: int, reason: str) -> RemediationResult:
        guild, member, problem = await self._check_member_target(guild_id, actor_id, "kick_members")
        if problem is not None:
            logger.info("[REMEDIATION] Not kicking %s in guild %s: %s", actor_id, guild_id, problem.failure_reason)
            return problem

        result = await self._bounded(guild.kick(member, reason=reason), f"Kick of {actor_id} in guild {guild_id}")
        if result.ok:
            logger.info("[REMEDIATION] Kicked %s from guild %s (%s)", actor_id, guild_id, reason)
        return result

    async def ban(self, guild_id: int, actor_id: int, reason: str) -> RemediationResult:
        guild, member, problem = await self._check_member_target(guild_id, actor_id, "ban_members")
        if problem is not None:
            logger.info("[REMEDIATION] Not banning %s in guild %s: %s", actor_id, guild_id, problem.failure_reason)
            return problem

        result = await self._bounded(guild.ban(member, reason=reason), f"Ban of {actor_id} in guild {guild_id}")
        if result.ok:
            logger.info("[REMEDIATION] Banned %s from guild %s (%s)", actor_id, guild_id, reason)
        return result

    async def delete_channel(self, channel: discord.abc.GuildChannel, reason: str) -> RemediationResult:
        return await self._bounded(channel.delete(reason=reason), f"Deletion of channel {channel.id}")

    async def delete_role(self, role: discord.Role, reason: str) -> RemediationResult:
        if not role.is_assignable():
            return RemediationResult.failure("Role is above the bot's highest role")
        return await self._bounded(role.delete(reason=reason), f"Deletion of role {role.id}")

    async def delete_webhook(self, webhook: discord.Webhook, reason: str) -> RemediationResult:
        return await self._bounded(webhook.delete(reason=reason), f"Deletion of webhook {webhook.id}")

    async def revert_vanity(self, guild: discord.Guild, vanity_code: str | None, reason: str) -> RemediationResult:
        """Put the guild's vanity URL back to ``vanity_code`` (None clears it)."""
        if "VANITY_URL" not in guild.features:
            return RemediationResult.failure("Server has no vanity URL feature")
        me = guild.me
        if me is None or not me.guild_permissions.manage_guild:
            return RemediationResult.failure("Bot lacks the manage_guild permission")

        result = await self._bounded(
            guild.edit(vanity_code=vanity_code or "", reason=reason), f"Vanity revert in guild {guild.id}"
        )
        if result.ok:
            logger.info("[REMEDIATION] Reverted vanity URL of guild %s to %r", guild.id, vanity_code)
        return result
