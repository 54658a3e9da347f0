"""Protection listener Cog for Guardcord.

Turns gateway events into observations for the abuse detector:

- member kicks and bans, correlated with the audit log to find the executor
- channel, role and webhook creation, with auto-delete of what was created
- channel deletion bursts
- vanity URL changes, punished and reverted unless the executor is allowed
- bot accounts joining while anti-bot protection is on

Handlers never raise into the gateway loop; unexpected errors are logged.
"""

import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, Set, Tuple

import discord
from discord.ext import commands

from guardcord.configuration.app_configuration import ProtectionSettings
from guardcord.datatypes.action_datatypes import (
    AUTO_DELETE_FLAGS,
    ActionKind,
    ColorClass,
    DetectionState,
    ObservedAction,
    RemediationResult,
)
from guardcord.datatypes.policy_datatypes import BOT_WHITELIST, PermissionFlag, RoleSlot
from guardcord.protection.abuse_detector import AbuseDetector
from guardcord.protection.remediation import DiscordRemediationInvoker, remediate
from guardcord.protection.security_log import (
    build_bot_record,
    build_creation_record,
    build_deletion_record,
    build_vanity_record,
)
from guardcord.util.discord_utils import (
    fetch_recent_audit_entry,
    fetch_vanity_change_entry,
    is_protected_actor,
    now_millis,
    role_ids,
)
from guardcord.util.logger import get_logger

logger = get_logger("protection_listener")

CREATION_DELETE_REASONS = {
    ActionKind.CHANNEL_CREATE: "Suspicious channel creation detected",
    ActionKind.ROLE_CREATE: "Suspicious role creation detected",
    ActionKind.WEBHOOK_CREATE: "Suspicious webhook creation detected",
}

UNAUTHORIZED_BOT_REASON = "Unauthorized bot - not whitelisted"
VANITY_CHANGE_REASON = "Unauthorized vanity URL change"
VANITY_REVERT_REASON = "Reverting unauthorized vanity change"

# Audit entries remembered per process to avoid observing one action twice
SEEN_AUDIT_ENTRIES_LIMIT = 512


class ProtectionListenerCog(commands.Cog):
    """Feeds destructive guild activity to the abuse detector."""

    def __init__(
        self,
        bot: discord.Bot,
        settings: ProtectionSettings,
        detector: AbuseDetector,
        invoker: DiscordRemediationInvoker,
    ) -> None:
        self.bot = bot
        self.settings = settings
        self.detector = detector
        self.invoker = invoker
        self._pending_bot_kicks: Set[asyncio.Task] = set()
        self._seen_audit_entries: "OrderedDict[Tuple[int, int], None]" = OrderedDict()
        logger.info("[PROTECTION LISTENER] Protection listener cog loaded")

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def _monitoring(self, guild: Optional[discord.Guild], kind: ActionKind) -> bool:
        """Whether ``kind`` is watched in ``guild`` at all: allowed guild, log channel and flag on."""
        if guild is None or not self.settings.guild_allowed(guild.id):
            return False
        if self.settings.log_channel_for(kind) is None:
            return False
        return bool(self.detector.policy_store.get_flag(guild.id, self.detector.rule_for(kind).flag))

    def _is_protected(self, guild: discord.Guild, user_id: int) -> bool:
        bot_user_id = self.bot.user.id if self.bot.user else None
        return is_protected_actor(guild, user_id, self.settings.owner_ids, bot_user_id)

    def _first_sighting(self, guild_id: int, entry_id: int) -> bool:
        """Remember an audit entry; False when it was already handled."""
        key = (guild_id, entry_id)
        if key in self._seen_audit_entries:
            return False
        self._seen_audit_entries[key] = None
        if len(self._seen_audit_entries) > SEEN_AUDIT_ENTRIES_LIMIT:
            self._seen_audit_entries.popitem(last=False)
        return True

    # ------------------------------------------------------------------
    # Mass kick / mass ban
    # ------------------------------------------------------------------

    async def _handle_member_removal(
        self, guild: discord.Guild, user: discord.abc.User, kind: ActionKind, audit_action: discord.AuditLogAction
    ) -> None:
        if not self._monitoring(guild, kind):
            return

        entry = await fetch_recent_audit_entry(
            guild, audit_action, target_id=user.id, max_age_seconds=self.settings.audit_log_max_age_seconds
        )
        if entry is None or entry.user is None:
            return

        executor_id = entry.user.id
        if self._is_protected(guild, executor_id):
            return

        event = ObservedAction(
            guild_id=guild.id, actor_id=executor_id, target_id=user.id, kind=kind, occurred_at_ms=now_millis()
        )
        outcome = await self.detector.observe(event, role_ids(guild.get_member(executor_id)))
        logger.debug(
            "[PROTECTION LISTENER] %s by %s in guild %s -> %s (%d/%d)",
            kind, executor_id, guild.id, outcome.state, outcome.count, outcome.threshold,
        )

    @commands.Cog.listener(name="on_member_remove")
    async def on_member_remove(self, member: discord.Member) -> None:
        """A member left; it only counts when the audit log shows a fresh kick of them."""
        try:
            await self._handle_member_removal(member.guild, member, ActionKind.KICK, discord.AuditLogAction.kick)
        except Exception:
            logger.exception("[PROTECTION LISTENER] Mass kick protection failed in guild %s", member.guild.id)

    @commands.Cog.listener(name="on_member_ban")
    async def on_member_ban(self, guild: discord.Guild, user: discord.User | discord.Member) -> None:
        try:
            await self._handle_member_removal(guild, user, ActionKind.BAN, discord.AuditLogAction.ban)
        except Exception:
            logger.exception("[PROTECTION LISTENER] Mass ban protection failed in guild %s", guild.id)

    # ------------------------------------------------------------------
    # Creation monitors
    # ------------------------------------------------------------------

    async def _handle_creation(
        self,
        guild: discord.Guild,
        kind: ActionKind,
        executor_id: Optional[int],
        object_name: str,
        object_id: int,
        delete: Callable[[str], Awaitable[RemediationResult]],
    ) -> None:
        """Observe one creation, delete the object when required and log it."""
        deletion: Optional[RemediationResult] = None

        if executor_id is not None and not self._is_protected(guild, executor_id):
            event = ObservedAction(
                guild_id=guild.id, actor_id=executor_id, target_id=object_id, kind=kind, occurred_at_ms=now_millis()
            )
            outcome = await self.detector.observe(event, role_ids(guild.get_member(executor_id)))

            if outcome.state is DetectionState.DISABLED:
                return

            auto_delete = self.detector.policy_store.get_flag(guild.id, AUTO_DELETE_FLAGS[kind])
            if outcome.state is not DetectionState.BYPASSED and (auto_delete or outcome.threshold_reached):
                deletion = await delete(CREATION_DELETE_REASONS[kind])

        await self.detector.log_sink.emit(
            build_creation_record(kind, guild.id, executor_id, object_name, object_id, deletion)
        )

    @commands.Cog.listener(name="on_guild_channel_create")
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        guild = channel.guild
        try:
            if not self._monitoring(guild, ActionKind.CHANNEL_CREATE):
                return
            entry = await fetch_recent_audit_entry(
                guild, discord.AuditLogAction.channel_create,
                target_id=channel.id, max_age_seconds=self.settings.audit_log_max_age_seconds,
            )
            executor_id = entry.user.id if entry is not None and entry.user is not None else None
            await self._handle_creation(
                guild, ActionKind.CHANNEL_CREATE, executor_id, f"#{channel.name}", channel.id,
                lambda reason: self.invoker.delete_channel(channel, reason),
            )
        except Exception:
            logger.exception("[PROTECTION LISTENER] Channel monitor failed in guild %s", guild.id)

    @commands.Cog.listener(name="on_guild_role_create")
    async def on_guild_role_create(self, role: discord.Role) -> None:
        guild = role.guild
        try:
            if not self._monitoring(guild, ActionKind.ROLE_CREATE):
                return
            entry = await fetch_recent_audit_entry(
                guild, discord.AuditLogAction.role_create,
                target_id=role.id, max_age_seconds=self.settings.audit_log_max_age_seconds,
            )
            executor_id = entry.user.id if entry is not None and entry.user is not None else None
            await self._handle_creation(
                guild, ActionKind.ROLE_CREATE, executor_id, role.name, role.id,
                lambda reason: self.invoker.delete_role(role, reason),
            )
        except Exception:
            logger.exception("[PROTECTION LISTENER] Role monitor failed in guild %s", guild.id)

    @commands.Cog.listener(name="on_webhooks_update")
    async def on_webhooks_update(self, channel: discord.abc.GuildChannel) -> None:
        """Webhook updates carry no payload; the audit log names the new webhook.

        The event also fires for edits and deletions, so one creation entry can
        be seen several times. Each entry is observed once.
        """
        guild = channel.guild
        try:
            if not self._monitoring(guild, ActionKind.WEBHOOK_CREATE):
                return
            entry = await fetch_recent_audit_entry(
                guild, discord.AuditLogAction.webhook_create,
                max_age_seconds=self.settings.audit_log_max_age_seconds,
            )
            if entry is None or entry.target is None:
                return

            webhooks = await channel.webhooks()
            webhook = discord.utils.get(webhooks, id=entry.target.id)
            if webhook is None:
                # Created in another channel, or already gone
                return
            if not self._first_sighting(guild.id, entry.id):
                return

            executor_id = entry.user.id if entry.user is not None else None
            await self._handle_creation(
                guild, ActionKind.WEBHOOK_CREATE, executor_id, webhook.name or "Unknown", webhook.id,
                lambda reason: self.invoker.delete_webhook(webhook, reason),
            )
        except Exception:
            logger.exception("[PROTECTION LISTENER] Webhook monitor failed in guild %s", guild.id)

    # ------------------------------------------------------------------
    # Channel deletion
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_guild_channel_delete")
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        """Count deletions per executor and log each one; the detector alerts on bursts."""
        guild = channel.guild
        try:
            if not self._monitoring(guild, ActionKind.CHANNEL_DELETE):
                return
            entry = await fetch_recent_audit_entry(
                guild, discord.AuditLogAction.channel_delete,
                target_id=channel.id, max_age_seconds=self.settings.audit_log_max_age_seconds,
            )
            executor_id = entry.user.id if entry is not None and entry.user is not None else None

            if executor_id is not None and not self._is_protected(guild, executor_id):
                event = ObservedAction(
                    guild_id=guild.id, actor_id=executor_id, target_id=channel.id,
                    kind=ActionKind.CHANNEL_DELETE, occurred_at_ms=now_millis(),
                )
                outcome = await self.detector.observe(event, role_ids(guild.get_member(executor_id)))
                if outcome.state is DetectionState.DISABLED:
                    return

            await self.detector.log_sink.emit(
                build_deletion_record(ActionKind.CHANNEL_DELETE, guild.id, executor_id, f"#{channel.name}", channel.id)
            )
        except Exception:
            logger.exception("[PROTECTION LISTENER] Channel deletion monitor failed in guild %s", guild.id)

    # ------------------------------------------------------------------
    # Vanity URL
    # ------------------------------------------------------------------

    async def _handle_vanity_change(self, before: discord.Guild, after: discord.Guild) -> Optional[RemediationResult]:
        """Punish and revert an unauthorized vanity change. Returns the revert result when one was attempted."""
        guild = after
        if not self.settings.guild_allowed(guild.id):
            return None
        channel_id = self.settings.vanity_channel_id
        if channel_id is None:
            return None
        policy = self.detector.policy_store
        if not policy.get_flag(guild.id, PermissionFlag.VANITY_PROTECTION_ENABLED):
            return None
        if before.vanity_url_code == after.vanity_url_code:
            return None

        entry = await fetch_vanity_change_entry(guild, max_age_seconds=self.settings.audit_log_max_age_seconds)
        if entry is None or entry.user is None:
            return None

        executor_id = entry.user.id
        old_code = getattr(entry.before, "vanity_url_code", before.vanity_url_code)
        new_code = getattr(entry.after, "vanity_url_code", after.vanity_url_code)

        allowed = self._is_protected(guild, executor_id) or self.detector.is_exempt(
            guild.id, executor_id, RoleSlot.VANITY_PROTECTION_BYPASS_ROLES, role_ids(guild.get_member(executor_id))
        )
        if allowed:
            logger.info("[PROTECTION LISTENER] Vanity URL of guild %s changed by %s", guild.id, executor_id)
            await self.detector.log_sink.emit(
                build_vanity_record(guild.id, executor_id, old_code, new_code), channel_id=channel_id
            )
            return None

        logger.warning(
            "[PROTECTION LISTENER] Unauthorized vanity change in guild %s by %s: %r -> %r",
            guild.id, executor_id, old_code, new_code,
        )
        remediation = self.settings.vanity_remediation
        punishment = await remediate(self.invoker, remediation, guild.id, executor_id, VANITY_CHANGE_REASON)
        revert = None
        if self.settings.vanity_revert:
            revert = await self.invoker.revert_vanity(guild, old_code, VANITY_REVERT_REASON)

        await self.detector.log_sink.emit(
            build_vanity_record(guild.id, executor_id, old_code, new_code, remediation, punishment, revert),
            channel_id=channel_id,
        )
        return revert

    @commands.Cog.listener(name="on_guild_update")
    async def on_guild_update(self, before: discord.Guild, after: discord.Guild) -> None:
        try:
            await self._handle_vanity_change(before, after)
        except Exception:
            logger.exception("[PROTECTION LISTENER] Vanity protection failed in guild %s", after.id)

    # ------------------------------------------------------------------
    # Anti-bot
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_member_join")
    async def on_member_join(self, member: discord.Member) -> None:
        """Kick bot accounts that are not on the guild's bot whitelist."""
        guild = member.guild
        try:
            if not member.bot or not self.settings.guild_allowed(guild.id):
                return
            if self.bot.user is not None and member.id == self.bot.user.id:
                return

            policy = self.detector.policy_store
            if not policy.get_flag(guild.id, PermissionFlag.ANTI_BOT_ENABLED):
                return

            channel_id = self.settings.anti_bot_channel_id
            if member.id in policy.get_user_bypass_list(guild.id, BOT_WHITELIST):
                logger.info("[PROTECTION LISTENER] Whitelisted bot %s joined guild %s", member.id, guild.id)
                await self.detector.log_sink.emit(
                    build_bot_record(guild.id, member.id, str(member), "Allowed: bot is whitelisted", ColorClass.INFO),
                    channel_id=channel_id,
                )
                return

            delay = self.settings.anti_bot_kick_delay_seconds
            logger.warning(
                "[PROTECTION LISTENER] Unauthorized bot %s joined guild %s; kicking in %gs", member.id, guild.id, delay
            )
            await self.detector.log_sink.emit(
                build_bot_record(
                    guild.id, member.id, str(member),
                    f"Unauthorized bot detected, kicking in {delay:g}s unless whitelisted", ColorClass.WARN,
                ),
                channel_id=channel_id,
            )

            task = asyncio.create_task(self._kick_bot_later(guild, member, delay))
            self._pending_bot_kicks.add(task)
            task.add_done_callback(self._pending_bot_kicks.discard)
        except Exception:
            logger.exception("[PROTECTION LISTENER] Anti-bot protection failed in guild %s", guild.id)

    async def _kick_bot_later(self, guild: discord.Guild, member: discord.Member, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            if guild.get_member(member.id) is None:
                logger.info("[PROTECTION LISTENER] Bot %s already left guild %s", member.id, guild.id)
                return

            result = await self.invoker.kick(guild.id, member.id, UNAUTHORIZED_BOT_REASON)
            if result.ok:
                record = build_bot_record(guild.id, member.id, str(member), "Kicked: bot was not whitelisted", ColorClass.DANGER)
            else:
                record = build_bot_record(
                    guild.id, member.id, str(member), f"Kick failed: {result.failure_reason}", ColorClass.WARN
                )
            await self.detector.log_sink.emit(record, channel_id=self.settings.anti_bot_channel_id)
        except Exception:
            logger.exception("[PROTECTION LISTENER] Delayed bot kick failed in guild %s", guild.id)

    def cog_unload(self) -> None:
        for task in list(self._pending_bot_kicks):
            task.cancel()


def setup(bot: discord.Bot, settings: ProtectionSettings, detector: AbuseDetector, invoker: DiscordRemediationInvoker) -> None:
    """Register the ProtectionListenerCog with the bot."""
    bot.add_cog(ProtectionListenerCog(bot, settings, detector, invoker))
