"""
Security log records and the sink that posts them to Discord.

The protection code only builds :class:`SecurityLogRecord` payloads. Rendering
them as embeds and choosing the channel is the sink's job, and a guild without
a configured log channel simply gets nothing.
"""

from __future__ import annotations

import datetime
from typing import Dict, Optional, Protocol

import discord

from guardcord.configuration.app_configuration import ProtectionSettings
from guardcord.datatypes.action_datatypes import (
    ActionKind,
    ActionRule,
    ColorClass,
    ObservedAction,
    RemediationResult,
    RemediationType,
    SecurityLogRecord,
)
from guardcord.util.logger import get_logger

logger = get_logger("security_log")

FOOTER_TEXT = "Security"

COLOR_VALUES: Dict[ColorClass, int] = {
    ColorClass.INFO: 0x2ED573,
    ColorClass.WARN: 0xFF6B6B,
    ColorClass.DANGER: 0xFF4757,
}

CREATION_NOUNS: Dict[ActionKind, str] = {
    ActionKind.CHANNEL_CREATE: "Channel",
    ActionKind.ROLE_CREATE: "Role",
    ActionKind.WEBHOOK_CREATE: "Webhook",
}

DELETION_NOUNS: Dict[ActionKind, str] = {
    ActionKind.CHANNEL_DELETE: "Channel",
}


class LogSink(Protocol):
    async def emit(self, record: SecurityLogRecord, channel_id: Optional[int] = None) -> None: ...


def _user(user_id: int) -> str:
    return f"<@{user_id}> (`{user_id}`)"


def describe_result(remediation: RemediationType, result: Optional[RemediationResult]) -> str:
    """Turn a remediation outcome into the text shown in a log record."""
    if remediation is RemediationType.NONE or result is None:
        return "No action taken (alert only)"
    verb = "Kicked" if remediation is RemediationType.KICK else "Banned"
    if result.ok:
        return f"{verb} the executor"
    return f"Could not {remediation.value} the executor: {result.failure_reason}"


def remediation_reason(rule: ActionRule, count: int) -> str:
    """Reason string attached to a kick or ban for a detected burst."""
    return f"Mass {rule.kind.label} detected: {count} {rule.kind.label} in {rule.window_seconds:g}s"


def build_detection_record(event: ObservedAction, rule: ActionRule, count: int, result: Optional[RemediationResult]) -> SecurityLogRecord:
    """Danger record for a burst that crossed its threshold and was handled."""
    record = SecurityLogRecord(
        title=f"Mass {rule.kind.label} detected",
        color_class=ColorClass.DANGER,
        guild_id=event.guild_id,
        source=rule.kind,
    )
    record.add_field("Executor", _user(event.actor_id))
    record.add_field("Count", f"{count} {rule.kind.label} in {rule.window_seconds:g}s")
    record.add_field("Threshold", str(rule.threshold))
    record.add_field("Outcome", describe_result(rule.remediation, result), inline=False)
    return record


def build_creation_record(
    kind: ActionKind,
    guild_id: int,
    actor_id: Optional[int],
    object_name: str,
    object_id: int,
    deletion: Optional[RemediationResult] = None,
) -> SecurityLogRecord:
    """Record for one created channel, role or webhook.

    Info when the object was left in place, warn when it was deleted (or the
    deletion failed).
    """
    noun = CREATION_NOUNS[kind]
    if deletion is None:
        record = SecurityLogRecord(title=f"{noun} Created", color_class=ColorClass.INFO, guild_id=guild_id, source=kind)
    else:
        record = SecurityLogRecord(title=f"{noun} Deleted", color_class=ColorClass.WARN, guild_id=guild_id, source=kind)

    record.add_field(noun, f"{object_name} (`{object_id}`)")
    record.add_field("Created By", _user(actor_id) if actor_id is not None else "Unknown")
    if deletion is not None:
        status = "Auto-deleted" if deletion.ok else f"Deletion failed: {deletion.failure_reason}"
        record.add_field("Status", status, inline=False)
    return record


def build_deletion_record(kind: ActionKind, guild_id: int, actor_id: Optional[int], object_name: str, object_id: int) -> SecurityLogRecord:
    """Warn record for one deleted channel."""
    noun = DELETION_NOUNS[kind]
    record = SecurityLogRecord(title=f"{noun} Deleted", color_class=ColorClass.WARN, guild_id=guild_id, source=kind)
    record.add_field(noun, f"{object_name} (`{object_id}`)")
    record.add_field("Deleted By", _user(actor_id) if actor_id is not None else "Unknown")
    return record


def build_vanity_record(
    guild_id: int,
    actor_id: int,
    old_code: Optional[str],
    new_code: Optional[str],
    remediation: Optional[RemediationType] = None,
    punishment: Optional[RemediationResult] = None,
    revert: Optional[RemediationResult] = None,
) -> SecurityLogRecord:
    """Record for a vanity URL change.

    Without ``remediation`` the change was allowed (owner or bypass) and the
    record is info. Otherwise it is a danger record with the punishment and
    revert outcomes.
    """
    change = f"`{old_code or 'none'}` -> `{new_code or 'none'}`"
    if remediation is None:
        record = SecurityLogRecord(title="Vanity URL Changed", color_class=ColorClass.INFO, guild_id=guild_id)
        record.add_field("Changed By", _user(actor_id))
        record.add_field("Change", change)
        return record

    record = SecurityLogRecord(title="Unauthorized Vanity URL Change", color_class=ColorClass.DANGER, guild_id=guild_id)
    record.add_field("Violator", _user(actor_id))
    record.add_field("Change", change)
    record.add_field("Outcome", describe_result(remediation, punishment), inline=False)
    if revert is None:
        revert_status = "Revert disabled"
    elif revert.ok:
        revert_status = "Vanity URL reverted"
    else:
        revert_status = f"Revert failed: {revert.failure_reason}"
    record.add_field("Revert", revert_status, inline=False)
    return record


def build_bot_record(guild_id: int, bot_id: int, bot_name: str, status: str, color_class: ColorClass) -> SecurityLogRecord:
    """Record for a bot account joining under anti-bot protection."""
    record = SecurityLogRecord(title="Bot Join Detected", color_class=color_class, guild_id=guild_id)
    record.add_field("Bot", f"{bot_name} (`{bot_id}`)")
    record.add_field("Status", status, inline=False)
    return record


def render_embed(record: SecurityLogRecord) -> discord.Embed:
    embed = discord.Embed(
        title=record.title,
        color=COLOR_VALUES[record.color_class],
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    for log_field in record.fields:
        embed.add_field(name=log_field.name, value=log_field.value, inline=log_field.inline)
    embed.set_footer(text=FOOTER_TEXT)
    return embed


class DiscordLogSink:
    """
    Posts security records as embeds into the configured log channel.

    The channel is picked per record source (see
    :meth:`ProtectionSettings.log_channel_for`); a record can also name its
    channel explicitly through ``emit(record, channel_id=...)``. Delivery
    failures are logged and dropped.
    """

    def __init__(self, bot: discord.Client, settings: ProtectionSettings) -> None:
        self.bot = bot
        self.settings = settings

    async def _resolve_channel(self, channel_id: int) -> Optional[discord.abc.Messageable]:
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
            logger.warning("[SECURITY LOG] Log channel %s unavailable: %s", channel_id, exc)
            return None

    async def emit(self, record: SecurityLogRecord, channel_id: Optional[int] = None) -> None:
        target_id = channel_id if channel_id is not None else self.settings.log_channel_for(record.source)
        if target_id is None:
            logger.debug("[SECURITY LOG] No log channel configured; dropping '%s' for guild %s", record.title, record.guild_id)
            return

        channel = await self._resolve_channel(target_id)
        if channel is None:
            return

        try:
            await channel.send(embed=render_embed(record))
        except (discord.Forbidden, discord.HTTPException) as exc:
            logger.warning("[SECURITY LOG] Failed to post '%s' to channel %s: %s", record.title, target_id, exc)
