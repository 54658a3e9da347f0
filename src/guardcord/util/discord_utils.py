"""
discord_utils.py
================

Low-level Discord helpers for Guardcord.

Audit-log correlation for monitored actions, owner and self checks, and the
millisecond clock used to stamp observations. Nothing here keeps state.
"""

from __future__ import annotations

import datetime
import time
from typing import Iterable, List, Optional

import discord

from guardcord.util.logger import get_logger

logger = get_logger("discord_utils")


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def role_ids(member: discord.Member | discord.User | None) -> List[int]:
    """Return the ids of every role ``member`` holds (empty for plain users)."""
    roles = getattr(member, "roles", None) or []
    return [role.id for role in roles]


def is_protected_actor(guild: discord.Guild, user_id: int, owner_ids: Iterable[int], bot_user_id: Optional[int]) -> bool:
    """
    Check whether an executor must never be observed or remediated.

    Args:
        guild (discord.Guild): Guild the action happened in.
        user_id (int): The executor's id.
        owner_ids (Iterable[int]): Bot owners from configuration.
        bot_user_id (Optional[int]): This bot's own user id.

    Returns:
        bool: True for the guild owner, configured bot owners and the bot itself.
    """
    if user_id == guild.owner_id:
        return True
    if bot_user_id is not None and user_id == bot_user_id:
        return True
    return user_id in set(owner_ids)


async def fetch_recent_audit_entry(
    guild: discord.Guild,
    action: discord.AuditLogAction,
    target_id: Optional[int] = None,
    max_age_seconds: float = 5.0,
) -> Optional[discord.AuditLogEntry]:
    """
    Fetch the newest audit-log entry for ``action`` if it is fresh enough.

    Args:
        guild (discord.Guild): Guild whose audit log is read.
        action (discord.AuditLogAction): Audit-log action type to look for.
        target_id (Optional[int]): When set, the entry must target this id.
        max_age_seconds (float): Maximum age of the entry.

    Returns:
        Optional[discord.AuditLogEntry]: The matching entry, or None when there
        is none, it is stale, it targets something else, or the audit log
        cannot be read.
    """
    try:
        entry = None
        async for candidate in guild.audit_logs(limit=1, action=action):
            entry = candidate
    except discord.Forbidden:
        logger.debug("[DISCORD UTILS] Missing View Audit Log in guild %s", guild.id)
        return None
    except discord.HTTPException as exc:
        logger.warning("[DISCORD UTILS] Audit log fetch failed in guild %s: %s", guild.id, exc)
        return None

    if entry is None:
        return None

    if target_id is not None and getattr(entry.target, "id", None) != target_id:
        return None

    if not _is_fresh(entry, max_age_seconds):
        return None

    return entry


def _is_fresh(entry: discord.AuditLogEntry, max_age_seconds: float) -> bool:
    age = datetime.datetime.now(datetime.timezone.utc) - entry.created_at
    return age.total_seconds() <= max_age_seconds


async def fetch_vanity_change_entry(
    guild: discord.Guild,
    max_age_seconds: float = 5.0,
    scan_limit: int = 5,
) -> Optional[discord.AuditLogEntry]:
    """
    Find the newest guild-update audit entry that changed the vanity URL.

    Guild updates bundle unrelated setting changes, so the last ``scan_limit``
    entries are searched for one whose diff carries ``vanity_url_code``.

    Returns:
        Optional[discord.AuditLogEntry]: The entry, or None when none is fresh
        enough or the audit log cannot be read.
    """
    try:
        async for entry in guild.audit_logs(limit=scan_limit, action=discord.AuditLogAction.guild_update):
            if not _is_fresh(entry, max_age_seconds):
                return None
            if hasattr(entry.after, "vanity_url_code") or hasattr(entry.before, "vanity_url_code"):
                return entry
    except discord.Forbidden:
        logger.debug("[DISCORD UTILS] Missing View Audit Log in guild %s", guild.id)
    except discord.HTTPException as exc:
        logger.warning("[DISCORD UTILS] Audit log fetch failed in guild %s: %s", guild.id, exc)
    return None
