"""
One-shot punishment latch per (guild, actor) with timed reset.

A latch is taken right before a remediation is dispatched and released by a
timer after the cooldown, whether or not the remediation succeeded. While it
is held no second remediation for the same actor in the same guild may be
dispatched. The timer is unconditional: a remediation that outlives the
cooldown can overlap a second burst.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, Dict, Optional

from guardcord.util.logger import get_logger

logger = get_logger("punishment_latch")


@dataclass(slots=True)
class LatchEntry:
    """A held latch, its expiry deadline and the timer that clears it."""
    expires_at: float
    handle: Optional[asyncio.TimerHandle] = None


class PunishmentDeduplicator:
    """
    Per-guild set of latched actors.

    ``clock`` returns seconds on a monotonic scale and is only used for the
    deadline stored alongside each latch; the event loop timer is what
    normally clears it. When no loop is running the deadline alone expires
    the latch on the next access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.latched: DefaultDict[int, Dict[int, LatchEntry]] = defaultdict(dict)
        self._clock = clock

    def try_latch(self, guild_id: int, actor_id: int, cooldown_ms: int) -> bool:
        """Take the latch for ``actor_id`` in ``guild_id``.

        Returns:
            True if the caller now holds the latch and may remediate, False if
            the latch is already held.
        """
        guild_latches = self.latched[guild_id]
        entry = guild_latches.get(actor_id)
        if entry is not None:
            if entry.expires_at > self._clock():
                return False
            self._clear(guild_id, actor_id, entry)

        cooldown_seconds = max(cooldown_ms, 0) / 1000
        entry = LatchEntry(expires_at=self._clock() + cooldown_seconds)
        guild_latches[actor_id] = entry

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[PUNISHMENT LATCH] No running event loop; latch for %s in guild %s expires lazily", actor_id, guild_id)
            return True

        entry.handle = loop.call_later(cooldown_seconds, self._expire, guild_id, actor_id, entry)
        return True

    def is_latched(self, guild_id: int, actor_id: int) -> bool:
        entry = self.latched.get(guild_id, {}).get(actor_id)
        return entry is not None and entry.expires_at > self._clock()

    def release(self, guild_id: int, actor_id: int) -> bool:
        """Clear a latch early, cancelling its pending timer. Return whether one was held."""
        entry = self.latched.get(guild_id, {}).get(actor_id)
        if entry is None:
            return False
        self._clear(guild_id, actor_id, entry)
        return True

    def shutdown(self) -> None:
        """Cancel every pending expiry timer and forget all latches."""
        for guild_latches in self.latched.values():
            for entry in guild_latches.values():
                if entry.handle is not None:
                    entry.handle.cancel()
        self.latched.clear()

    def _expire(self, guild_id: int, actor_id: int, entry: LatchEntry) -> None:
        # A newer latch for the same actor must survive an older timer
        if self.latched.get(guild_id, {}).get(actor_id) is entry:
            self._clear(guild_id, actor_id, entry)
            logger.debug("[PUNISHMENT LATCH] Cooldown expired for %s in guild %s", actor_id, guild_id)

    def _clear(self, guild_id: int, actor_id: int, entry: LatchEntry) -> None:
        if entry.handle is not None:
            entry.handle.cancel()
        guild_latches = self.latched.get(guild_id)
        if guild_latches is None:
            return
        guild_latches.pop(actor_id, None)
        if not guild_latches:
            del self.latched[guild_id]
