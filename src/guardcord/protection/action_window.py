"""
Sliding-window occurrence counter keyed by (guild, actor, action kind).

Timestamps are epoch milliseconds supplied by the caller; this module never
reads a clock. A key's timestamps are pruned lazily whenever that key is
recorded, and :meth:`ActionWindow.sweep` drops keys whose timestamps have all
expired so idle actors do not accumulate forever.
"""

from collections import defaultdict
from typing import DefaultDict, Dict, List, Mapping, Optional, Tuple

from guardcord.datatypes.action_datatypes import ActionKind
from guardcord.util.logger import get_logger

logger = get_logger("action_window")

ActorKey = Tuple[int, ActionKind]


def _cutoff(now_ms: int, window_seconds: float) -> float:
    return now_ms - window_seconds * 1000


class ActionWindow:
    """
    Per-(guild, actor, kind) occurrence timestamps.

    Attributes:
        windows: guild_id -> (actor_id, kind) -> ordered timestamps in ms.
        max_entries_per_key: Optional cap on timestamps kept per key; the
            oldest are dropped first once the cap is exceeded.
    """

    def __init__(self, max_entries_per_key: Optional[int] = None) -> None:
        if max_entries_per_key is not None and max_entries_per_key <= 0:
            raise ValueError("max_entries_per_key must be positive")
        self.windows: DefaultDict[int, Dict[ActorKey, List[int]]] = defaultdict(dict)
        self.max_entries_per_key = max_entries_per_key

    def record(self, guild_id: int, actor_id: int, kind: ActionKind, now_ms: int, window_seconds: float) -> int:
        """Record one occurrence at ``now_ms`` and return the count inside the window.

        Destructive: expired timestamps for the key are dropped and ``now_ms``
        is appended. Use :meth:`peek` to inspect without recording.
        """
        key = (actor_id, kind)
        cutoff = _cutoff(now_ms, window_seconds)
        timestamps = [ts for ts in self.windows[guild_id].get(key, []) if ts >= cutoff]
        timestamps.append(now_ms)

        if self.max_entries_per_key is not None and len(timestamps) > self.max_entries_per_key:
            timestamps = timestamps[-self.max_entries_per_key:]

        self.windows[guild_id][key] = timestamps
        return len(timestamps)

    def peek(self, guild_id: int, actor_id: int, kind: ActionKind, now_ms: int, window_seconds: float) -> int:
        """Return how many occurrences fall inside the window without mutating anything."""
        timestamps = self.windows.get(guild_id, {}).get((actor_id, kind), [])
        cutoff = _cutoff(now_ms, window_seconds)
        return sum(1 for ts in timestamps if ts >= cutoff)

    def sweep(self, now_ms: int, window_seconds_by_kind: Mapping[ActionKind, float]) -> int:
        """Drop every key whose timestamps have all left their window.

        Kinds missing from ``window_seconds_by_kind`` are left alone.

        Returns:
            Number of keys removed.
        """
        removed = 0
        for guild_id in list(self.windows):
            guild_windows = self.windows[guild_id]
            for key in list(guild_windows):
                window_seconds = window_seconds_by_kind.get(key[1])
                if window_seconds is None:
                    continue
                cutoff = _cutoff(now_ms, window_seconds)
                if all(ts < cutoff for ts in guild_windows[key]):
                    del guild_windows[key]
                    removed += 1
            if not guild_windows:
                del self.windows[guild_id]

        if removed:
            logger.debug("[ACTION WINDOW] Swept %d idle window(s)", removed)
        return removed

    def __len__(self) -> int:
        return sum(len(guild_windows) for guild_windows in self.windows.values())
