"""
Rate-windowed abuse detection.

The :class:`AbuseDetector` owns the occurrence windows and punishment latches
for the whole process. Each observed action walks the same path:

1. Policy gate: the guild flag for the action kind must be on.
2. Bypass gate: the actor must not hold the universal override role, a bypass
   role for the kind, or be listed as a bypass user for it.
3. Counting: the occurrence is recorded in the sliding window.
4. Trigger: at or above the threshold the punishment latch is taken; only the
   holder remediates, everyone else is suppressed until the cooldown ends.

The window and the latch are independent. A burst that keeps going through a
cooldown re-triggers as soon as the latch expires.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Mapping, Optional

from guardcord.configuration.guild_policy import GuildPolicyStore
from guardcord.datatypes.action_datatypes import (
    ActionKind,
    ActionRule,
    DetectionOutcome,
    DetectionState,
    ObservedAction,
)
from guardcord.datatypes.policy_datatypes import RoleSlot
from guardcord.protection.action_window import ActionWindow
from guardcord.protection.bypass import is_bypassed
from guardcord.protection.punishment_latch import PunishmentDeduplicator
from guardcord.protection.remediation import RemediationInvoker, remediate
from guardcord.protection.security_log import LogSink, build_detection_record, remediation_reason
from guardcord.util.discord_utils import now_millis
from guardcord.util.logger import get_logger

logger = get_logger("abuse_detector")


class AbuseDetector:
    """
    Detects bursts of monitored actions per (guild, actor, kind).

    Args:
        policy_store: Source of guild flags and bypass lists.
        invoker: Remediation boundary; only ``kick`` and ``ban`` are used here.
        log_sink: Receives one danger record per triggered burst.
        rules: Detection rule for every action kind that may be observed.
        cooldown_seconds: How long the punishment latch is held after a trigger.
        universal_bypass_role_id: Process-wide override role used when a guild
            has not set its own universal bypass role.
        window: Occurrence window to use; a fresh one is created by default.
        latch: Punishment latch to use; a fresh one is created by default.
    """

    def __init__(
        self,
        policy_store: GuildPolicyStore,
        invoker: RemediationInvoker,
        log_sink: LogSink,
        rules: Mapping[ActionKind, ActionRule],
        *,
        cooldown_seconds: float = 60.0,
        universal_bypass_role_id: Optional[int] = None,
        window: Optional[ActionWindow] = None,
        latch: Optional[PunishmentDeduplicator] = None,
    ) -> None:
        self.policy_store = policy_store
        self.invoker = invoker
        self.log_sink = log_sink
        self.rules: Dict[ActionKind, ActionRule] = dict(rules)
        self.cooldown_ms = int(cooldown_seconds * 1000)
        self.universal_bypass_role_id = universal_bypass_role_id
        self.window = window if window is not None else ActionWindow()
        self.latch = latch if latch is not None else PunishmentDeduplicator()
        self._sweeper_task: Optional[asyncio.Task] = None

    def rule_for(self, kind: ActionKind) -> ActionRule:
        """Return the rule for ``kind``. Raises KeyError for kinds without a rule."""
        return self.rules[kind]

    def _universal_role(self, guild_id: int) -> Optional[int]:
        guild_role = self.policy_store.get_role_list(guild_id, RoleSlot.UNIVERSAL_BYPASS_ROLE)
        return guild_role if guild_role is not None else self.universal_bypass_role_id

    def is_exempt(self, guild_id: int, actor_id: int, bypass_slot: RoleSlot, actor_role_ids: Iterable[int]) -> bool:
        """Whether the actor holds the universal role, a role in ``bypass_slot`` or a user bypass for it."""
        return is_bypassed(
            actor_role_ids,
            self._universal_role(guild_id),
            self.policy_store.get_role_list(guild_id, bypass_slot),
            actor_id=actor_id,
            bypass_user_ids=self.policy_store.get_user_bypass_list(guild_id, bypass_slot),
        )

    async def observe(self, event: ObservedAction, actor_role_ids: Iterable[int] = ()) -> DetectionOutcome:
        """Feed one monitored action to the detector.

        Args:
            event: The action with its already-resolved executor.
            actor_role_ids: Role ids the executor currently holds.

        Returns:
            DetectionOutcome: Where this occurrence left the burst. Remediation
            failures are reported in the outcome and the log record, never raised.
        """
        rule = self.rule_for(event.kind)

        if not self.policy_store.get_flag(event.guild_id, rule.flag):
            return DetectionOutcome(DetectionState.DISABLED, threshold=rule.threshold)

        if self.is_exempt(event.guild_id, event.actor_id, rule.bypass_slot, actor_role_ids):
            logger.debug("[ABUSE DETECTOR] %s bypasses %s in guild %s", event.actor_id, event.kind, event.guild_id)
            return DetectionOutcome(DetectionState.BYPASSED, threshold=rule.threshold)

        count = self.window.record(event.guild_id, event.actor_id, event.kind, event.occurred_at_ms, rule.window_seconds)
        if count < rule.threshold:
            return DetectionOutcome(DetectionState.COUNTING, count=count, threshold=rule.threshold)

        if not self.latch.try_latch(event.guild_id, event.actor_id, self.cooldown_ms):
            logger.debug(
                "[ABUSE DETECTOR] %s already punished in guild %s; suppressing (%d %s)",
                event.actor_id, event.guild_id, count, event.kind.label,
            )
            return DetectionOutcome(DetectionState.SUPPRESSED, count=count, threshold=rule.threshold)

        logger.warning(
            "[ABUSE DETECTOR] Mass %s by %s in guild %s: %d in %gs",
            event.kind.label, event.actor_id, event.guild_id, count, rule.window_seconds,
        )
        result = await remediate(self.invoker, rule.remediation, event.guild_id, event.actor_id, remediation_reason(rule, count))
        if result is not None and not result.ok:
            logger.warning("[ABUSE DETECTOR] Remediation of %s failed: %s", event.actor_id, result.failure_reason)

        await self.log_sink.emit(build_detection_record(event, rule, count, result))
        return DetectionOutcome(DetectionState.TRIGGERED, count=count, threshold=rule.threshold, remediation_result=result)

    # --------------------------
    # Housekeeping
    # --------------------------
    def sweep(self, now_ms: Optional[int] = None) -> int:
        """Drop windows whose occurrences have all expired. Returns the number removed."""
        window_seconds = {kind: rule.window_seconds for kind, rule in self.rules.items()}
        return self.window.sweep(now_ms if now_ms is not None else now_millis(), window_seconds)

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("[ABUSE DETECTOR] Window sweep failed")

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        """Start the periodic window sweep on the running loop. Calling it twice is a no-op."""
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.get_running_loop().create_task(self._sweep_forever(interval_seconds))
            logger.debug("[ABUSE DETECTOR] Window sweeper started (every %gs)", interval_seconds)
        return self._sweeper_task

    async def shutdown(self) -> None:
        """Stop the sweeper and cancel every pending latch timer."""
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None
        self.latch.shutdown()
