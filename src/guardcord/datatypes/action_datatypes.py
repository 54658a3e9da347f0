"""
Action kinds and data structures passed through the protection pipeline.

This module defines the monitored action kinds, the inbound event shape, the
per-kind detection rule, the detector outcome, remediation results and the
structured security log record handed to the log sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from guardcord.datatypes.policy_datatypes import PermissionFlag, RoleSlot


class ActionKind(str, Enum):
    """Enumeration of monitored actions."""

    KICK = "kick"
    BAN = "ban"
    CHANNEL_CREATE = "channel_create"
    ROLE_CREATE = "role_create"
    WEBHOOK_CREATE = "webhook_create"
    CHANNEL_DELETE = "channel_delete"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        """Human readable plural used in reasons and log records ("bans", "channel creations")."""
        return ACTION_LABELS[self]


ACTION_LABELS: Dict[ActionKind, str] = {
    ActionKind.KICK: "kicks",
    ActionKind.BAN: "bans",
    ActionKind.CHANNEL_CREATE: "channel creations",
    ActionKind.ROLE_CREATE: "role creations",
    ActionKind.WEBHOOK_CREATE: "webhook creations",
    ActionKind.CHANNEL_DELETE: "channel deletions",
}

# Maps each monitored action to the guild flag that enables it and its bypass slot
ACTION_POLICY_FIELDS: Dict[ActionKind, Tuple[PermissionFlag, RoleSlot]] = {
    ActionKind.KICK: (PermissionFlag.MASS_KICK_ENABLED, RoleSlot.MASS_KICK_BYPASS_ROLES),
    ActionKind.BAN: (PermissionFlag.MASS_BAN_ENABLED, RoleSlot.MASS_BAN_BYPASS_ROLES),
    ActionKind.CHANNEL_CREATE: (PermissionFlag.CHANNEL_MONITOR_ENABLED, RoleSlot.CHANNEL_MONITOR_BYPASS_ROLES),
    ActionKind.ROLE_CREATE: (PermissionFlag.ROLE_MONITOR_ENABLED, RoleSlot.ROLE_MONITOR_BYPASS_ROLES),
    ActionKind.WEBHOOK_CREATE: (PermissionFlag.INTEGRATION_MONITOR_ENABLED, RoleSlot.INTEGRATION_MONITOR_BYPASS_ROLES),
    ActionKind.CHANNEL_DELETE: (PermissionFlag.CHANNEL_MONITOR_ENABLED, RoleSlot.CHANNEL_MONITOR_BYPASS_ROLES),
}

# Guild flag that makes every creation of that kind get deleted, burst or not
AUTO_DELETE_FLAGS: Dict[ActionKind, PermissionFlag] = {
    ActionKind.CHANNEL_CREATE: PermissionFlag.AUTO_DELETE_CHANNELS,
    ActionKind.ROLE_CREATE: PermissionFlag.AUTO_DELETE_ROLES,
    ActionKind.WEBHOOK_CREATE: PermissionFlag.AUTO_DELETE_WEBHOOKS,
}


class RemediationType(str, Enum):
    """What to do with the actor once a burst is detected."""

    KICK = "kick"
    BAN = "ban"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ActionRule:
    """Detection parameters for one action kind.

    Attributes:
        kind: The monitored action kind
        threshold: Occurrence count (inclusive) at which a burst is detected
        window_seconds: Length of the trailing window occurrences are counted in
        remediation: Action taken against the actor when a burst triggers
    """
    kind: ActionKind
    threshold: int
    window_seconds: float
    remediation: RemediationType = RemediationType.KICK

    @property
    def flag(self) -> PermissionFlag:
        return ACTION_POLICY_FIELDS[self.kind][0]

    @property
    def bypass_slot(self) -> RoleSlot:
        return ACTION_POLICY_FIELDS[self.kind][1]


@dataclass(frozen=True, slots=True)
class ObservedAction:
    """One monitored action with its already-resolved executor.

    Attributes:
        guild_id: Guild the action happened in
        actor_id: Account that performed the action (audit-log executor)
        target_id: Object the action was performed on, when known
        kind: Monitored action kind
        occurred_at_ms: Observation time in epoch milliseconds
    """
    guild_id: int
    actor_id: int
    target_id: Optional[int]
    kind: ActionKind
    occurred_at_ms: int


class DetectionState(str, Enum):
    """Where a single observation left the (guild, actor, kind) burst."""

    DISABLED = "disabled"
    BYPASSED = "bypassed"
    COUNTING = "counting"
    TRIGGERED = "triggered"
    SUPPRESSED = "suppressed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class RemediationResult:
    """Outcome of a remediation attempt. Failures carry a human readable reason."""
    ok: bool
    failure_reason: Optional[str] = None

    @classmethod
    def success(cls) -> "RemediationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "RemediationResult":
        return cls(ok=False, failure_reason=reason)


@dataclass(frozen=True, slots=True)
class DetectionOutcome:
    """Result of feeding one observation to the detector."""
    state: DetectionState
    count: int = 0
    threshold: int = 0
    remediation_result: Optional[RemediationResult] = None

    @property
    def threshold_reached(self) -> bool:
        """True when the window count was at or above the threshold (triggered or suppressed)."""
        return self.state in (DetectionState.TRIGGERED, DetectionState.SUPPRESSED)


class ColorClass(str, Enum):
    """Severity of a security log record."""

    INFO = "info"
    WARN = "warn"
    DANGER = "danger"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class LogField:
    name: str
    value: str
    inline: bool = True


@dataclass(slots=True)
class SecurityLogRecord:
    """Structured log event handed to the log sink.

    Attributes:
        title: Short headline of the event
        color_class: Severity of the event
        fields: Ordered name/value pairs describing actor, action and outcome
        guild_id: Guild the event belongs to
        source: Action kind whose log channel should receive the record
    """
    title: str
    color_class: ColorClass
    guild_id: int
    fields: List[LogField] = field(default_factory=list)
    source: Optional[ActionKind] = None

    def add_field(self, name: str, value: str, inline: bool = True) -> "SecurityLogRecord":
        self.fields.append(LogField(name=name, value=value, inline=inline))
        return self
