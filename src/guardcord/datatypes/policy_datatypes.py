"""
Per-guild policy vocabulary: feature flags, role slots and their defaults.

A guild that never stored a value for a key reads the matching default from
the tables below. Flags are plain booleans; role slots are lists of role ids,
except the universal bypass slot which holds at most one role id.
"""

from enum import Enum
from typing import Dict, List, Optional, Union


class PermissionFlag(str, Enum):
    """Named boolean toggles controlling whether a feature is active for a guild."""

    MESSAGE_SECURITY_ENABLED = "MESSAGE_SECURITY_ENABLED"
    ALT_DETECTION_ENABLED = "ALT_DETECTION_ENABLED"
    MASS_KICK_ENABLED = "MASS_KICK_ENABLED"
    MASS_BAN_ENABLED = "MASS_BAN_ENABLED"
    VANITY_PROTECTION_ENABLED = "VANITY_PROTECTION_ENABLED"
    ROLE_MONITOR_ENABLED = "ROLE_MONITOR_ENABLED"
    CHANNEL_MONITOR_ENABLED = "CHANNEL_MONITOR_ENABLED"
    MEMBER_UPDATE_ENABLED = "MEMBER_UPDATE_ENABLED"
    SERVER_SETTINGS_ENABLED = "SERVER_SETTINGS_ENABLED"
    INTEGRATION_MONITOR_ENABLED = "INTEGRATION_MONITOR_ENABLED"
    BLOCK_LINKS = "BLOCK_LINKS"
    ENABLE_BLACKLIST = "ENABLE_BLACKLIST"
    AUTO_DELETE_VIOLATIONS = "AUTO_DELETE_VIOLATIONS"
    AUTO_DELETE_CHANNELS = "AUTO_DELETE_CHANNELS"
    AUTO_DELETE_ROLES = "AUTO_DELETE_ROLES"
    AUTO_DELETE_WEBHOOKS = "AUTO_DELETE_WEBHOOKS"
    SERVER_SCAN_ENABLED = "SERVER_SCAN_ENABLED"
    ANTI_BOT_ENABLED = "ANTI_BOT_ENABLED"

    def __str__(self) -> str:
        return self.value


class RoleSlot(str, Enum):
    """Named role collections stored per guild."""

    CENSOR_MODERATOR_ROLES = "CENSOR_MODERATOR_ROLES"
    MESSAGE_SECURITY_BYPASS_ROLES = "MESSAGE_SECURITY_BYPASS_ROLES"
    ALT_DETECTION_BYPASS_ROLES = "ALT_DETECTION_BYPASS_ROLES"
    MASS_KICK_BYPASS_ROLES = "MASS_KICK_BYPASS_ROLES"
    MASS_BAN_BYPASS_ROLES = "MASS_BAN_BYPASS_ROLES"
    VANITY_PROTECTION_BYPASS_ROLES = "VANITY_PROTECTION_BYPASS_ROLES"
    ROLE_MONITOR_BYPASS_ROLES = "ROLE_MONITOR_BYPASS_ROLES"
    CHANNEL_MONITOR_BYPASS_ROLES = "CHANNEL_MONITOR_BYPASS_ROLES"
    MEMBER_UPDATE_BYPASS_ROLES = "MEMBER_UPDATE_BYPASS_ROLES"
    SERVER_SETTINGS_BYPASS_ROLES = "SERVER_SETTINGS_BYPASS_ROLES"
    INTEGRATION_MONITOR_BYPASS_ROLES = "INTEGRATION_MONITOR_BYPASS_ROLES"
    UNIVERSAL_BYPASS_ROLE = "UNIVERSAL_BYPASS_ROLE"

    def __str__(self) -> str:
        return self.value

    @property
    def is_universal(self) -> bool:
        """True for the single-role universal override slot."""
        return self is RoleSlot.UNIVERSAL_BYPASS_ROLE


# Either a list of role ids or, for the universal slot, one optional id
RoleSlotValue = Union[List[int], Optional[int]]

DEFAULT_PERMISSIONS: Dict[PermissionFlag, bool] = {
    PermissionFlag.MESSAGE_SECURITY_ENABLED: True,
    PermissionFlag.ALT_DETECTION_ENABLED: True,
    PermissionFlag.MASS_KICK_ENABLED: True,
    PermissionFlag.MASS_BAN_ENABLED: True,
    PermissionFlag.VANITY_PROTECTION_ENABLED: True,
    PermissionFlag.ROLE_MONITOR_ENABLED: True,
    PermissionFlag.CHANNEL_MONITOR_ENABLED: True,
    PermissionFlag.MEMBER_UPDATE_ENABLED: True,
    PermissionFlag.SERVER_SETTINGS_ENABLED: True,
    PermissionFlag.INTEGRATION_MONITOR_ENABLED: True,
    PermissionFlag.BLOCK_LINKS: True,
    PermissionFlag.ENABLE_BLACKLIST: True,
    PermissionFlag.AUTO_DELETE_VIOLATIONS: True,
    PermissionFlag.AUTO_DELETE_CHANNELS: False,
    PermissionFlag.AUTO_DELETE_ROLES: False,
    PermissionFlag.AUTO_DELETE_WEBHOOKS: False,
    PermissionFlag.SERVER_SCAN_ENABLED: True,
    PermissionFlag.ANTI_BOT_ENABLED: True,
}

# User bypass list holding bot ids that may join while anti-bot protection is on
BOT_WHITELIST = "BOT_WHITELIST"

# Top-level key of the guild record that nests the user bypass lists
USER_BYPASSES_KEY = "userBypasses"


def default_role_value(slot: RoleSlot) -> RoleSlotValue:
    """Return a fresh default for ``slot`` (``None`` or a new empty list)."""
    return None if slot.is_universal else []
