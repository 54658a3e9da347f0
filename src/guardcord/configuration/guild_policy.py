"""
Persistent per-guild policy storage for the protection bot.

Responsibilities:
- Persist per-guild feature flags, bypass role slots and user bypass lists to
  one JSON document keyed by guild id
- Resolve every absent key through the fixed default tables

Every call re-reads the document and every mutation writes it back in full.
There is no in-memory cache, so concurrent writers race on read-modify-write
and the last write wins.

Document layout::

    {
      "<guild id>": {
        "MASS_BAN_ENABLED": false,
        "MASS_BAN_BYPASS_ROLES": [111, 222],
        "UNIVERSAL_BYPASS_ROLE": 333,
        "userBypasses": {"MASS_BAN_BYPASS_ROLES": [444], "BOT_WHITELIST": [555]}
      }
    }
"""

from __future__ import annotations

import fcntl
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from guardcord.datatypes.policy_datatypes import (
    DEFAULT_PERMISSIONS,
    USER_BYPASSES_KEY,
    PermissionFlag,
    RoleSlot,
    RoleSlotValue,
    default_role_value,
)
from guardcord.util.logger import get_logger

logger = get_logger("guild_policy")

DEFAULT_POLICY_PATH = Path("./data/guild-permissions.json").resolve()


def _coerce_id(value: Any) -> Optional[int]:
    """Return ``value`` as an int snowflake, or None when it is not one."""
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _coerce_id_list(values: Any) -> List[int]:
    """Normalize a stored id list, dropping anything that is not an id."""
    if not isinstance(values, list):
        return []
    ids = (_coerce_id(value) for value in values)
    return [value for value in ids if value is not None]


def _flag_name(flag: PermissionFlag | str) -> str:
    return flag.value if isinstance(flag, PermissionFlag) else str(flag)


class GuildPolicyStore:
    """
    File-backed store of guild feature flags and bypass lists.

    Reads never fail: a missing or malformed document is treated as an empty
    policy so every lookup falls back to defaults. Writes report success as a
    bool; a failed write leaves the document on disk untouched.
    """

    def __init__(self, policy_path: Path = DEFAULT_POLICY_PATH) -> None:
        self.policy_path = Path(policy_path)
        self.policy_path.parent.mkdir(parents=True, exist_ok=True)

    # --------------------------
    # Persistence helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Dict[str, Any]]:
        """Read the whole policy document. Returns an empty mapping on any failure."""
        try:
            with self.policy_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            return {}
        except Exception:
            logger.exception("[GUILD POLICY] Failed to load policy document %s", self.policy_path)
            return {}

        if not isinstance(data, dict):
            logger.error("[GUILD POLICY] Policy document %s is not a mapping; using defaults", self.policy_path)
            return {}
        return data

    def save_to_disk(self, document: Dict[str, Dict[str, Any]]) -> bool:
        """Write the whole policy document. Return whether the write succeeded.

        The document is written to a sibling ``.tmp`` file and swapped in with
        ``os.replace``, so a crash mid-write leaves the previous document intact.
        """
        tmp_path = self.policy_path.with_name(self.policy_path.name + ".tmp")
        try:
            self.policy_path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.policy_path)
            return True
        except Exception:
            logger.exception("[GUILD POLICY] Failed to save policy document %s", self.policy_path)
            tmp_path.unlink(missing_ok=True)
            return False

    def _guild_record(self, guild_id: int) -> Dict[str, Any]:
        record = self.load_from_disk().get(str(guild_id))
        return record if isinstance(record, dict) else {}

    def _update_guild(self, guild_id: int, key: str, value: Any) -> bool:
        """Full read-modify-write of one key in one guild record."""
        document = self.load_from_disk()
        record = document.get(str(guild_id))
        if not isinstance(record, dict):
            record = {}
            document[str(guild_id)] = record
        record[key] = value
        return self.save_to_disk(document)

    # --------------------------
    # Feature flags
    # --------------------------
    @staticmethod
    def available_flags() -> List[PermissionFlag]:
        return list(DEFAULT_PERMISSIONS)

    @staticmethod
    def available_role_slots() -> List[RoleSlot]:
        return list(RoleSlot)

    def get_flag_override(self, guild_id: int, flag: PermissionFlag | str) -> Optional[bool]:
        """Return the explicitly stored value for ``flag``, or None if the guild never set it."""
        value = self._guild_record(guild_id).get(_flag_name(flag))
        return value if isinstance(value, bool) else None

    def get_flag(self, guild_id: int, flag: PermissionFlag | str) -> Optional[bool]:
        """Return the stored value for ``flag`` or its default.

        Unknown flag names without a default return None, which callers treat
        as disabled.
        """
        override = self.get_flag_override(guild_id, flag)
        if override is not None:
            return override
        try:
            return DEFAULT_PERMISSIONS[PermissionFlag(_flag_name(flag))]
        except ValueError:
            return None

    def get_flags(self, guild_id: int) -> Dict[PermissionFlag, bool]:
        """Return every known flag for the guild with defaults applied."""
        record = self._guild_record(guild_id)
        result: Dict[PermissionFlag, bool] = {}
        for flag, default in DEFAULT_PERMISSIONS.items():
            value = record.get(flag.value)
            result[flag] = value if isinstance(value, bool) else default
        return result

    def set_flag(self, guild_id: int, flag: PermissionFlag | str, value: bool) -> bool:
        """Persist ``flag`` for the guild. Return whether the write succeeded."""
        ok = self._update_guild(guild_id, _flag_name(flag), bool(value))
        if ok:
            logger.debug("[GUILD POLICY] Set %s to %s for guild %s", _flag_name(flag), bool(value), guild_id)
        return ok

    # --------------------------
    # Role slots
    # --------------------------
    def get_role_list(self, guild_id: int, role_type: RoleSlot) -> RoleSlotValue:
        """Return the role ids stored in ``role_type``.

        The universal slot yields a single optional id; every other slot yields
        a (possibly empty) list.
        """
        stored = self._guild_record(guild_id).get(role_type.value)
        if role_type.is_universal:
            if isinstance(stored, list):
                ids = _coerce_id_list(stored)
                return ids[0] if ids else None
            return _coerce_id(stored) if stored is not None else None
        if stored is None:
            return default_role_value(role_type)
        return _coerce_id_list(stored)

    def set_role_list(self, guild_id: int, role_type: RoleSlot, role_ids: RoleSlotValue) -> bool:
        """Replace the contents of ``role_type``. Return whether the write succeeded."""
        if role_type.is_universal:
            value: Any = None if role_ids is None else _coerce_id(role_ids)
        else:
            value = list(dict.fromkeys(_coerce_id_list(list(role_ids or []))))
        return self._update_guild(guild_id, role_type.value, value)

    def add_role(self, guild_id: int, role_type: RoleSlot, role_id: int) -> bool:
        """Add ``role_id`` to ``role_type``. Adding a present id is a no-op."""
        if role_type.is_universal:
            if self.get_role_list(guild_id, role_type) == role_id:
                return True
            return self.set_role_list(guild_id, role_type, role_id)

        current = self.get_role_list(guild_id, role_type)
        if role_id in current:
            return True
        return self.set_role_list(guild_id, role_type, [*current, role_id])

    def remove_role(self, guild_id: int, role_type: RoleSlot, role_id: int) -> bool:
        """Remove ``role_id`` from ``role_type``. Removing an absent id is a no-op."""
        if role_type.is_universal:
            if self.get_role_list(guild_id, role_type) != role_id:
                return True
            return self.set_role_list(guild_id, role_type, None)

        current = self.get_role_list(guild_id, role_type)
        if role_id not in current:
            return True
        return self.set_role_list(guild_id, role_type, [rid for rid in current if rid != role_id])

    # --------------------------
    # User bypass lists
    # --------------------------
    def _user_bypasses(self, guild_id: int) -> Dict[str, Any]:
        bypasses = self._guild_record(guild_id).get(USER_BYPASSES_KEY)
        return bypasses if isinstance(bypasses, dict) else {}

    def get_user_bypass_list(self, guild_id: int, bypass_type: RoleSlot | str) -> List[int]:
        """Return the user ids listed under ``bypass_type`` (empty when unset)."""
        return _coerce_id_list(self._user_bypasses(guild_id).get(str(bypass_type)))

    def set_user_bypass_list(self, guild_id: int, bypass_type: RoleSlot | str, user_ids: Iterable[int]) -> bool:
        """Replace the user ids listed under ``bypass_type``. Return whether the write succeeded."""
        bypasses = dict(self._user_bypasses(guild_id))
        bypasses[str(bypass_type)] = list(dict.fromkeys(_coerce_id_list(list(user_ids))))
        return self._update_guild(guild_id, USER_BYPASSES_KEY, bypasses)

    def add_user_bypass(self, guild_id: int, bypass_type: RoleSlot | str, user_id: int) -> bool:
        current = self.get_user_bypass_list(guild_id, bypass_type)
        if user_id in current:
            return True
        return self.set_user_bypass_list(guild_id, bypass_type, [*current, user_id])

    def remove_user_bypass(self, guild_id: int, bypass_type: RoleSlot | str, user_id: int) -> bool:
        current = self.get_user_bypass_list(guild_id, bypass_type)
        if user_id not in current:
            return True
        return self.set_user_bypass_list(guild_id, bypass_type, [uid for uid in current if uid != user_id])
