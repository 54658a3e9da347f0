from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import fcntl
from typing import Any, Dict, List, Mapping, Optional
import yaml

from guardcord.datatypes.action_datatypes import ActionKind, ActionRule, RemediationType
from guardcord.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_THRESHOLD = 3
DEFAULT_WINDOW_SECONDS = 10.0

# Kinds that only alert (and delete what was created) unless configured otherwise
ACTION_DEFAULTS: Dict[ActionKind, Dict[str, Any]] = {
    ActionKind.KICK: {"remediation": RemediationType.KICK},
    ActionKind.BAN: {"remediation": RemediationType.KICK},
    ActionKind.CHANNEL_CREATE: {"threshold": 5, "window_seconds": 60.0, "remediation": RemediationType.NONE},
    ActionKind.ROLE_CREATE: {"threshold": 3, "window_seconds": 60.0, "remediation": RemediationType.NONE},
    ActionKind.WEBHOOK_CREATE: {"threshold": 3, "window_seconds": 60.0, "remediation": RemediationType.NONE},
    ActionKind.CHANNEL_DELETE: {"threshold": 3, "window_seconds": 60.0, "remediation": RemediationType.KICK},
}


class ConfigurationError(ValueError):
    """Raised when the protection configuration violates an invariant. Fatal at startup."""


def _optional_id(value: Any, key: str) -> Optional[int]:
    if value in (None, "", 0, "0"):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{key}' must be a Discord id, got {value!r}") from exc


def _id_list(value: Any, key: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"'{key}' must be a list of Discord ids")
    ids = (_optional_id(item, key) for item in value)
    return [item for item in ids if item is not None]


def _number(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}") from exc


@dataclass(slots=True)
class ProtectionSettings:
    """Validated protection configuration.

    Built once at startup by :meth:`ProtectionSettings.from_mapping`; every
    numeric invariant is checked there so runtime code never has to.
    """

    rules: Dict[ActionKind, ActionRule]
    punishment_cooldown_seconds: float = 60.0
    audit_log_max_age_seconds: float = 5.0
    remediation_timeout_seconds: float = 10.0
    max_timestamps_per_key: int = 100
    sweep_interval_seconds: float = 300.0
    anti_bot_kick_delay_seconds: float = 5.0
    approved_guilds: List[int] = field(default_factory=list)
    owner_ids: List[int] = field(default_factory=list)
    universal_bypass_role: Optional[int] = None
    log_channel_id: Optional[int] = None
    action_log_channels: Dict[ActionKind, int] = field(default_factory=dict)
    anti_bot_log_channel_id: Optional[int] = None
    vanity_remediation: RemediationType = RemediationType.BAN
    vanity_revert: bool = True
    vanity_log_channel_id: Optional[int] = None
    policy_path: Path = Path("./data/guild-permissions.json")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ProtectionSettings":
        """Build settings from the ``protection`` section of the app config.

        Raises:
            ConfigurationError: On any invalid threshold, window, cooldown,
                remediation type, action kind or id.
        """
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigurationError("'protection' must be a mapping")

        default_threshold = data.get("default_threshold", DEFAULT_THRESHOLD)
        default_window = data.get("default_window_seconds", DEFAULT_WINDOW_SECONDS)

        actions = data.get("actions") or {}
        if not isinstance(actions, dict):
            raise ConfigurationError("'protection.actions' must be a mapping")

        unknown = set(actions) - {kind.value for kind in ActionKind}
        if unknown:
            raise ConfigurationError(f"Unknown action kind(s) in config: {', '.join(sorted(unknown))}")

        rules: Dict[ActionKind, ActionRule] = {}
        action_log_channels: Dict[ActionKind, int] = {}
        for kind in ActionKind:
            section = actions.get(kind.value) or {}
            defaults = ACTION_DEFAULTS[kind]
            key = f"protection.actions.{kind.value}"

            threshold = section.get("threshold", defaults.get("threshold", default_threshold))
            window_seconds = _number(
                section.get("window_seconds", defaults.get("window_seconds", default_window)),
                f"{key}.window_seconds",
            )
            try:
                remediation = RemediationType(section.get("remediation", defaults["remediation"]))
            except ValueError as exc:
                raise ConfigurationError(f"'{key}.remediation' must be one of kick, ban, none") from exc

            if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold <= 0:
                raise ConfigurationError(f"'{key}.threshold' must be a positive integer, got {threshold!r}")
            if window_seconds <= 0:
                raise ConfigurationError(f"'{key}.window_seconds' must be positive, got {window_seconds!r}")

            rules[kind] = ActionRule(kind=kind, threshold=threshold, window_seconds=window_seconds, remediation=remediation)

            channel_id = _optional_id(section.get("log_channel_id"), f"{key}.log_channel_id")
            if channel_id is not None:
                action_log_channels[kind] = channel_id

        vanity = data.get("vanity") or {}
        if not isinstance(vanity, dict):
            raise ConfigurationError("'protection.vanity' must be a mapping")
        try:
            vanity_remediation = RemediationType(vanity.get("remediation", RemediationType.BAN))
        except ValueError as exc:
            raise ConfigurationError("'protection.vanity.remediation' must be one of kick, ban, none") from exc
        vanity_revert = vanity.get("revert", True)
        if not isinstance(vanity_revert, bool):
            raise ConfigurationError(f"'protection.vanity.revert' must be true or false, got {vanity_revert!r}")

        settings = cls(
            rules=rules,
            punishment_cooldown_seconds=_number(data.get("punishment_cooldown_seconds", 60), "punishment_cooldown_seconds"),
            audit_log_max_age_seconds=_number(data.get("audit_log_max_age_seconds", 5), "audit_log_max_age_seconds"),
            remediation_timeout_seconds=_number(data.get("remediation_timeout_seconds", 10), "remediation_timeout_seconds"),
            max_timestamps_per_key=int(_number(data.get("max_timestamps_per_key", 100), "max_timestamps_per_key")),
            sweep_interval_seconds=_number(data.get("sweep_interval_seconds", 300), "sweep_interval_seconds"),
            anti_bot_kick_delay_seconds=_number(data.get("anti_bot_kick_delay_seconds", 5), "anti_bot_kick_delay_seconds"),
            approved_guilds=_id_list(data.get("approved_guilds"), "approved_guilds"),
            owner_ids=_id_list(data.get("owner_ids"), "owner_ids"),
            universal_bypass_role=_optional_id(data.get("universal_bypass_role"), "universal_bypass_role"),
            log_channel_id=_optional_id(data.get("log_channel_id"), "log_channel_id"),
            action_log_channels=action_log_channels,
            anti_bot_log_channel_id=_optional_id(data.get("anti_bot_log_channel_id"), "anti_bot_log_channel_id"),
            vanity_remediation=vanity_remediation,
            vanity_revert=vanity_revert,
            vanity_log_channel_id=_optional_id(vanity.get("log_channel_id"), "protection.vanity.log_channel_id"),
            policy_path=Path(data.get("policy_path") or "./data/guild-permissions.json"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Check cross-field invariants."""
        if self.punishment_cooldown_seconds < 0:
            raise ConfigurationError("'punishment_cooldown_seconds' must not be negative")
        if self.audit_log_max_age_seconds <= 0:
            raise ConfigurationError("'audit_log_max_age_seconds' must be positive")
        if self.remediation_timeout_seconds <= 0:
            raise ConfigurationError("'remediation_timeout_seconds' must be positive")
        if self.sweep_interval_seconds <= 0:
            raise ConfigurationError("'sweep_interval_seconds' must be positive")
        if self.anti_bot_kick_delay_seconds < 0:
            raise ConfigurationError("'anti_bot_kick_delay_seconds' must not be negative")
        highest_threshold = max(rule.threshold for rule in self.rules.values())
        if self.max_timestamps_per_key < highest_threshold:
            raise ConfigurationError(
                f"'max_timestamps_per_key' ({self.max_timestamps_per_key}) must be at least the highest threshold ({highest_threshold})"
            )

    def guild_allowed(self, guild_id: int) -> bool:
        """An empty approved list allows every guild."""
        return not self.approved_guilds or guild_id in self.approved_guilds

    def log_channel_for(self, kind: ActionKind | None) -> Optional[int]:
        """Return the log channel for ``kind``, falling back to the global channel."""
        if kind is not None and kind in self.action_log_channels:
            return self.action_log_channels[kind]
        return self.log_channel_id

    @property
    def anti_bot_channel_id(self) -> Optional[int]:
        return self.anti_bot_log_channel_id or self.log_channel_id

    @property
    def vanity_channel_id(self) -> Optional[int]:
        return self.vanity_log_channel_id or self.log_channel_id


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches contents of ``./config/app_config.yml`` and exposes
    dictionary-like access helpers. Uses fcntl file locks for safe concurrent
    access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                if not isinstance(data, dict):
                    logger.error("[APP CONFIGURATION] Config file %s does not contain a mapping.", self.config_path)
                    return {}
                return data
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file, replace the in-memory cache and return it (empty dict on error)."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the cached configuration mapping. Callers should not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    @property
    def protection(self) -> ProtectionSettings:
        """Return validated protection settings.

        Raises:
            ConfigurationError: If the ``protection`` section is invalid.
        """
        return ProtectionSettings.from_mapping(self._data.get("protection") or {})


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
