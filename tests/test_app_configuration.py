from pathlib import Path

import pytest

from guardcord.configuration.app_configuration import AppConfig, ConfigurationError, ProtectionSettings
from guardcord.datatypes.action_datatypes import ActionKind, RemediationType


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "app_config.yml"


def test_app_config_reload_parses_yaml(config_path: Path) -> None:
    config_path.write_text(
        "protection:\n"
        "  log_channel_id: 42\n"
        "  owner_ids: [1, '2']\n"
        "  actions:\n"
        "    ban:\n"
        "      threshold: 5\n"
        "      window_seconds: 30\n"
        "      remediation: ban\n",
        encoding="utf-8",
    )

    config = AppConfig(config_path)
    settings = config.protection

    assert config.get("protection")["log_channel_id"] == 42
    assert settings.log_channel_id == 42
    assert settings.owner_ids == [1, 2]
    ban_rule = settings.rules[ActionKind.BAN]
    assert ban_rule.threshold == 5
    assert ban_rule.window_seconds == pytest.approx(30)
    assert ban_rule.remediation is RemediationType.BAN


def test_app_config_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = AppConfig(tmp_path / "does_not_exist.yml")

    assert config.data == {}
    settings = config.protection
    assert settings.rules[ActionKind.KICK].threshold == 3
    assert settings.log_channel_id is None


def test_app_config_non_mapping_yaml(config_path: Path) -> None:
    config_path.write_text("- just\n- a list\n", encoding="utf-8")
    assert AppConfig(config_path).data == {}


def test_reload_picks_up_changes(config_path: Path) -> None:
    config_path.write_text("protection:\n  log_channel_id: 1\n", encoding="utf-8")
    config = AppConfig(config_path)
    config_path.write_text("protection:\n  log_channel_id: 2\n", encoding="utf-8")

    config.reload()

    assert config.protection.log_channel_id == 2


def test_protection_defaults() -> None:
    settings = ProtectionSettings.from_mapping({})

    assert settings.rules[ActionKind.KICK].threshold == 3
    assert settings.rules[ActionKind.KICK].window_seconds == pytest.approx(10)
    assert settings.rules[ActionKind.BAN].remediation is RemediationType.KICK
    assert settings.rules[ActionKind.CHANNEL_CREATE].threshold == 5
    assert settings.rules[ActionKind.CHANNEL_CREATE].window_seconds == pytest.approx(60)
    assert settings.rules[ActionKind.CHANNEL_CREATE].remediation is RemediationType.NONE
    assert settings.rules[ActionKind.ROLE_CREATE].threshold == 3
    assert settings.rules[ActionKind.WEBHOOK_CREATE].threshold == 3
    assert settings.rules[ActionKind.CHANNEL_DELETE].threshold == 3
    assert settings.rules[ActionKind.CHANNEL_DELETE].window_seconds == pytest.approx(60)
    assert settings.rules[ActionKind.CHANNEL_DELETE].remediation is RemediationType.KICK
    assert settings.vanity_remediation is RemediationType.BAN
    assert settings.vanity_revert is True
    assert settings.punishment_cooldown_seconds == pytest.approx(60)
    assert settings.audit_log_max_age_seconds == pytest.approx(5)


def test_default_threshold_applies_to_kick_and_ban() -> None:
    settings = ProtectionSettings.from_mapping({"default_threshold": 4, "default_window_seconds": 20})
    assert settings.rules[ActionKind.KICK].threshold == 4
    assert settings.rules[ActionKind.BAN].window_seconds == pytest.approx(20)
    # Creation kinds carry their own defaults
    assert settings.rules[ActionKind.CHANNEL_CREATE].threshold == 5


@pytest.mark.parametrize(
    "payload",
    [
        {"actions": {"kick": {"threshold": 0}}},
        {"actions": {"kick": {"threshold": -2}}},
        {"actions": {"kick": {"threshold": "3"}}},
        {"actions": {"ban": {"window_seconds": 0}}},
        {"actions": {"ban": {"window_seconds": -5}}},
        {"actions": {"ban": {"remediation": "explode"}}},
        {"actions": {"vanity_update": {}}},
        {"punishment_cooldown_seconds": -1},
        {"max_timestamps_per_key": 2},
        {"owner_ids": "not-a-list"},
        {"log_channel_id": "general"},
        {"actions": ["kick"]},
        {"vanity": {"remediation": "revert"}},
        {"vanity": {"revert": "yes"}},
        {"vanity": ["ban"]},
    ],
)
def test_invalid_protection_settings_raise(payload) -> None:
    with pytest.raises(ConfigurationError):
        ProtectionSettings.from_mapping(payload)


def test_non_mapping_protection_section() -> None:
    with pytest.raises(ConfigurationError):
        ProtectionSettings.from_mapping(["nope"])


def test_guild_allowed() -> None:
    open_settings = ProtectionSettings.from_mapping({})
    assert open_settings.guild_allowed(123) is True

    restricted = ProtectionSettings.from_mapping({"approved_guilds": [1, "2"]})
    assert restricted.guild_allowed(2) is True
    assert restricted.guild_allowed(3) is False


def test_log_channel_resolution() -> None:
    settings = ProtectionSettings.from_mapping({
        "log_channel_id": 100,
        "anti_bot_log_channel_id": 300,
        "actions": {"ban": {"log_channel_id": 200}},
    })

    assert settings.log_channel_for(ActionKind.BAN) == 200
    assert settings.log_channel_for(ActionKind.KICK) == 100
    assert settings.log_channel_for(None) == 100
    assert settings.anti_bot_channel_id == 300

    assert ProtectionSettings.from_mapping({"log_channel_id": 100}).anti_bot_channel_id == 100
    assert ProtectionSettings.from_mapping({"log_channel_id": 100}).vanity_channel_id == 100
    assert ProtectionSettings.from_mapping({"log_channel_id": 100, "vanity": {"log_channel_id": 400}}).vanity_channel_id == 400
