import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from guardcord import main
from guardcord.configuration.app_configuration import ConfigurationError, ProtectionSettings
from guardcord.protection.remediation import DiscordRemediationInvoker


@pytest.fixture(autouse=True)
def _restore_env(monkeypatch):
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_resolve_base_dir_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("GUARDCORD_HOME", str(tmp_path))

    assert main.resolve_base_dir() == tmp_path.resolve()


def test_resolve_base_dir_compiled(tmp_path, monkeypatch):
    monkeypatch.delenv("GUARDCORD_HOME", raising=False)
    monkeypatch.setattr(sys, "frozen", True, raising=False)
    monkeypatch.setattr(sys, "argv", [str(tmp_path / "guardcord.exe")])

    assert main.resolve_base_dir() == (tmp_path / "guardcord.exe").resolve().parent


def test_resolve_base_dir_source(monkeypatch):
    monkeypatch.delenv("GUARDCORD_HOME", raising=False)
    monkeypatch.setattr(sys, "frozen", False, raising=False)
    monkeypatch.setattr(sys, "compiled", False, raising=False)

    assert main.resolve_base_dir() == main.Path(main.__file__).resolve().parents[2]


def test_load_environment_requires_token(monkeypatch):
    monkeypatch.setattr(main, "load_dotenv", lambda **kwargs: False)
    monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)

    with pytest.raises(SystemExit):
        main.load_environment()


def test_load_environment_returns_token(monkeypatch):
    monkeypatch.setattr(main, "load_dotenv", lambda **kwargs: False)
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "abc")

    assert main.load_environment() == "abc"


def test_build_intents():
    intents = main.build_intents()

    assert intents.guilds
    assert intents.members
    assert intents.bans
    assert intents.webhooks


def test_build_detector_uses_settings(tmp_path):
    settings = ProtectionSettings.from_mapping({
        "punishment_cooldown_seconds": 30,
        "remediation_timeout_seconds": 3,
        "max_timestamps_per_key": 50,
        "universal_bypass_role": 77,
        "policy_path": str(tmp_path / "policy.json"),
    })

    detector, invoker = main.build_detector(SimpleNamespace(), settings)

    assert isinstance(invoker, DiscordRemediationInvoker)
    assert invoker.timeout_seconds == 3
    assert detector.cooldown_ms == 30_000
    assert detector.universal_bypass_role_id == 77
    assert detector.window.max_entries_per_key == 50
    assert detector.policy_store.policy_path == tmp_path / "policy.json"


class BrokenConfig:
    @property
    def protection(self):
        raise ConfigurationError("'protection.actions.ban.threshold' must be a positive integer, got 0")


@pytest.mark.asyncio
async def test_async_main_invalid_configuration_is_fatal(monkeypatch):
    monkeypatch.setattr(main, "load_environment", lambda: "token")
    monkeypatch.setattr(main, "app_config", BrokenConfig())
    create_bot = MagicMock()
    monkeypatch.setattr(main, "create_bot", create_bot)

    assert await main.async_main() == 1
    create_bot.assert_not_called()


@pytest.mark.asyncio
async def test_async_main_runs_and_shuts_down(monkeypatch):
    bot, detector = object(), object()
    monkeypatch.setattr(main, "load_environment", lambda: "token")
    monkeypatch.setattr(main, "app_config", SimpleNamespace(protection=ProtectionSettings.from_mapping({})))
    monkeypatch.setattr(main, "create_bot", lambda settings: (bot, detector))
    start = AsyncMock()
    shutdown = AsyncMock()
    monkeypatch.setattr(main, "start_bot", start)
    monkeypatch.setattr(main, "shutdown_runtime", shutdown)

    assert await main.async_main() == 0
    start.assert_awaited_once_with(bot, "token")
    shutdown.assert_awaited_once_with(bot, detector)


@pytest.mark.asyncio
async def test_shutdown_runtime_stops_detector_and_bot():
    detector = SimpleNamespace(shutdown=AsyncMock())
    bot = SimpleNamespace(is_closed=lambda: False, close=AsyncMock())

    await main.shutdown_runtime(bot, detector)

    detector.shutdown.assert_awaited_once()
    bot.close.assert_awaited_once()


def test_main_maps_system_exit(monkeypatch):
    async def exiting():
        sys.exit(3)

    monkeypatch.setattr(main, "async_main", exiting)

    assert main.main() == 3
