"""
Pytest configuration and fixtures for Guardcord tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from guardcord.configuration.app_configuration import ProtectionSettings  # noqa: E402
from guardcord.configuration.guild_policy import GuildPolicyStore  # noqa: E402


@pytest.fixture
def policy_store(tmp_path):
    """A policy store backed by a fresh document in a temporary directory."""
    return GuildPolicyStore(tmp_path / "guild-permissions.json")


@pytest.fixture
def settings(tmp_path):
    """Default protection settings with a global log channel configured."""
    return ProtectionSettings.from_mapping({
        "log_channel_id": 5000,
        "policy_path": str(tmp_path / "guild-permissions.json"),
    })
