"""
Configuration management for Guardcord.

This package handles all application and guild-level configuration:

- **app_configuration.py**: File-locked YAML configuration loader for global
  settings. Builds the validated protection settings (per-action thresholds,
  windows and remediation, cooldowns, approved guilds, owners, log channels)
  and raises ``ConfigurationError`` when an invariant is violated.

- **guild_policy.py**: Per-guild policy persistence. Stores feature flags,
  bypass role slots and user bypass lists in one JSON document and resolves
  absent keys through fixed default tables.
"""
