"""
Utility functions and helpers for Guardcord.

- **logger.py**: Centralized logging configuration with colored console output,
  per-session log files and suppression of noisy Discord internals. Uses
  prompt_toolkit so log lines do not tear interactive terminal output.

- **discord_utils.py**: Low-level Discord helpers: audit-log correlation for
  monitored actions, owner and approved-guild checks, and a millisecond clock.
  All functions are stateless.
"""
