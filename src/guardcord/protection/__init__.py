"""
Protection core for Guardcord.

- **bypass.py**: Pure bypass resolution (universal role, bypass roles, bypass users).
- **action_window.py**: Sliding-window occurrence counter per (guild, actor, kind).
- **punishment_latch.py**: One remediation per actor per burst, released by a timer.
- **abuse_detector.py**: Ties policy, bypass, window and latch together and
  dispatches remediation.
- **remediation.py**: Kick, ban and delete calls against Discord, returned as results.
- **security_log.py**: Security log record builders and the embed sink.
"""
