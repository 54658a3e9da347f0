"""
Guardcord - Anti-Nuke Protection for Discord

Guardcord watches destructive server activity (mass kicks and bans, bursts of
channel, role and webhook creation, unauthorized bots) and applies per-guild
policy to stop it while it is happening.

Core Components:

- **Guild Policy**: Per-server feature flags, bypass role lists and user bypass
  lists persisted to a single JSON document
- **Abuse Detection**: Sliding-window counting per (guild, actor, action kind)
  with a one-shot punishment latch per detection burst
- **Remediation**: Kick/ban of the offending executor and removal of objects
  created during a burst, reported as success/failure results
- **Security Log**: Structured records rendered as embeds in the configured
  log channel

Usage:
    from guardcord.main import main
    main()
"""
