"""
Shared data types for Guardcord.

- **policy_datatypes.py**: Guild permission flags, role slots and their defaults.
- **action_datatypes.py**: Monitored action kinds, inbound events, detection
  rules and outcomes, remediation results and security log records.
"""
