"""
Bypass resolution for protection policies.

Pure functions of their inputs: the caller looks the configured roles and
users up in the guild policy store and passes them in, so this module never
touches storage or Discord objects.
"""

from typing import Iterable, Optional


def is_bypassed(
    actor_role_ids: Iterable[int],
    universal_override_role_id: Optional[int],
    bypass_role_ids: Iterable[int],
    actor_id: Optional[int] = None,
    bypass_user_ids: Iterable[int] = (),
) -> bool:
    """Return True if the actor is exempt from a policy.

    The actor is exempt when it holds the universal override role, holds any
    of the bypass roles, or is listed directly in ``bypass_user_ids``.

    Args:
        actor_role_ids: Role ids currently held by the actor.
        universal_override_role_id: Role that bypasses every policy, if configured.
        bypass_role_ids: Roles that bypass this particular policy.
        actor_id: The actor's user id, for the user bypass check.
        bypass_user_ids: User ids that bypass this particular policy.
    """
    held = set(actor_role_ids)

    if universal_override_role_id is not None and universal_override_role_id in held:
        return True

    if not held.isdisjoint(role_id for role_id in bypass_role_ids if role_id):
        return True

    return actor_id is not None and actor_id in set(bypass_user_ids)
