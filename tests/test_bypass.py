"""Tests for bypass resolution."""

from guardcord.protection.bypass import is_bypassed


def test_universal_role_bypasses_with_empty_lists():
    assert is_bypassed([1, 2, 99], 99, []) is True


def test_universal_role_not_held():
    assert is_bypassed([1, 2], 99, []) is False


def test_no_universal_role_configured():
    assert is_bypassed([1, 2], None, []) is False


def test_bypass_role_intersection():
    assert is_bypassed([1, 2], None, [3, 2]) is True
    assert is_bypassed([1, 2], None, [3, 4]) is False


def test_user_bypass():
    assert is_bypassed([], None, [], actor_id=7, bypass_user_ids=[7, 8]) is True
    assert is_bypassed([], None, [], actor_id=9, bypass_user_ids=[7, 8]) is False


def test_user_bypass_ignored_without_actor_id():
    assert is_bypassed([], None, [], bypass_user_ids=[7]) is False


def test_accepts_generators():
    assert is_bypassed((r for r in [5]), None, (r for r in [5])) is True
