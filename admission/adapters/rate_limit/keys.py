"""Scope key derivation.

Each quota scope maps to its own key namespace so quotas in different scopes
never share a record.
"""

from __future__ import annotations


def identifier_key(identifier: str) -> str:
    """Use a caller-provided identifier as-is (empty string included)."""
    return identifier


def user_action_key(user_id: str, action: str) -> str:
    """Key for a per-user, per-action quota.

    Examples:
        >>> user_action_key("user-123", "login")
        'user:user-123:login'
    """
    return f"user:{user_id}:{action}"


def ip_key(ip: str) -> str:
    """Key for a per-client-IP quota.

    Examples:
        >>> ip_key("192.168.1.1")
        'ip:192.168.1.1'
    """
    return f"ip:{ip}"


def ip_action_key(ip: str, action: str) -> str:
    """Key for a per-IP, per-action quota (anonymous callers of a user guard).

    Examples:
        >>> ip_action_key("10.0.0.1", "login")
        'ip:10.0.0.1:login'
    """
    return f"{ip_key(ip)}:{action}"
