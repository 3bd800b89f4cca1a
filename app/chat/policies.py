"""
Group permission decisions.

Pure functions mapping (policy, role) to allow/deny. They take plain
strings so callers can pass model field values directly, and they never
touch the database.

The two checks fall back differently for an unrecognised policy: sending
allows everyone, adding members allows admins and the owner.

Usage:
    from chat.policies import can_send, can_add_member

    if not can_send(conversation.message_send_policy, membership.role,
                    disbanded=conversation.is_disbanded):
        raise PermissionDeniedError(...)
"""

from __future__ import annotations

from chat.models import GroupPolicy, MemberRole

ELEVATED_ROLES = (MemberRole.ADMIN, MemberRole.OWNER)


def can_send(policy: str, role: str, disbanded: bool = False) -> bool:
    """
    Whether a member with `role` may send under `policy`.

    A disbanded group never accepts messages. An unrecognised policy
    allows everyone.
    """
    if disbanded:
        return False

    match policy:
        case GroupPolicy.ALL_MEMBERS:
            return True
        case GroupPolicy.ADMIN_ONLY:
            return role in ELEVATED_ROLES
        case GroupPolicy.OWNER_ONLY:
            return role == MemberRole.OWNER
        case _:
            return True


def can_add_member(policy: str, role: str) -> bool:
    """
    Whether a member with `role` may add members under `policy`.

    An unrecognised policy behaves like admin_only.
    """
    match policy:
        case GroupPolicy.ALL_MEMBERS:
            return True
        case GroupPolicy.ADMIN_ONLY:
            return role in ELEVATED_ROLES
        case GroupPolicy.OWNER_ONLY:
            return role == MemberRole.OWNER
        case _:
            return role in ELEVATED_ROLES


def can_manage_group(role: str) -> bool:
    """Name, avatar, approval flag and member removal need admin or owner."""
    return role in ELEVATED_ROLES


def can_remove(actor_role: str, target_role: str) -> bool:
    """
    Whether actor may remove target.

    Admins may remove members only; the owner may remove admins and
    members; nobody removes the owner.
    """
    if target_role == MemberRole.OWNER:
        return False
    if actor_role == MemberRole.OWNER:
        return True
    if actor_role == MemberRole.ADMIN:
        return target_role == MemberRole.MEMBER
    return False
