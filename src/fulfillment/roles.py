"""
Staff role checks.

The chat platform owns guild membership; the fulfillment layer only asks
"does this member hold the admin or support role?". RoleDirectory is the
collaborator interface for that lookup.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict

from fulfillment.exceptions import PermissionDenied
from fulfillment.types import ActorId, GuildId, RoleId

logger = logging.getLogger(__name__)


class RoleDirectory(ABC):
    """Looks up the roles a member holds on a guild."""

    @abstractmethod
    async def member_roles(self, guild_id: GuildId, user_id: ActorId) -> set[RoleId] | None:
        """
        Return the member's role ids, or None if the user is not a member.

        Implementations may raise on platform errors; StaffRoleChecker treats
        any failure as "not staff".
        """
        pass


class InMemoryRoleDirectory(RoleDirectory):
    """
    Role directory backed by a dictionary.

    Example:
        >>> roles = InMemoryRoleDirectory()
        >>> roles.grant("guild-1", "admin-user", "role-admin")
    """

    def __init__(self) -> None:
        self._members: dict[GuildId, dict[ActorId, set[RoleId]]] = defaultdict(dict)

    def grant(self, guild_id: GuildId, user_id: ActorId, *role_ids: RoleId) -> None:
        self._members[guild_id].setdefault(user_id, set()).update(role_ids)

    def add_member(self, guild_id: GuildId, user_id: ActorId) -> None:
        self._members[guild_id].setdefault(user_id, set())

    def remove_member(self, guild_id: GuildId, user_id: ActorId) -> None:
        self._members[guild_id].pop(user_id, None)

    async def member_roles(self, guild_id: GuildId, user_id: ActorId) -> set[RoleId] | None:
        roles = self._members.get(guild_id, {}).get(user_id)
        return set(roles) if roles is not None else None


class StaffRoleChecker:
    """
    Decides whether a user is staff (admin or support) on the configured guild.

    Role lookups go to the directory every time; roles are never cached, so a
    revoked role takes effect on the next action.

    Args:
        directory: Role lookup collaborator
        guild_id: Guild whose roles count
        admin_role_id: Role id granting admin rights
        support_role_id: Role id granting support rights
    """

    def __init__(
        self,
        directory: RoleDirectory,
        guild_id: GuildId,
        admin_role_id: RoleId,
        support_role_id: RoleId,
    ) -> None:
        self._directory = directory
        self._guild_id = guild_id
        self._staff_roles = {r for r in (admin_role_id, support_role_id) if r}
        self._admin_role_id = admin_role_id

    @property
    def guild_id(self) -> GuildId:
        return self._guild_id

    async def is_staff(self, user_id: ActorId) -> bool:
        """True if the user holds the admin or support role. Lookup failures return False."""
        roles = await self._lookup(user_id)
        return bool(roles & self._staff_roles)

    async def is_admin(self, user_id: ActorId) -> bool:
        roles = await self._lookup(user_id)
        return bool(self._admin_role_id) and self._admin_role_id in roles

    async def require_staff(self, user_id: ActorId, action: str) -> None:
        """
        Raises:
            PermissionDenied: If the user is not staff
        """
        if not await self.is_staff(user_id):
            raise PermissionDenied(
                user_id,
                action,
                user_message=(
                    "Only admins and support staff can do this. Ask a staff member "
                    "to take over."
                ),
            )

    async def _lookup(self, user_id: ActorId) -> set[RoleId]:
        try:
            roles = await self._directory.member_roles(self._guild_id, user_id)
        except Exception as e:
            logger.warning(
                "Role lookup failed for %s: %s",
                user_id,
                e,
                exc_info=True,
                extra={"user_id": user_id, "guild_id": self._guild_id},
            )
            return set()
        if roles is None:
            logger.debug("User %s is not a member of guild %s", user_id, self._guild_id)
            return set()
        return roles


__all__ = ["RoleDirectory", "InMemoryRoleDirectory", "StaffRoleChecker"]
