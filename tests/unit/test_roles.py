"""
Unit tests for staff role checks.
"""

import pytest

from fulfillment.exceptions import PermissionDenied
from fulfillment.roles import InMemoryRoleDirectory, RoleDirectory, StaffRoleChecker
from fulfillment.types import ActorId, GuildId, RoleId
from tests.fixtures import ADMIN, ADMIN_ROLE, CUSTOMER, GUILD, SUPPORT, SUPPORT_ROLE


class FailingDirectory(RoleDirectory):
    """Directory whose platform lookups always fail."""

    async def member_roles(self, guild_id: GuildId, user_id: ActorId) -> set[RoleId] | None:
        raise ConnectionError("gateway unavailable")


class TestStaffRoleChecker:
    @pytest.mark.asyncio
    async def test_admin_and_support_are_staff(self, roles: StaffRoleChecker) -> None:
        assert await roles.is_staff(ADMIN)
        assert await roles.is_staff(SUPPORT)
        assert not await roles.is_staff(CUSTOMER)

    @pytest.mark.asyncio
    async def test_only_admin_role_is_admin(self, roles: StaffRoleChecker) -> None:
        assert await roles.is_admin(ADMIN)
        assert not await roles.is_admin(SUPPORT)

    @pytest.mark.asyncio
    async def test_non_member_is_not_staff(self, roles: StaffRoleChecker) -> None:
        assert not await roles.is_staff("stranger")

    @pytest.mark.asyncio
    async def test_roles_on_another_guild_do_not_count(self) -> None:
        directory = InMemoryRoleDirectory()
        directory.grant("other-guild", ADMIN, ADMIN_ROLE)
        roles = StaffRoleChecker(directory, GUILD, ADMIN_ROLE, SUPPORT_ROLE)

        assert not await roles.is_staff(ADMIN)

    @pytest.mark.asyncio
    async def test_revoked_role_takes_effect_immediately(
        self, directory: InMemoryRoleDirectory, roles: StaffRoleChecker
    ) -> None:
        assert await roles.is_staff(SUPPORT)
        directory.remove_member(GUILD, SUPPORT)
        assert not await roles.is_staff(SUPPORT)

    @pytest.mark.asyncio
    async def test_lookup_failure_means_not_staff(self) -> None:
        roles = StaffRoleChecker(FailingDirectory(), GUILD, ADMIN_ROLE, SUPPORT_ROLE)
        assert not await roles.is_staff(ADMIN)

    @pytest.mark.asyncio
    async def test_require_staff(self, roles: StaffRoleChecker) -> None:
        await roles.require_staff(ADMIN, "resolve disputes")

        with pytest.raises(PermissionDenied) as exc_info:
            await roles.require_staff(CUSTOMER, "resolve disputes")

        assert exc_info.value.actor_id == CUSTOMER
        assert "staff" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_unset_support_role_grants_nothing(self) -> None:
        directory = InMemoryRoleDirectory()
        directory.add_member(GUILD, CUSTOMER)
        roles = StaffRoleChecker(directory, GUILD, ADMIN_ROLE, "")

        assert not await roles.is_staff(CUSTOMER)
