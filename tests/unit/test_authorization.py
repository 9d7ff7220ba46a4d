"""
Tests for kaneboard/services/authorization.py

The project repository is mocked; only the rules are under test.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from kaneboard.services.authorization import AccessPolicy
from kaneboard.services.exceptions import Forbidden


@pytest.fixture
def projects():
    repo = Mock()
    repo.is_member = AsyncMock(return_value=False)
    return repo


@pytest.fixture
def policy(projects):
    return AccessPolicy(projects)


@pytest.fixture
def project():
    return Mock(id=10, owner_id=1)


@pytest.fixture
def ticket():
    return Mock(id=5, created_by=2)


class TestTicketRules:

    def test_creator_may_update_and_delete(self, policy, ticket):
        assert policy.can_update_ticket(2, ticket) is True
        assert policy.can_delete_ticket(2, ticket) is True

    def test_others_may_not(self, policy, ticket):
        assert policy.can_update_ticket(1, ticket) is False
        with pytest.raises(Forbidden):
            policy.authorize_update_ticket(1, ticket)
        with pytest.raises(Forbidden):
            policy.authorize_delete_ticket(3, ticket)


class TestProjectRules:

    def test_only_owner_manages_members(self, policy, project):
        assert policy.can_manage_members(1, project) is True
        assert policy.can_manage_members(2, project) is False

    @pytest.mark.asyncio
    async def test_view_delegates_to_membership(self, policy, projects, project):
        projects.is_member.return_value = True

        assert await policy.can_view_project(2, project) is True
        projects.is_member.assert_awaited_once_with(project, 2)

    @pytest.mark.asyncio
    async def test_view_denied(self, policy, project):
        with pytest.raises(Forbidden) as exc:
            await policy.authorize_view_project(3, project)
        assert exc.value.kind == "authorization"


class TestTimeLogRules:

    def test_log_owner_or_project_owner(self, policy, project):
        log = Mock(id=7, user_id=2)

        assert policy.can_edit_time_log(2, log, project) is True
        assert policy.can_edit_time_log(1, log, project) is True
        assert policy.can_edit_time_log(3, log, project) is False
        with pytest.raises(Forbidden):
            policy.authorize_edit_time_log(3, log, project)
