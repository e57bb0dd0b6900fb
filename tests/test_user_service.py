"""
Unit tests for UserService class.
Tests the registry operations with a mocked repository.
"""

import pytest
from unittest.mock import Mock
from config.app_config import QuotaConfig
from data.models import UserQuota
from service.user_service import UserService
from core.exceptions import UserNotFoundError, ValidationError, UserAlreadyExistsError

class TestUserService:
    """Test cases for UserService class."""

    @pytest.fixture
    def mock_user_repo(self):
        """Create a mock user repository."""
        return Mock()

    @pytest.fixture
    def quota_config(self):
        return QuotaConfig(reset_period=3600, default_max_sessions=2,
                           default_max_bandwidth=5000, default_max_duration=600)

    @pytest.fixture
    def user_service(self, mock_user_repo, quota_config):
        """Create UserService instance with mocked dependencies."""
        return UserService(mock_user_repo, quota_config)

    def test_create_user_with_quota(self, user_service, mock_user_repo):
        """Test successful user creation with an explicit quota."""
        # Arrange
        quota = UserQuota(max_sessions=3, max_bandwidth=1000, max_duration=60)
        mock_user_repo.create_user.return_value = Mock(username="testuser")

        # Act
        result = user_service.create_user("testuser", "$2b$12$hash", quota=quota)

        # Assert
        assert result.username == "testuser"
        args, kwargs = mock_user_repo.create_user.call_args
        assert args == ("testuser", "$2b$12$hash")
        assert kwargs["quota"] is quota
        assert kwargs["quota"].reset_at is not None
        assert kwargs["enabled"] is True

    def test_create_user_without_quota(self, user_service, mock_user_repo):
        """Test a user created without quota is stored as unlimited."""
        user_service.create_user("testuser", "hash", quota=None)

        assert mock_user_repo.create_user.call_args.kwargs["quota"] is None

    @pytest.mark.parametrize("username", ["", "a", "1abc", "bad name", "x" * 65, "semi;colon"])
    def test_create_user_invalid_username(self, user_service, mock_user_repo, username):
        """Test user creation with invalid usernames."""
        with pytest.raises(ValidationError):
            user_service.create_user(username, "hash")

        mock_user_repo.create_user.assert_not_called()

    @pytest.mark.parametrize("username", ["ab", "alice", "relay.user@example.com", "user_01-x"])
    def test_valid_usernames(self, username):
        assert UserService.validate_username(username) == username

    def test_create_user_requires_password(self, user_service, mock_user_repo):
        with pytest.raises(ValidationError):
            user_service.create_user("testuser", "")
        mock_user_repo.create_user.assert_not_called()

    def test_create_user_rejects_negative_limits(self, user_service, mock_user_repo):
        quota = UserQuota(max_sessions=-1)

        with pytest.raises(ValidationError) as exc_info:
            user_service.create_user("testuser", "hash", quota=quota)

        assert exc_info.value.field == "max_sessions"
        mock_user_repo.create_user.assert_not_called()

    def test_create_user_already_exists(self, user_service, mock_user_repo):
        """Test user creation when the repository reports a duplicate."""
        mock_user_repo.create_user.side_effect = UserAlreadyExistsError("testuser")

        with pytest.raises(UserAlreadyExistsError):
            user_service.create_user("testuser", "hash")

    def test_build_quota_fills_defaults(self, user_service):
        quota = user_service.build_quota({"max_sessions": 7})

        assert quota.max_sessions == 7
        assert quota.max_bandwidth == 5000
        assert quota.max_duration == 600

    @pytest.mark.parametrize("policy", [
        {"max_sessions": "3"},
        {"max_bandwidth": -1},
        {"max_duration": True},
        {"max_sessions": 1.5},
    ])
    def test_build_quota_rejects_bad_values(self, user_service, policy):
        with pytest.raises(ValidationError):
            user_service.build_quota(policy)

    def test_set_quota_policy_passes_reset_period(self, user_service, mock_user_repo):
        user_service.set_quota_policy("testuser", {"max_sessions": 4, "max_bandwidth": 0, "max_duration": 0})

        mock_user_repo.set_quota_policy.assert_called_once_with("testuser", 4, 0, 0, 3600)

    def test_list_users_validates_pagination(self, user_service, mock_user_repo):
        with pytest.raises(ValidationError):
            user_service.list_users(offset=-1)
        with pytest.raises(ValidationError):
            user_service.list_users(limit=0)

        user_service.list_users(offset=10, limit=20)
        mock_user_repo.list_users.assert_called_once_with(10, 20)

    def test_update_metadata_requires_mapping(self, user_service, mock_user_repo):
        with pytest.raises(ValidationError):
            user_service.update_metadata("testuser", ["not", "a", "dict"])
        mock_user_repo.update_metadata.assert_not_called()

    def test_delete_user_success(self, user_service, mock_user_repo):
        """Test successful user deletion."""
        mock_user_repo.delete_user.return_value = True

        user_service.delete_user("testuser")

        mock_user_repo.delete_user.assert_called_once_with("testuser")

    def test_delete_user_not_found(self, user_service, mock_user_repo):
        """Test deletion of a non-existent user."""
        mock_user_repo.delete_user.return_value = False

        with pytest.raises(UserNotFoundError):
            user_service.delete_user("nonexistent")

    def test_set_enabled_delegates(self, user_service, mock_user_repo):
        user_service.set_enabled("testuser", False)
        mock_user_repo.set_enabled.assert_called_once_with("testuser", False)
