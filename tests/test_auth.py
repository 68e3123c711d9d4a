"""Unit tests for the task endpoint API key check."""

from unittest.mock import patch

import pytest

from admission.core.auth import parse_api_keys, validate_task_api_key, verify_task_api_key
from admission.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_multiple_keys(self) -> None:
        """Test parsing multiple comma-separated keys."""
        assert parse_api_keys("key1,key2,key3") == {"key1", "key2", "key3"}

    def test_parse_keys_with_whitespace(self) -> None:
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_values_return_empty_set(self, raw) -> None:
        assert parse_api_keys(raw) == set()

    def test_parse_removes_duplicate_keys(self) -> None:
        assert parse_api_keys("key1,key2,key1") == {"key1", "key2"}


class TestValidateTaskAPIKey:
    """Test core task key validation logic."""

    @patch("admission.core.auth.settings")
    def test_validate_bypassed_when_not_required(self, mock_settings) -> None:
        """Test that validation is skipped when APP_TASK_API_KEY_REQUIRED=false."""
        mock_settings.app.task_api_key_required = False

        validate_task_api_key("any-random-key")
        validate_task_api_key(None)

    @patch("admission.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings) -> None:
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = None

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_task_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"

    @patch("admission.core.auth.settings")
    def test_validate_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = "valid-key-1,valid-key-2"

        # Should not raise
        validate_task_api_key("valid-key-1")
        validate_task_api_key("valid-key-2")

    @patch("admission.core.auth.settings")
    def test_validate_rejects_missing_key(self, mock_settings) -> None:
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = "valid-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_task_api_key("")

        assert exc_info.value.code == "missing_api_key"

    @patch("admission.core.auth.settings")
    def test_validate_rejects_invalid_key(self, mock_settings) -> None:
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = " key1 , key2 "

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_task_api_key(" key1 ")

        assert exc_info.value.code == "invalid_api_key"


class TestVerifyTaskAPIKeyDependency:
    """Test FastAPI dependency for task key verification."""

    @pytest.mark.asyncio
    @patch("admission.core.auth.settings")
    async def test_verify_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = "my-valid-key"

        await verify_task_api_key(x_api_key="my-valid-key")

    @pytest.mark.asyncio
    @patch("admission.core.auth.settings")
    async def test_verify_raises_app_error_when_header_missing(self, mock_settings) -> None:
        """Failures surface as AuthenticationAppError; the handler maps them to 403."""
        mock_settings.app.task_api_key_required = True
        mock_settings.app.task_api_keys = "valid-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            await verify_task_api_key(x_api_key=None)

        assert exc_info.value.code == "missing_api_key"
