"""Unit tests for settings validation."""

import pytest
from pydantic import ValidationError

from edupulse.config import Settings


class TestSettings:
    def test_secrets_must_differ(self):
        with pytest.raises(ValidationError):
            Settings(jwt_access_secret="x" * 40, jwt_refresh_secret="x" * 40)

    def test_production_rejects_default_secrets(self):
        with pytest.raises(ValidationError):
            Settings(environment="production")

    def test_production_with_real_secrets(self):
        settings = Settings(
            environment="production",
            jwt_access_secret="a" * 40,
            jwt_refresh_secret="b" * 40,
        )

        assert settings.is_development is False
        assert settings.refresh_cookie_path == "/api/v1/auth"

    def test_defaults(self):
        settings = Settings()

        assert settings.access_token_expire_minutes == 15
        assert settings.refresh_token_expire_days == 7
        assert settings.email_verification_expire_hours == 24
        assert settings.password_reset_expire_minutes == 60
        assert settings.rate_limit_login_max == 5
