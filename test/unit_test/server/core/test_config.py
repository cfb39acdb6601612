"""Unit tests for server configuration settings model.

Tests verify that the Settings model binds environment variables and that
the grouped configuration models are derived from the flat fields.
"""

import pytest

from medprep_ai.server.core.config import (
    AdaptiveQuizConfig,
    CORSConfig,
    Settings,
    StripeSettings,
    UploadConfig,
)


@pytest.fixture
def make_settings():
    def _make() -> Settings:
        return Settings(_env_file=None)

    return _make


class TestSettingsBinding:
    """Test Settings model environment variable binding."""

    def test_server_binding(self, make_settings, monkeypatch):
        monkeypatch.setenv("MEDPREP_SERVER_HOST", "127.0.0.1")
        monkeypatch.setenv("MEDPREP_SERVER_PORT", "9000")
        monkeypatch.setenv("MEDPREP_LOG_LEVEL", "DEBUG")

        settings = make_settings()

        assert settings.server_host == "127.0.0.1"
        assert settings.server_port == 9000
        assert settings.log_level == "DEBUG"

    def test_database_url_binding(self, make_settings, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./medprep.db")

        settings = make_settings()

        assert settings.database_url == "sqlite+aiosqlite:///./medprep.db"
        assert settings.database.url == "sqlite+aiosqlite:///./medprep.db"

    def test_defaults(self, make_settings, monkeypatch):
        for name in ("STRIPE_SECRET_KEY", "ADAPTIVE_QUIZ_DAILY_LIMIT", "UPLOAD_MAX_SIZE_MB"):
            monkeypatch.delenv(name, raising=False)

        settings = make_settings()

        assert settings.stripe_secret_key is None
        assert settings.adaptive_quiz_daily_limit == 5
        assert settings.adaptive_quiz_cooldown_minutes == 30
        assert settings.upload_max_size_mb == 50

    def test_environment_names_are_case_sensitive(self, make_settings, monkeypatch):
        monkeypatch.delenv("ADAPTIVE_QUIZ_DAILY_LIMIT", raising=False)
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        monkeypatch.setenv("adaptive_quiz_daily_limit", "9")
        monkeypatch.setenv("stripe_secret_key", "sk_live_lowercase")

        settings = make_settings()

        assert settings.adaptive_quiz_daily_limit == 5
        assert settings.stripe_secret_key is None


class TestGroupedConfigs:
    """Test the grouped configuration properties."""

    def test_stripe_group(self, make_settings, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")
        monkeypatch.setenv("STRIPE_PRICE_ID_MONTHLY", "price_monthly")
        monkeypatch.setenv("STRIPE_PRICE_ID_YEARLY", "price_yearly")
        monkeypatch.setenv("STRIPE_RETRY_INTERVAL_SECONDS", "0")
        monkeypatch.setenv("FRONTEND_URL", "https://app.medprep.test")

        stripe = make_settings().stripe

        assert isinstance(stripe, StripeSettings)
        assert stripe.secret_key == "sk_test_123"
        assert stripe.webhook_secret == "whsec_abc"
        assert stripe.price_id_monthly == "price_monthly"
        assert stripe.price_id_yearly == "price_yearly"
        assert stripe.retry_interval_seconds == 0
        assert stripe.frontend_url == "https://app.medprep.test"
        assert stripe.trial_period_days == 30

    def test_groups_follow_flat_fields(self, make_settings):
        settings = make_settings()
        settings.adaptive_quiz_daily_limit = 2
        settings.upload_dir = "/tmp/kb"

        assert settings.adaptive_quiz.daily_limit == 2
        assert settings.uploads.directory == "/tmp/kb"

    def test_adaptive_quiz_group(self, make_settings, monkeypatch):
        monkeypatch.setenv("ADAPTIVE_QUIZ_COOLDOWN_MINUTES", "10")
        monkeypatch.setenv("ADAPTIVE_QUIZ_MINIMUM_QUIZZES", "4")

        config = make_settings().adaptive_quiz

        assert isinstance(config, AdaptiveQuizConfig)
        assert config.cooldown_minutes == 10
        assert config.minimum_quizzes == 4
        assert config.session_expiry_hours == 24

    def test_ai_group(self, make_settings, monkeypatch):
        monkeypatch.setenv("AI_QUIZ_MODEL", "anthropic:claude-sonnet-4-0")
        monkeypatch.setenv("AI_QUIZ_MAX_RETRIES", "1")

        config = make_settings().ai

        assert config.model == "anthropic:claude-sonnet-4-0"
        assert config.max_retries == 1

    def test_cors_group(self, make_settings, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", '["https://app.medprep.test"]')

        cors = make_settings().cors

        assert isinstance(cors, CORSConfig)
        assert cors.origins == ["https://app.medprep.test"]
        assert cors.allow_credentials is True


class TestConfigModels:
    def test_stripe_settings_by_field_name(self):
        config = StripeSettings(secret_key="sk_live_1", trial_period_days=7)

        assert config.secret_key == "sk_live_1"
        assert config.trial_period_days == 7
        assert config.webhook_secret is None

    def test_upload_config_by_alias(self):
        config = UploadConfig.model_validate({"UPLOAD_DIR": "/srv/uploads", "UPLOAD_MAX_SIZE_MB": 10})

        assert config.directory == "/srv/uploads"
        assert config.max_size_mb == 10
