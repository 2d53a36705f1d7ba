"""Tests for settings loading, env overrides and fail-fast validation."""
import pytest

from config.settings import Settings, apply_env_overrides, load_settings
from core.errors import ConfigurationError

ENV_VARS = (
    "UPSTASH_REDIS_REST_URL", "UPSTASH_REDIS_REST_TOKEN", "REDIS_URL", "QUEUE_NAME",
    "QUEUE_MAX_RETRIES", "QUEUE_RETRY_DELAY_SECONDS", "RABBITMQ_URL", "BROKER_URL",
    "RESEND_API_KEY", "FROM_NAME", "FROM_EMAIL", "ADMIN_EMAIL", "CRON_SECRET",
    "PIPELINE_DEBUG", "INVOICE_STORAGE_URL", "INVOICE_PUBLIC_URL", "INVOICE_STORAGE_TOKEN",
    "INVOICE_RENDERER_URL", "ORDERS_API_URL", "ORDERS_API_TOKEN",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def ready_settings() -> Settings:
    settings = Settings()
    settings.email.api_key = "re_test"
    settings.email.from_email = "orders@tsrgallery.test"
    settings.email.admin_email = "admin@tsrgallery.test"
    settings.queue.rest_url = "https://queue.upstash.io"
    settings.queue.rest_token = "token"
    settings.broker.url = "redis://localhost:6379/1"
    return settings


class TestDefaults:
    def test_queue_defaults(self):
        settings = Settings()
        assert settings.queue.queue_name == "nextecom_tasks"
        assert settings.queue.max_retries == 3
        assert settings.queue.retry_delay_seconds == 5.0
        assert settings.broker.exchange == "nextecom_events"

    def test_every_route_defaults_to_queue(self):
        assert set(Settings().delivery.routes.values()) == {"queue"}


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, clean_env, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.queue.store_backend == "upstash"

    def test_yaml_with_env_substitution(self, clean_env, tmp_path):
        clean_env.setenv("TEST_QUEUE_TOKEN", "tok_123")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "queue:\n"
            "  store_backend: redis\n"
            "  redis_url: redis://cache:6379/0\n"
            "  rest_token: ${TEST_QUEUE_TOKEN}\n"
            "  unknown_key: ignored\n"
            "email:\n"
            "  from_name: Test Store\n"
            "delivery:\n"
            "  routes:\n"
            "    stock_low: broker\n"
        )
        settings = load_settings(str(path))

        assert settings.queue.store_backend == "redis"
        assert settings.queue.rest_token == "tok_123"
        assert settings.email.from_name == "Test Store"
        assert settings.delivery.routes["stock_low"] == "broker"
        assert settings.delivery.routes["order_created"] == "queue"

    def test_unset_variable_left_verbatim(self, clean_env, tmp_path):
        clean_env.delenv("TEST_UNSET_VAR", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("cron_secret: ${TEST_UNSET_VAR}\n")
        assert load_settings(str(path)).cron_secret == "${TEST_UNSET_VAR}"

    def test_environment_wins_over_yaml(self, clean_env, tmp_path):
        clean_env.setenv("QUEUE_NAME", "from_env")
        path = tmp_path / "settings.yaml"
        path.write_text("queue:\n  queue_name: from_yaml\n")
        assert load_settings(str(path)).queue.queue_name == "from_env"


class TestEnvOverrides:
    def test_typed_values(self):
        settings = apply_env_overrides(Settings(), {
            "QUEUE_MAX_RETRIES": "5",
            "QUEUE_RETRY_DELAY_SECONDS": "2.5",
            "ADMIN_EMAIL": "ops@example.com",
            "CRON_SECRET": "s3cret",
            "PIPELINE_DEBUG": "true",
        })
        assert settings.queue.max_retries == 5
        assert settings.queue.retry_delay_seconds == 2.5
        assert settings.email.admin_email == "ops@example.com"
        assert settings.cron_secret == "s3cret"
        assert settings.debug is True

    def test_rabbitmq_url_accepted_as_broker_url(self):
        settings = apply_env_overrides(Settings(), {"RABBITMQ_URL": "redis://broker:6379"})
        assert settings.broker.url == "redis://broker:6379"

    def test_empty_values_ignored(self):
        settings = apply_env_overrides(Settings(), {"QUEUE_NAME": ""})
        assert settings.queue.queue_name == "nextecom_tasks"

    def test_invalid_integer(self):
        with pytest.raises(ConfigurationError, match="QUEUE_MAX_RETRIES"):
            apply_env_overrides(Settings(), {"QUEUE_MAX_RETRIES": "three"})


class TestValidation:
    def test_complete_settings_pass(self):
        settings = ready_settings()
        settings.validate_for_queue()
        settings.validate_for_broker()

    def test_queue_requires_store_credentials(self):
        settings = ready_settings()
        settings.queue.rest_token = ""
        with pytest.raises(ConfigurationError, match="UPSTASH_REDIS_REST_TOKEN"):
            settings.validate_for_queue()

    def test_redis_backend_requires_url(self):
        settings = ready_settings()
        settings.queue.store_backend = "redis"
        with pytest.raises(ConfigurationError, match="REDIS_URL"):
            settings.validate_for_queue()

    def test_unknown_store_backend(self):
        settings = ready_settings()
        settings.queue.store_backend = "sqs"
        with pytest.raises(ConfigurationError, match="Unknown queue store backend"):
            settings.validate_for_queue()

    def test_negative_retries_rejected(self):
        settings = ready_settings()
        settings.queue.max_retries = -1
        with pytest.raises(ConfigurationError):
            settings.validate_for_queue()

    def test_missing_notification_settings_listed(self):
        settings = ready_settings()
        settings.email.admin_email = ""
        settings.email.api_key = ""
        with pytest.raises(ConfigurationError) as exc:
            settings.validate_for_queue()
        assert "ADMIN_EMAIL" in str(exc.value)
        assert "RESEND_API_KEY" in str(exc.value)

    def test_memory_provider_needs_no_api_key(self, memory_settings):
        memory_settings.validate_for_queue()

    def test_broker_requires_url(self):
        settings = ready_settings()
        settings.broker.url = ""
        with pytest.raises(ConfigurationError, match="BROKER_URL"):
            settings.validate_for_broker()
