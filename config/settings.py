"""
Configuration loader for the checkout side-effect pipeline.
Reads settings from a YAML file with environment variable substitution,
then applies the deployment environment variables on top.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from core.errors import ConfigurationError


@dataclass
class QueueConfig:
    store_backend: str = "upstash"      # "upstash" (REST), "redis", or "memory" for dev
    rest_url: str = ""                  # Upstash REST endpoint
    rest_token: str = ""
    redis_url: str = ""                 # used by the "redis" backend
    queue_name: str = "nextecom_tasks"
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    batch_size: int = 10
    drain_interval_seconds: float = 30.0


@dataclass
class BrokerConfig:
    backend: str = "redis"              # "redis" (streams) or "memory" for dev
    url: str = ""
    exchange: str = "nextecom_events"
    consumer_name: str = ""
    block_ms: int = 2000                # how long one read waits for messages
    redelivery_idle_ms: int = 30000     # unacked messages older than this are redelivered
    max_deliveries: int = 5             # broker-level dead letter after this many deliveries
    heartbeat_interval_seconds: int = 60


@dataclass
class EmailConfig:
    provider: str = "resend"            # "resend" or "memory"
    api_key: str = ""
    api_url: str = "https://api.resend.com"
    from_name: str = "TSR Gallery"
    from_email: str = ""
    admin_email: str = ""


@dataclass
class StorageConfig:
    backend: str = "http"               # "http" or "memory"
    base_url: str = ""                  # upload endpoint, PUT <base_url>/[<folder>/]<key>
    public_base_url: str = ""           # URL prefix returned to callers
    token: str = ""
    folder: str = ""                    # optional prefix inside the bucket


@dataclass
class RendererConfig:
    backend: str = "remote"             # "remote" or "static" (placeholder PDF, dev only)
    url: str = ""
    token: str = ""
    timeout_seconds: float = 60.0


@dataclass
class OrdersConfig:
    backend: str = "rest"               # "rest" or "memory"
    base_url: str = ""
    token: str = ""


@dataclass
class DeliveryConfig:
    # business occurrence → "queue" | "broker"
    routes: dict[str, str] = field(default_factory=lambda: {
        "order_created": "queue",
        "invoice_requested": "queue",
        "stock_low": "queue",
        "customer_registered": "queue",
        "product_created": "queue",
    })


@dataclass
class Settings:
    app_name: str = "checkout-pipeline"
    debug: bool = False
    cron_secret: str = ""
    queue: QueueConfig = field(default_factory=QueueConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    orders: OrdersConfig = field(default_factory=OrdersConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    def validate_for_queue(self) -> None:
        """Fail fast when the durable list store cannot be reached."""
        q = self.queue
        if q.store_backend == "upstash" and not (q.rest_url and q.rest_token):
            raise ConfigurationError(
                "UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set"
            )
        if q.store_backend == "redis" and not q.redis_url:
            raise ConfigurationError("REDIS_URL must be set for the redis queue backend")
        if q.store_backend not in ("upstash", "redis", "memory"):
            raise ConfigurationError(f"Unknown queue store backend: {q.store_backend}")
        if q.max_retries < 0:
            raise ConfigurationError("queue.max_retries must be >= 0")
        self._validate_notifications()

    def validate_for_broker(self) -> None:
        """Fail fast when the message broker cannot be reached."""
        b = self.broker
        if b.backend == "redis" and not b.url:
            raise ConfigurationError("BROKER_URL (or RABBITMQ_URL) must be set")
        if b.backend not in ("redis", "memory"):
            raise ConfigurationError(f"Unknown broker backend: {b.backend}")
        self._validate_notifications()

    def _validate_notifications(self) -> None:
        missing = [
            name for name, value in (
                ("ADMIN_EMAIL", self.email.admin_email),
                ("FROM_EMAIL", self.email.from_email),
            ) if not value
        ]
        if self.email.provider == "resend" and not self.email.api_key:
            missing.append("RESEND_API_KEY")
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


_settings: Optional[Settings] = None

# env var → (section, attribute, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "UPSTASH_REDIS_REST_URL": ("queue", "rest_url", str),
    "UPSTASH_REDIS_REST_TOKEN": ("queue", "rest_token", str),
    "REDIS_URL": ("queue", "redis_url", str),
    "QUEUE_NAME": ("queue", "queue_name", str),
    "QUEUE_MAX_RETRIES": ("queue", "max_retries", int),
    "QUEUE_RETRY_DELAY_SECONDS": ("queue", "retry_delay_seconds", float),
    "RABBITMQ_URL": ("broker", "url", str),
    "BROKER_URL": ("broker", "url", str),
    "RESEND_API_KEY": ("email", "api_key", str),
    "FROM_NAME": ("email", "from_name", str),
    "FROM_EMAIL": ("email", "from_email", str),
    "ADMIN_EMAIL": ("email", "admin_email", str),
    "INVOICE_STORAGE_URL": ("storage", "base_url", str),
    "INVOICE_PUBLIC_URL": ("storage", "public_base_url", str),
    "INVOICE_STORAGE_TOKEN": ("storage", "token", str),
    "INVOICE_RENDERER_URL": ("renderer", "url", str),
    "ORDERS_API_URL": ("orders", "base_url", str),
    "ORDERS_API_TOKEN": ("orders", "token", str),
}


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _build_section(cls, raw: dict[str, Any]):
    """Build a config dataclass from a YAML mapping, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def apply_env_overrides(settings: Settings, environ: dict[str, str] = None) -> Settings:
    """Environment variables win over YAML values."""
    environ = os.environ if environ is None else environ
    for var_name, (section, attr, convert) in _ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value in (None, ""):
            continue
        try:
            setattr(getattr(settings, section), attr, convert(value))
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {var_name}: {value!r}") from e

    if environ.get("CRON_SECRET"):
        settings.cron_secret = environ["CRON_SECRET"]
    if environ.get("PIPELINE_DEBUG"):
        settings.debug = environ["PIPELINE_DEBUG"].lower() in ("1", "true", "yes")
    return settings


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file, then apply environment overrides."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "CHECKOUT_PIPELINE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.cron_secret = raw.get("cron_secret", settings.cron_secret)

        if "queue" in raw:
            settings.queue = _build_section(QueueConfig, raw["queue"])
        if "broker" in raw:
            settings.broker = _build_section(BrokerConfig, raw["broker"])
        if "email" in raw:
            settings.email = _build_section(EmailConfig, raw["email"])
        if "storage" in raw:
            settings.storage = _build_section(StorageConfig, raw["storage"])
        if "renderer" in raw:
            settings.renderer = _build_section(RendererConfig, raw["renderer"])
        if "orders" in raw:
            settings.orders = _build_section(OrdersConfig, raw["orders"])
        if "delivery" in raw:
            routes = DeliveryConfig().routes
            routes.update(raw["delivery"].get("routes", {}))
            settings.delivery = DeliveryConfig(routes=routes)

    apply_env_overrides(settings)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
