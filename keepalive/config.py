"""Configuration management for the keep-alive pinger."""

from __future__ import annotations

import os
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_PORT = 3000


def _env_bool(raw: str) -> bool:
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_csv(raw: str) -> list[str]:
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def parse_targets(raw: str | None, *, fallback: str) -> list[str]:
    """Split a comma-separated URL list; fall back to a single default URL."""
    targets = _env_csv(raw) if raw else []
    return targets or [fallback]


class PingerSettings(BaseModel):
    """Main configuration for the pinger."""

    # Targets
    targets: list[str] = Field(default_factory=list, description="URLs to keep alive, in probe order")

    # Scheduling
    interval_minutes: float = Field(default=10, gt=0, description="Minutes between ping cycles")
    startup_delay_seconds: float = Field(default=30, ge=0, description="Grace delay before the first cycle")

    # Request phase
    http_probe_enabled: bool = Field(default=True, description="Send plain HTTP requests before the browser phase")
    http_timeout_seconds: float = Field(default=30, gt=0, description="Per-request timeout")
    inter_phase_delay_seconds: float = Field(default=10, ge=0, description="Pause between request and browser phases")

    # Browser phase
    browser_probe_enabled: bool = Field(default=True, description="Load every target in headless Chromium")
    browser_timeout_seconds: float = Field(default=120, gt=0, description="Per-navigation timeout")
    tab_concurrency: int = Field(default=1, ge=1, description="Tabs allowed to navigate at the same time")
    tab_stagger_seconds: float = Field(default=2, ge=0, description="Delay between successive tab openings")
    settle_seconds: float = Field(default=180, ge=0, description="Time all tabs stay open after loading")
    chromium_path: Optional[str] = Field(default=None, description="Explicit Chromium executable")

    # Notifications
    webhook_url: Optional[str] = Field(default=None, description="Discord-compatible webhook URL")
    webhook_timeout_seconds: float = Field(default=10, gt=0, description="Webhook POST timeout")
    smtp_host: Optional[str] = Field(default=None, description="SMTP server host")
    smtp_port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    smtp_username: Optional[str] = Field(default=None, description="SMTP login user")
    smtp_password: Optional[str] = Field(default=None, description="SMTP login password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS on non-SSL ports")
    smtp_timeout_seconds: float = Field(default=15, gt=0, description="SMTP socket timeout")
    email_from: Optional[str] = Field(default=None, description="Sender address")
    email_to: list[str] = Field(default_factory=list, description="Recipient addresses")

    # Server
    host: str = Field(default="0.0.0.0", description="Bind address of the status endpoint")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Bind port of the status endpoint")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("targets", "email_to", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _env_csv(value)
        return value

    @field_validator("targets")
    @classmethod
    def _strip_targets(cls, value: list[str]) -> list[str]:
        return [str(url).strip() for url in value if str(url).strip()]

    @model_validator(mode="after")
    def _blank_secrets_are_unset(self) -> "PingerSettings":
        for name in ("webhook_url", "smtp_host", "smtp_username", "smtp_password", "email_from", "chromium_path"):
            value = getattr(self, name)
            if value is not None and not str(value).strip():
                setattr(self, name, None)
        if not (self.http_probe_enabled or self.browser_probe_enabled):
            raise ValueError("at least one of http_probe_enabled / browser_probe_enabled must be true")
        return self

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_url)

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.email_from and self.email_to)


# env var -> (field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "PING_INTERVAL_MIN": ("interval_minutes", float),
    "STARTUP_DELAY_SEC": ("startup_delay_seconds", float),
    "HTTP_PROBE_ENABLED": ("http_probe_enabled", _env_bool),
    "HTTP_TIMEOUT_SEC": ("http_timeout_seconds", float),
    "HTTP_TO_BROWSER_DELAY_SEC": ("inter_phase_delay_seconds", float),
    "BROWSER_PROBE_ENABLED": ("browser_probe_enabled", _env_bool),
    "BROWSER_TIMEOUT_SEC": ("browser_timeout_seconds", float),
    "TAB_CONCURRENCY": ("tab_concurrency", int),
    "TAB_STAGGER_SEC": ("tab_stagger_seconds", float),
    "PAGE_WAIT_SEC": ("settle_seconds", float),
    "CHROMIUM_PATH": ("chromium_path", str),
    "WEBHOOK_URL": ("webhook_url", str),
    "DISCORD_WEBHOOK": ("webhook_url", str),
    "SMTP_HOST": ("smtp_host", str),
    "SMTP_PORT": ("smtp_port", int),
    "SMTP_USERNAME": ("smtp_username", str),
    "SMTP_PASSWORD": ("smtp_password", str),
    "SMTP_USE_TLS": ("smtp_use_tls", _env_bool),
    "EMAIL_FROM": ("email_from", str),
    "EMAIL_TO": ("email_to", _env_csv),
    "HOST": ("host", str),
    "PORT": ("port", int),
    "LOG_LEVEL": ("log_level", str),
}


def load_settings(config_path: Optional[str] = None, environ: Optional[dict[str, str]] = None) -> PingerSettings:
    """Load settings from an optional YAML file, then apply environment overrides."""
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get("KEEPALIVE_CONFIG", "config/keepalive.yaml")

    config_data: dict[str, Any] = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    for env_name, (key, convert) in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            config_data[key] = convert(value)

    port = config_data.get("port", DEFAULT_PORT)
    fallback = env.get("RENDER_EXTERNAL_URL") or f"http://localhost:{port}"
    if env.get("PING_URLS", "").strip():
        config_data["targets"] = parse_targets(env["PING_URLS"], fallback=fallback)
    elif "targets" not in config_data:
        config_data["targets"] = [fallback]

    return PingerSettings(**config_data)
