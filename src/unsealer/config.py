"""
Runtime configuration for the unsealer.

All settings come from the process environment. Required values are
collected up front so a misconfigured deployment reports every missing
variable in one go, before any network activity happens.

Usage:
    config = UnsealerConfig.from_env()
    logger.info("Config: %s", config.describe())
"""

from __future__ import annotations

import os
import threading
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

from . import REQUIRED_UNSEAL_KEYS
from .errors import ConfigError

MAX_URL_LENGTH = 2048
MAX_TOKEN_LENGTH = 1024
DEFAULT_POLL_INTERVAL = 60
MIN_POLL_INTERVAL = 1
DEFAULT_REFRESH_INTERVAL = 3600
DEFAULT_HTTP_PORT = 8080

REQUIRED_ENV = (
    "API_URL",
    "IDENTITY_URL",
    "VAULT_URLS",
    "ORGANIZATION_ID",
    "ACCESS_TOKEN",
) + tuple(f"UNSEAL_KEY_{i}" for i in range(1, REQUIRED_UNSEAL_KEYS + 1))


def _check_url(value: str) -> str:
    if len(value) > MAX_URL_LENGTH:
        raise ValueError(f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"not an http(s) URL: {value!r}")
    return value


class UnsealerConfig(BaseModel):
    """Validated unsealer settings.

    Attributes:
        api_url: Secrets manager API endpoint.
        identity_url: Secrets manager identity endpoint.
        targets: Vault node base URLs, fixed for the process lifetime.
        organization_id: Secrets manager organization.
        access_token: Machine account access token.
        secret_ids: One secret identifier per quorum share.
        verify_cert: Verify TLS certificates when talking to nodes.
        poll_interval: Seconds between reconciliation sweeps.
        refresh_interval: Seconds between key cache refreshes.
        http_host: Bind address of the operational API.
        http_port: Port of the operational API.
        request_timeout: Per-request timeout for node calls.
        shutdown_timeout: Upper bound for draining tasks and the API on stop.
        max_attempts: Outer unseal attempts per run.
        backoff_base: First backoff delay in seconds, doubled per retry.
    """

    api_url: str
    identity_url: str
    targets: tuple[str, ...]
    organization_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1, max_length=MAX_TOKEN_LENGTH)
    secret_ids: tuple[str, ...]
    verify_cert: bool = True
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, le=threading.TIMEOUT_MAX)
    refresh_interval: float = Field(default=DEFAULT_REFRESH_INTERVAL, le=threading.TIMEOUT_MAX)
    http_host: str = "0.0.0.0"
    http_port: int = Field(default=DEFAULT_HTTP_PORT, ge=0, le=65535)
    request_timeout: float = Field(default=30.0, gt=0, le=threading.TIMEOUT_MAX)
    shutdown_timeout: float = Field(default=30.0, gt=0, le=threading.TIMEOUT_MAX)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=1.0, ge=0)

    model_config = {"frozen": True, "allow_inf_nan": False}

    @field_validator("api_url", "identity_url")
    @classmethod
    def _validate_endpoint(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("targets")
    @classmethod
    def _validate_targets(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("at least one vault URL is required")
        return tuple(_check_url(t).rstrip("/") for t in value)

    @field_validator("secret_ids")
    @classmethod
    def _validate_secret_ids(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(value) != REQUIRED_UNSEAL_KEYS:
            raise ValueError(
                f"expected {REQUIRED_UNSEAL_KEYS} secret identifiers, got {len(value)}"
            )
        return value

    @field_validator("poll_interval")
    @classmethod
    def _floor_poll_interval(cls, value: float) -> float:
        return max(value, MIN_POLL_INTERVAL)

    @field_validator("refresh_interval")
    @classmethod
    def _positive_refresh(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("refresh interval must be positive")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "UnsealerConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ).
            **overrides: Field values that take precedence over the environment.

        Returns:
            UnsealerConfig: The validated configuration.

        Raises:
            ConfigError: If any required variable is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_ENV if not env.get(name, "").strip()]
        if missing:
            raise ConfigError(
                "required environment variable(s) not set: " + ", ".join(missing)
            )

        values: dict = {
            "api_url": env["API_URL"].strip(),
            "identity_url": env["IDENTITY_URL"].strip(),
            "targets": tuple(
                u.strip() for u in env["VAULT_URLS"].split(",") if u.strip()
            ),
            "organization_id": env["ORGANIZATION_ID"].strip(),
            "access_token": env["ACCESS_TOKEN"].strip(),
            "secret_ids": tuple(
                env[f"UNSEAL_KEY_{i}"].strip()
                for i in range(1, REQUIRED_UNSEAL_KEYS + 1)
            ),
        }

        optional = {
            "VERIFY_CERT": "verify_cert",
            "POLL_INTERVAL": "poll_interval",
            "KEY_REFRESH_INTERVAL": "refresh_interval",
            "HTTP_HOST": "http_host",
            "HTTP_PORT": "http_port",
            "REQUEST_TIMEOUT": "request_timeout",
            "SHUTDOWN_TIMEOUT": "shutdown_timeout",
        }
        for name, field in optional.items():
            raw = env.get(name, "").strip()
            if raw:
                values[field] = raw

        if "verify_cert" in values:
            values["verify_cert"] = values["verify_cert"].lower() != "false"

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigError(f"invalid configuration: {problems}") from exc

    def describe(self) -> dict:
        """Return a log-safe view of the configuration.

        The access token is reduced to its length; secret identifiers are
        not key material and are shown as-is.
        """
        data = self.model_dump()
        data["access_token"] = f"[length={len(self.access_token)}]"
        data["targets"] = list(self.targets)
        data["secret_ids"] = list(self.secret_ids)
        return data
