"""Shared test fixtures for unsealer."""

from __future__ import annotations

import threading
from typing import Optional

import pytest

from unsealer.config import UnsealerConfig
from unsealer.errors import AuthError

TARGET = "https://vault-1.example:8200"

BASE_ENV = {
    "API_URL": "https://api.bitwarden.example",
    "IDENTITY_URL": "https://identity.bitwarden.example",
    "VAULT_URLS": "https://vault-1.example:8200,https://vault-2.example:8200",
    "ORGANIZATION_ID": "org-123",
    "ACCESS_TOKEN": "0.machine-token.secret",
    "UNSEAL_KEY_1": "id-1",
    "UNSEAL_KEY_2": "id-2",
    "UNSEAL_KEY_3": "id-3",
    "UNSEAL_KEY_4": "id-4",
}


class FakeSecretsClient:
    """In-memory secrets manager.

    Args:
        secrets: secret_id -> value.
        auth_failures: Number of upcoming get_secret calls that raise AuthError.
    """

    def __init__(self, secrets: Optional[dict] = None, auth_failures: int = 0):
        self.secrets = dict(secrets or {f"id-{i}": f"key-{i}" for i in range(1, 5)})
        self.auth_failures = auth_failures
        self.logins = 0
        self.gets: list[str] = []
        self.fail_with: Optional[Exception] = None

    def login(self, access_token: str, organization_id: str) -> None:
        self.logins += 1

    def get_secret(self, secret_id: str) -> str:
        self.gets.append(secret_id)
        if self.auth_failures > 0:
            self.auth_failures -= 1
            raise AuthError("401 unauthorized")
        if self.fail_with is not None:
            raise self.fail_with
        return self.secrets[secret_id]


class FakeNode:
    """Scripted vault node shared by every target.

    Args:
        health: Status codes returned in order; the last one repeats.
        submits: ``sealed`` results (or exceptions) returned in order;
            the last one repeats.
        delay: Seconds each submission blocks, to widen race windows.
    """

    def __init__(self, health=(503,), submits=(True,), delay: float = 0.0):
        self._lock = threading.Lock()
        self._health = list(health)
        self._submits = list(submits)
        self.delay = delay
        self.health_calls: list[str] = []
        self.submitted: list[tuple[str, str]] = []

    @staticmethod
    def _next(script: list):
        return script.pop(0) if len(script) > 1 else script[0]

    def health(self, target: str) -> int:
        with self._lock:
            self.health_calls.append(target)
            result = self._next(self._health)
        if isinstance(result, Exception):
            raise result
        return result

    def submit_key(self, target: str, key: str) -> bool:
        with self._lock:
            self.submitted.append((target, key))
            result = self._next(self._submits)
        if self.delay:
            threading.Event().wait(self.delay)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def env() -> dict:
    return dict(BASE_ENV)


@pytest.fixture
def config(env) -> UnsealerConfig:
    return UnsealerConfig.from_env(env).model_copy(
        update={
            "backoff_base": 0.01,
            "http_host": "127.0.0.1",
            "http_port": 0,
            "shutdown_timeout": 5.0,
        }
    )


@pytest.fixture
def secrets_client() -> FakeSecretsClient:
    return FakeSecretsClient()
