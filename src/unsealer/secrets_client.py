"""Secrets manager capability and its Bitwarden adapter.

The rest of the package only depends on the two-method SecretsClient
protocol. BitwardenSecretsClient wraps the official ``bitwarden-sdk``
package, which is imported lazily so the core can be used and tested
without it.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Protocol

from .errors import AuthError, TransportError

logger = logging.getLogger("unsealer.secrets_client")

_AUTH_PATTERN = re.compile(
    r"unauthori[sz]ed|unauthenticated|forbidden|\b40[13]\b|access token|not logged in|expired",
    re.IGNORECASE,
)


class SecretsClient(Protocol):
    """Minimal secrets-manager capability consumed by the fetcher."""

    def login(self, access_token: str, organization_id: str) -> None:
        """Open (or reopen) a session. Raises AuthError on rejection."""

    def get_secret(self, secret_id: str) -> str:
        """Return the secret value. Raises AuthError or TransportError."""


def _is_auth_failure(detail: str) -> bool:
    return _AUTH_PATTERN.search(detail) is not None


def _classify(context: str, detail: str) -> Exception:
    """Build the error for an SDK failure, judged on the SDK's own text only."""
    message = f"{context}: {detail}"
    if _is_auth_failure(detail):
        return AuthError(message)
    return TransportError(message)


class BitwardenSecretsClient:
    """SecretsClient backed by Bitwarden Secrets Manager.

    Args:
        api_url: Bitwarden API endpoint.
        identity_url: Bitwarden identity endpoint.
    """

    def __init__(self, api_url: str, identity_url: str):
        self._api_url = api_url
        self._identity_url = identity_url
        self._client: Optional[Any] = None

    def _new_client(self) -> Any:
        try:
            from bitwarden_sdk import BitwardenClient, DeviceType, client_settings_from_dict
        except ImportError:
            raise RuntimeError(
                "Bitwarden adapter requires 'bitwarden-sdk': pip install bitwarden-sdk"
            )

        return BitwardenClient(
            client_settings_from_dict(
                {
                    "apiUrl": self._api_url,
                    "identityUrl": self._identity_url,
                    "deviceType": DeviceType.SDK,
                    "userAgent": "unsealer",
                }
            )
        )

    def login(self, access_token: str, organization_id: str) -> None:
        """Log in with a machine account access token.

        A fresh SDK client is created on every login so a stale session
        never survives a re-login.

        Raises:
            AuthError: If the token is rejected.
            TransportError: If Bitwarden is unreachable.
        """
        client = self._new_client()
        logger.info(
            "Logging in to Bitwarden (org=%s, token=[length=%d])",
            organization_id,
            len(access_token),
        )
        try:
            result = client.auth().login_access_token(access_token)
        except Exception as exc:
            raise _classify("login failed", str(exc)) from exc

        if getattr(result, "success", True) is False:
            # Rejected logins are auth failures no matter how the SDK words them.
            raise AuthError(f"login failed: {getattr(result, 'error_message', 'unknown error')}")

        self._client = client

    def get_secret(self, secret_id: str) -> str:
        """Fetch a single secret value by identifier.

        Raises:
            AuthError: If there is no session or it was rejected.
            TransportError: On any other retrieval failure.
        """
        if self._client is None:
            raise AuthError("not logged in")

        try:
            response = self._client.secrets().get(secret_id)
        except Exception as exc:
            raise _classify(f"failed to retrieve secret {secret_id}", str(exc)) from exc

        if getattr(response, "success", True) is False:
            raise _classify(
                f"failed to retrieve secret {secret_id}",
                str(getattr(response, "error_message", "unknown error")),
            )

        data = getattr(response, "data", None)
        value = getattr(data, "value", None)
        return value or ""
