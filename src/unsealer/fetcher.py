"""Populates the KeyCache from the secrets manager.

A refresh either replaces every key or none of them. An authentication
failure triggers exactly one re-login followed by one more full fetch;
a second auth failure is raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .errors import AuthError, TransportError, UnsealerError
from .keycache import KeyCache
from .secrets_client import SecretsClient

logger = logging.getLogger("unsealer.fetcher")


class SecretsFetcher:
    """Fetches unseal keys and swaps them into a KeyCache.

    Args:
        client: Secrets manager capability.
        cache: Cache to populate.
        secret_ids: One identifier per quorum share, in submission order.
        access_token: Machine account token used for (re-)login.
        organization_id: Secrets manager organization.
    """

    def __init__(
        self,
        client: SecretsClient,
        cache: KeyCache,
        secret_ids: Sequence[str],
        access_token: str,
        organization_id: str,
    ):
        self._client = client
        self._cache = cache
        self._secret_ids = tuple(secret_ids)
        self._access_token = access_token
        self._organization_id = organization_id

    def login(self) -> None:
        """Open a secrets-manager session.

        Raises:
            AuthError: If the session is rejected.
            TransportError: On any other login failure.
        """
        try:
            self._client.login(self._access_token, self._organization_id)
        except (AuthError, TransportError):
            raise
        except Exception as exc:
            raise TransportError(f"secrets manager login failed: {exc}") from exc
        logger.info("Logged in to secrets manager")

    def refresh(self) -> int:
        """Fetch all keys and replace the cache contents.

        Returns:
            int: Number of keys now cached.

        Raises:
            AuthError: On a second consecutive authentication failure.
            TransportError: On any non-auth retrieval failure.
            UnsealerError: If a key comes back empty.
        """
        keys = self._fetch(relogin_allowed=True)
        self._cache.replace(keys)
        logger.info("Successfully retrieved %d unseal keys", len(keys))
        return len(keys)

    def _fetch(self, relogin_allowed: bool) -> list[str]:
        try:
            return self._fetch_all()
        except AuthError as exc:
            if not relogin_allowed:
                raise
            logger.warning("Secrets manager rejected session (%s), logging in again", exc)
            self.login()
            return self._fetch(relogin_allowed=False)

    def _fetch_all(self) -> list[str]:
        keys: list[str] = []
        for index, secret_id in enumerate(self._secret_ids, start=1):
            try:
                value = self._client.get_secret(secret_id)
            except (AuthError, TransportError):
                raise
            except Exception as exc:
                raise TransportError(f"failed to retrieve unseal key {index}: {exc}") from exc

            if not value:
                raise UnsealerError(f"empty unseal key received for key {index}")

            logger.debug("UNSEAL_KEY_%d: [length=%d]", index, len(value))
            keys.append(value)
        return keys
