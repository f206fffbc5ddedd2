"""HTTP client for the Vault node wire contract.

Two calls are needed:

    GET  {target}/v1/sys/health   -> status code tells the seal state
    PUT  {target}/v1/sys/unseal   -> {"sealed": bool, ...}
"""

from __future__ import annotations

import logging

import requests

from .errors import ProtocolError, TransportError

logger = logging.getLogger("unsealer.node")

HEALTH_PATH = "/v1/sys/health"
UNSEAL_PATH = "/v1/sys/unseal"

# 200 active, 429 standby, 472 DR secondary, 473 performance standby.
ACCEPTABLE_STATUSES = frozenset({200, 429, 472, 473})
SEALED_STATUS = 503


class VaultNodeClient:
    """Stateless requests-based client shared by all unseal runs.

    Args:
        timeout: Per-request timeout in seconds.
        verify_cert: Verify TLS certificates.
    """

    def __init__(self, timeout: float = 30.0, verify_cert: bool = True):
        self.timeout = timeout
        self.verify_cert = verify_cert
        if not verify_cert:
            logger.warning("TLS certificate verification is disabled for vault nodes")

    def health(self, target: str) -> int:
        """Query a node's health endpoint.

        Returns:
            int: The HTTP status code.

        Raises:
            TransportError: If the node could not be reached.
        """
        try:
            resp = requests.get(
                f"{target}{HEALTH_PATH}",
                timeout=self.timeout,
                verify=self.verify_cert,
            )
        except requests.RequestException as exc:
            raise TransportError(f"health check to {target} failed: {exc}") from exc
        return resp.status_code

    def submit_key(self, target: str, key: str) -> bool:
        """Submit one unseal key share.

        Returns:
            bool: The node's ``sealed`` flag after this submission.

        Raises:
            TransportError: If the node could not be reached.
            ProtocolError: On a non-200 status or a body without a boolean
                ``sealed`` field.
        """
        try:
            resp = requests.put(
                f"{target}{UNSEAL_PATH}",
                json={"key": key},
                timeout=self.timeout,
                verify=self.verify_cert,
            )
        except requests.RequestException as exc:
            raise TransportError(f"unseal request to {target} failed: {exc}") from exc

        if resp.status_code != 200:
            raise ProtocolError(
                f"unseal request to {target} returned status {resp.status_code}"
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise ProtocolError(f"unseal response from {target} is not JSON") from exc

        sealed = body.get("sealed") if isinstance(body, dict) else None
        if not isinstance(sealed, bool):
            raise ProtocolError(f"unseal response from {target} has no boolean 'sealed' field")
        return sealed
