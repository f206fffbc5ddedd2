"""
Unsealer — keeps sealed Vault nodes unsealed.

Fetches quorum unseal keys from Bitwarden Secrets Manager, holds them
in memory only, and continuously reconciles every configured node back
to the unsealed state.
"""

__version__ = "0.2.0"

REQUIRED_UNSEAL_KEYS = 4
