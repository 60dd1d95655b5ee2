"""
Credential Vault.

============================================================
PURPOSE
============================================================
AES-256-GCM encryption of exchange API credentials with keys
derived from a master key (PBKDF2-HMAC-SHA256).

Only ciphertext, IV and salt are ever stored.

============================================================
"""

from .config import MASTER_KEY_ENV, VaultConfig
from .store import CredentialStore
from .vault import CredentialVault, EncryptedCredentials, EncryptedValue


__all__ = [
    "MASTER_KEY_ENV",
    "VaultConfig",
    "CredentialStore",
    "CredentialVault",
    "EncryptedCredentials",
    "EncryptedValue",
]
