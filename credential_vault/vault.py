"""
Credential Vault - Authenticated Encryption.

============================================================
PURPOSE
============================================================
Encrypts exchange API secrets at rest.

- AES-256-GCM
- Key derived with PBKDF2-HMAC-SHA256 (100,000 iterations)
  from the master secret and a random 16-byte salt
- Random 12-byte IV and salt on every encrypt call
- ciphertext, iv and salt are base64 strings

A credential batch (api key, secret, passphrase) shares one
salt and therefore one derived key. Each field is sealed under
its own nonce (base IV + field counter) with the field name as
associated data, so nonces never repeat under a key and fields
cannot be swapped.

============================================================
"""

import base64
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.exceptions import DecryptionError
from execution_engine.types import ExchangeCredentials

from .config import VaultConfig


logger = logging.getLogger(__name__)


KEY_BYTES = 32

CREDENTIAL_FIELDS = ("api_key", "api_secret", "passphrase")


# ============================================================
# PAYLOADS
# ============================================================

@dataclass(frozen=True)
class EncryptedValue:
    """A single sealed value."""

    ciphertext: str
    iv: str
    salt: str


@dataclass(frozen=True)
class EncryptedCredentials:
    """
    Persisted credential schema.

    Holds base64 ciphertext only, never plaintext.
    """

    api_key_encrypted: str
    api_secret_encrypted: str
    iv: str
    salt: str
    passphrase_encrypted: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def _field_nonce(base_iv: bytes, index: int) -> bytes:
    """Nonce for the index-th field of a batch: base IV with its last 32 bits advanced."""
    counter = (int.from_bytes(base_iv[-4:], "big") + index) % (1 << 32)
    return base_iv[:-4] + counter.to_bytes(4, "big")


def _field_aad(name: str) -> bytes:
    return f"credential:{name}".encode("ascii")


# ============================================================
# VAULT
# ============================================================

class CredentialVault:
    """
    AES-256-GCM vault keyed by a process-wide master secret.

    Example:
        vault = CredentialVault.from_env()
        sealed = vault.encrypt("my-secret")
        vault.decrypt(sealed.ciphertext, sealed.iv, sealed.salt)
    """

    def __init__(self, config: VaultConfig):
        self._config = config
        self._master_key = config.master_key.encode("utf-8")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "CredentialVault":
        """Build a vault from ENCRYPTION_MASTER_KEY; raises ConfigurationError if unset."""
        return cls(VaultConfig.from_env(env_file))

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=self._config.iterations,
        )
        return kdf.derive(self._master_key)

    # --------------------------------------------------------
    # Single values
    # --------------------------------------------------------

    def encrypt(self, plaintext: str) -> EncryptedValue:
        """
        Encrypt a string under a fresh salt and IV.

        Args:
            plaintext: Value to seal

        Returns:
            EncryptedValue with base64 ciphertext, iv and salt
        """
        salt = os.urandom(self._config.salt_bytes)
        iv = os.urandom(self._config.iv_bytes)
        key = self._derive_key(salt)

        ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)

        return EncryptedValue(
            ciphertext=_b64encode(ciphertext),
            iv=_b64encode(iv),
            salt=_b64encode(salt),
        )

    def decrypt(self, ciphertext: str, iv: str, salt: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            DecryptionError: On tampering, wrong master key, iv or salt
        """
        return self._open(ciphertext, iv, salt, index=None, aad=None)

    def _open(
        self,
        ciphertext: str,
        iv: str,
        salt: str,
        index: Optional[int],
        aad: Optional[bytes],
        key: Optional[bytes] = None,
    ) -> str:
        try:
            raw_iv = _b64decode(iv)
            raw_salt = _b64decode(salt)
            raw_ciphertext = _b64decode(ciphertext)

            if key is None:
                key = self._derive_key(raw_salt)
            nonce = raw_iv if index is None else _field_nonce(raw_iv, index)

            plaintext = AESGCM(key).decrypt(nonce, raw_ciphertext, aad)
            return plaintext.decode("utf-8")
        except InvalidTag as e:
            raise DecryptionError(
                "Ciphertext failed authentication (tampered data or wrong key)",
                cause=e,
            ) from e
        except ValueError as e:
            # binascii.Error and UnicodeDecodeError are ValueErrors
            raise DecryptionError(f"Malformed encrypted value: {e}", cause=e) from e

    # --------------------------------------------------------
    # Credential batches
    # --------------------------------------------------------

    def encrypt_credentials(self, credentials: ExchangeCredentials) -> EncryptedCredentials:
        """Seal api key, secret and optional passphrase as one batch."""
        salt = os.urandom(self._config.salt_bytes)
        base_iv = os.urandom(self._config.iv_bytes)
        aesgcm = AESGCM(self._derive_key(salt))

        def seal(index: int, value: str) -> str:
            nonce = _field_nonce(base_iv, index)
            aad = _field_aad(CREDENTIAL_FIELDS[index])
            return _b64encode(aesgcm.encrypt(nonce, value.encode("utf-8"), aad))

        passphrase_encrypted = None
        if credentials.passphrase:
            passphrase_encrypted = seal(2, credentials.passphrase)

        return EncryptedCredentials(
            api_key_encrypted=seal(0, credentials.api_key),
            api_secret_encrypted=seal(1, credentials.api_secret),
            passphrase_encrypted=passphrase_encrypted,
            iv=_b64encode(base_iv),
            salt=_b64encode(salt),
        )

    def decrypt_credentials(
        self,
        encrypted: EncryptedCredentials,
        is_testnet: bool = False,
    ) -> ExchangeCredentials:
        """
        Open a credential batch.

        Raises:
            DecryptionError: If any field fails authentication
        """
        try:
            key = self._derive_key(_b64decode(encrypted.salt))
        except ValueError as e:
            raise DecryptionError(f"Malformed encryption salt: {e}", cause=e) from e

        def open_field(index: int, value: str) -> str:
            return self._open(
                value,
                encrypted.iv,
                encrypted.salt,
                index=index,
                aad=_field_aad(CREDENTIAL_FIELDS[index]),
                key=key,
            )

        passphrase = None
        if encrypted.passphrase_encrypted:
            passphrase = open_field(2, encrypted.passphrase_encrypted)

        return ExchangeCredentials(
            api_key=open_field(0, encrypted.api_key_encrypted),
            api_secret=open_field(1, encrypted.api_secret_encrypted),
            passphrase=passphrase,
            is_testnet=is_testnet,
        )
