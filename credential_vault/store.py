"""
Credential Vault - Connection Store.

============================================================
PURPOSE
============================================================
Links exchange accounts and hands decrypted credentials to
the execution and reconciliation paths.

- link_exchange encrypts before anything is written
- load_credentials decrypts one stored connection
- Plaintext never reaches the database or the logs

============================================================
"""

import logging
from typing import TYPE_CHECKING, Optional

from core.exceptions import DecryptionError, ValidationError
from execution_engine.types import ExchangeCredentials

from .vault import CredentialVault, EncryptedCredentials

if TYPE_CHECKING:
    from storage.models import ExchangeConnectionModel
    from storage.repositories import TradingRepository


logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Encrypted exchange connections on top of the repository.

    Example:
        store = CredentialStore(vault, repository)
        connection = await store.link_exchange(user_id, account_id, "kraken", credentials)
        credentials = await store.find_credentials(account_id, "kraken")
    """

    def __init__(self, vault: CredentialVault, repository: "TradingRepository"):
        self._vault = vault
        self._repository = repository

    async def link_exchange(
        self,
        user_id: str,
        account_id: str,
        exchange_id: str,
        credentials: ExchangeCredentials,
        is_testnet: bool = False,
    ) -> "ExchangeConnectionModel":
        """
        Encrypt and store credentials for an exchange connection.

        Args:
            user_id: Owning user
            account_id: Trading account the connection belongs to
            exchange_id: Exchange identifier
            credentials: Plaintext credentials
            is_testnet: Connection targets the testnet

        Returns:
            The stored connection (encrypted fields only)
        """
        if not credentials.api_key or not credentials.api_secret:
            raise ValidationError("API key and secret are required", field="credentials")

        encrypted = self._vault.encrypt_credentials(credentials)
        connection = await self._repository.add_connection(
            user_id=user_id,
            account_id=account_id,
            exchange_id=exchange_id.lower(),
            api_key_encrypted=encrypted.api_key_encrypted,
            api_secret_encrypted=encrypted.api_secret_encrypted,
            encryption_iv=encrypted.iv,
            encryption_salt=encrypted.salt,
            passphrase_encrypted=encrypted.passphrase_encrypted,
            is_testnet=is_testnet,
        )

        logger.info(
            f"Linked {exchange_id} connection {connection.id} "
            f"for account {account_id}{' (testnet)' if is_testnet else ''}"
        )
        return connection

    async def unlink_exchange(self, connection_id: str) -> bool:
        removed = await self._repository.delete_connection(connection_id)
        if removed:
            logger.info(f"Unlinked connection {connection_id}")
        return removed

    def load_credentials(self, connection: "ExchangeConnectionModel") -> ExchangeCredentials:
        """
        Decrypt one stored connection.

        Raises:
            DecryptionError: Wrong master key or tampered ciphertext
        """
        encrypted = EncryptedCredentials(
            api_key_encrypted=connection.api_key_encrypted,
            api_secret_encrypted=connection.api_secret_encrypted,
            iv=connection.encryption_iv,
            salt=connection.encryption_salt,
            passphrase_encrypted=connection.passphrase_encrypted,
        )
        try:
            return self._vault.decrypt_credentials(encrypted, is_testnet=connection.is_testnet)
        except DecryptionError:
            logger.error(f"Could not decrypt credentials of connection {connection.id}")
            raise

    async def find_credentials(self, account_id: str, exchange_id: str) -> Optional[ExchangeCredentials]:
        """Decrypted credentials of the account's active connection, or None."""
        connection = await self._repository.find_active_connection(account_id, exchange_id.lower())
        if connection is None:
            return None
        return self.load_credentials(connection)

    async def find_connection(self, account_id: str, exchange_id: str) -> Optional["ExchangeConnectionModel"]:
        return await self._repository.find_active_connection(account_id, exchange_id.lower())
