"""
Credential Vault Tests.

============================================================
PURPOSE
============================================================
- Round trips for single values and credential batches
- Fresh salt / IV per encryption
- Tampering, wrong key and malformed input -> DecryptionError
- Master key configuration
- Credential store: plaintext never reaches the database

============================================================
"""

import base64
import random
import string

import pytest
from sqlalchemy import text

from core.exceptions import ConfigurationError, DecryptionError, ValidationError
from credential_vault import MASTER_KEY_ENV, CredentialStore, CredentialVault, VaultConfig
from credential_vault.vault import EncryptedCredentials
from execution_engine.types import ExchangeCredentials


def _flip_last_byte(value: str) -> str:
    raw = bytearray(base64.b64decode(value))
    raw[-1] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


# ============================================================
# SINGLE VALUES
# ============================================================

class TestEncryptDecrypt:
    """Tests for encrypt / decrypt."""

    def test_random_round_trips(self):
        """Test 1000 random strings survive a round trip."""
        vault = CredentialVault(VaultConfig(master_key="round-trip", iterations=1))
        rng = random.Random(42)
        alphabet = string.printable + "äöü€漢字🔑"

        for _ in range(1000):
            plaintext = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 64)))
            sealed = vault.encrypt(plaintext)
            assert vault.decrypt(sealed.ciphertext, sealed.iv, sealed.salt) == plaintext

    def test_round_trip_with_default_iterations(self):
        """Test the production PBKDF2 setting."""
        vault = CredentialVault(VaultConfig(master_key="production-key"))
        assert vault.decrypt(*_parts(vault.encrypt("api-secret-value"))) == "api-secret-value"

    def test_fresh_salt_and_iv_each_time(self, vault):
        """Test two encryptions of one value share nothing."""
        first = vault.encrypt("same")
        second = vault.encrypt("same")

        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_fields_are_base64(self, vault):
        sealed = vault.encrypt("value")

        assert len(base64.b64decode(sealed.iv)) == 12
        assert len(base64.b64decode(sealed.salt)) == 16

    def test_tampered_ciphertext_raises(self, vault):
        sealed = vault.encrypt("secret")

        with pytest.raises(DecryptionError):
            vault.decrypt(_flip_last_byte(sealed.ciphertext), sealed.iv, sealed.salt)

    def test_wrong_iv_raises(self, vault):
        sealed = vault.encrypt("secret")
        other = vault.encrypt("secret")

        with pytest.raises(DecryptionError):
            vault.decrypt(sealed.ciphertext, other.iv, sealed.salt)

    def test_wrong_salt_raises(self, vault):
        sealed = vault.encrypt("secret")
        other = vault.encrypt("secret")

        with pytest.raises(DecryptionError):
            vault.decrypt(sealed.ciphertext, sealed.iv, other.salt)

    def test_wrong_master_key_raises(self, vault):
        sealed = vault.encrypt("secret")
        other_vault = CredentialVault(VaultConfig(master_key="another-key", iterations=1000))

        with pytest.raises(DecryptionError):
            other_vault.decrypt(sealed.ciphertext, sealed.iv, sealed.salt)

    def test_malformed_base64_raises(self, vault):
        sealed = vault.encrypt("secret")

        with pytest.raises(DecryptionError):
            vault.decrypt("not base64 !!", sealed.iv, sealed.salt)


def _parts(sealed):
    return sealed.ciphertext, sealed.iv, sealed.salt


# ============================================================
# CREDENTIAL BATCHES
# ============================================================

class TestCredentialBatch:
    """Tests for encrypt_credentials / decrypt_credentials."""

    def test_round_trip_with_passphrase(self, vault):
        credentials = ExchangeCredentials("key-123", "secret-456", passphrase="pass-789")

        encrypted = vault.encrypt_credentials(credentials)
        restored = vault.decrypt_credentials(encrypted, is_testnet=True)

        assert restored.api_key == "key-123"
        assert restored.api_secret == "secret-456"
        assert restored.passphrase == "pass-789"
        assert restored.is_testnet is True

    def test_round_trip_without_passphrase(self, vault):
        encrypted = vault.encrypt_credentials(ExchangeCredentials("key", "secret"))

        assert encrypted.passphrase_encrypted is None
        assert vault.decrypt_credentials(encrypted).passphrase is None

    def test_equal_fields_encrypt_differently(self, vault):
        """Test per-field nonces: identical key and secret never share ciphertext."""
        encrypted = vault.encrypt_credentials(ExchangeCredentials("same", "same", passphrase="same"))

        values = {
            encrypted.api_key_encrypted,
            encrypted.api_secret_encrypted,
            encrypted.passphrase_encrypted,
        }
        assert len(values) == 3

    def test_swapped_fields_rejected(self, vault):
        encrypted = vault.encrypt_credentials(ExchangeCredentials("key", "secret"))
        swapped = EncryptedCredentials(
            api_key_encrypted=encrypted.api_secret_encrypted,
            api_secret_encrypted=encrypted.api_key_encrypted,
            iv=encrypted.iv,
            salt=encrypted.salt,
        )

        with pytest.raises(DecryptionError):
            vault.decrypt_credentials(swapped)

    def test_tampered_secret_rejected(self, vault):
        encrypted = vault.encrypt_credentials(ExchangeCredentials("key", "secret"))
        tampered = EncryptedCredentials(
            api_key_encrypted=encrypted.api_key_encrypted,
            api_secret_encrypted=_flip_last_byte(encrypted.api_secret_encrypted),
            iv=encrypted.iv,
            salt=encrypted.salt,
        )

        with pytest.raises(DecryptionError):
            vault.decrypt_credentials(tampered)

    def test_credentials_repr_is_masked(self):
        credentials = ExchangeCredentials("abcdef123456", "very-secret", passphrase="pp")

        text_repr = repr(credentials)

        assert "very-secret" not in text_repr
        assert "abcdef123456" not in text_repr
        assert "passphrase='****'" in text_repr


# ============================================================
# CONFIGURATION
# ============================================================

class TestVaultConfig:
    """Tests for master key loading."""

    def test_missing_master_key_raises(self, monkeypatch, tmp_path):
        monkeypatch.delenv(MASTER_KEY_ENV, raising=False)

        with pytest.raises(ConfigurationError):
            CredentialVault.from_env(str(tmp_path / "missing.env"))

    def test_empty_master_key_raises(self, monkeypatch, tmp_path):
        monkeypatch.setenv(MASTER_KEY_ENV, "   ")

        with pytest.raises(ConfigurationError):
            VaultConfig.from_env(str(tmp_path / "missing.env"))

    def test_master_key_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv(MASTER_KEY_ENV, "from-env")

        config = VaultConfig.from_env(str(tmp_path / "missing.env"))

        assert config.master_key == "from-env"
        assert "from-env" not in repr(config)


# ============================================================
# CREDENTIAL STORE
# ============================================================

class TestCredentialStore:
    """Tests for CredentialStore."""

    @pytest.mark.asyncio
    async def test_link_and_load(self, credential_store, account):
        credentials = ExchangeCredentials("live-key-AAAA", "live-secret-BBBB", passphrase="phrase-CCCC")

        connection = await credential_store.link_exchange(
            "user-1", account.account_id, "OKX", credentials, is_testnet=True
        )
        loaded = await credential_store.find_credentials(account.account_id, "okx")

        assert connection.exchange_id == "okx"
        assert loaded.api_key == "live-key-AAAA"
        assert loaded.api_secret == "live-secret-BBBB"
        assert loaded.passphrase == "phrase-CCCC"
        assert loaded.is_testnet is True

    @pytest.mark.asyncio
    async def test_plaintext_never_stored(self, credential_store, database, account):
        credentials = ExchangeCredentials("live-key-AAAA", "live-secret-BBBB", passphrase="phrase-CCCC")
        await credential_store.link_exchange("user-1", account.account_id, "kucoin", credentials)

        async with database.engine.connect() as conn:
            rows = (await conn.execute(text("SELECT * FROM exchange_connections"))).fetchall()

        dump = " ".join(str(value) for row in rows for value in row)
        for secret in ("live-key-AAAA", "live-secret-BBBB", "phrase-CCCC"):
            assert secret not in dump

    @pytest.mark.asyncio
    async def test_missing_secret_rejected(self, credential_store, account):
        with pytest.raises(ValidationError):
            await credential_store.link_exchange(
                "user-1", account.account_id, "binance", ExchangeCredentials("key", "")
            )

    @pytest.mark.asyncio
    async def test_unlink_removes_credentials(self, credential_store, account):
        connection = await credential_store.link_exchange(
            "user-1", account.account_id, "binance", ExchangeCredentials("key", "secret")
        )

        assert await credential_store.unlink_exchange(connection.id) is True
        assert await credential_store.find_credentials(account.account_id, "binance") is None

    @pytest.mark.asyncio
    async def test_wrong_master_key_on_load(self, repository, credential_store, account):
        connection = await credential_store.link_exchange(
            "user-1", account.account_id, "binance", ExchangeCredentials("key", "secret")
        )
        other = CredentialVault(VaultConfig(master_key="rotated", iterations=1000))

        with pytest.raises(DecryptionError):
            CredentialStore(other, repository).load_credentials(connection)
