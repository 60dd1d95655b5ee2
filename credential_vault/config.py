"""
Credential Vault - Configuration.

============================================================
PURPOSE
============================================================
Master secret and key-derivation settings for the vault.

The master secret is read once, from ENCRYPTION_MASTER_KEY.
Its absence is fatal.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


MASTER_KEY_ENV = "ENCRYPTION_MASTER_KEY"


@dataclass(frozen=True)
class VaultConfig:
    """Vault configuration."""

    master_key: str = field(repr=False)
    """Process-wide master secret."""

    iterations: int = 100_000
    """PBKDF2-HMAC-SHA256 iterations."""

    salt_bytes: int = 16
    iv_bytes: int = 12

    def __post_init__(self) -> None:
        if not self.master_key:
            raise ConfigurationError(
                f"{MASTER_KEY_ENV} is not configured",
                config_key=MASTER_KEY_ENV,
            )
        if self.iterations <= 0:
            raise ConfigurationError(
                "PBKDF2 iterations must be positive",
                config_key="iterations",
            )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "VaultConfig":
        """
        Load the master secret from the environment.

        Raises:
            ConfigurationError: If ENCRYPTION_MASTER_KEY is missing or empty
        """
        load_dotenv(env_file)
        return cls(master_key=os.getenv(MASTER_KEY_ENV, "").strip())
