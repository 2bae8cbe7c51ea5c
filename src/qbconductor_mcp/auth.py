"""Secret key storage for the Conductor API.

The server reads CONDUCTOR_SECRET_KEY from the environment. As an alternative
the key can be stored once with ``python -m qbconductor_mcp.auth``, which
keeps it in the system keyring or, when no keyring backend is usable, in a
Fernet-encrypted file under ``~/.qbconductor_mcp/``.
"""

import argparse
import asyncio
import getpass
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

SECRET_KEY_PREFIX = "sk_"


class SecretStorage(ABC):
    """Abstract base class for secret key storage."""

    @abstractmethod
    async def load(self) -> str | None:
        """Load the stored secret key.

        Returns:
            Secret key if found, None otherwise.
        """

    @abstractmethod
    async def save(self, secret_key: str) -> None:
        """Save the secret key.

        Args:
            secret_key: Conductor secret key.
        """

    @abstractmethod
    async def delete(self) -> None:
        """Delete the stored secret key."""


class KeyringStorage(SecretStorage):
    """Secret storage using the system keyring (macOS Keychain, etc.)."""

    SERVICE_NAME = "qbconductor-mcp"
    ACCOUNT_NAME = "secret_key"

    async def load(self) -> str | None:
        import keyring
        from keyring.errors import KeyringError

        try:
            return keyring.get_password(self.SERVICE_NAME, self.ACCOUNT_NAME)
        except KeyringError as e:
            logger.debug(f"Failed to load from keyring: {e}")
            return None

    async def save(self, secret_key: str) -> None:
        import keyring

        keyring.set_password(self.SERVICE_NAME, self.ACCOUNT_NAME, secret_key)
        logger.debug("Secret key saved to keyring")

    async def delete(self) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.SERVICE_NAME, self.ACCOUNT_NAME)
            logger.debug("Secret key deleted from keyring")
        except PasswordDeleteError:
            logger.debug("No secret key stored in keyring")


class EncryptedFileStorage(SecretStorage):
    """Fallback secret storage using a Fernet-encrypted file."""

    def __init__(self, storage_dir: Path | None = None) -> None:
        """Initialize encrypted file storage.

        Args:
            storage_dir: Directory for the key files. Defaults to ~/.qbconductor_mcp/
        """
        if storage_dir is None:
            storage_dir = Path.home() / ".qbconductor_mcp"
        self.storage_dir = storage_dir
        self.secret_file = storage_dir / "secret_key.enc"
        self.key_file = storage_dir / "secret_key.key"

    def _get_or_create_key(self) -> bytes:
        """Get the existing encryption key or create a new one."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        if self.key_file.exists():
            return self.key_file.read_bytes()

        key = Fernet.generate_key()
        self.key_file.write_bytes(key)
        self.key_file.chmod(0o600)
        return key

    async def load(self) -> str | None:
        if not self.secret_file.exists():
            return None

        cipher = Fernet(self._get_or_create_key())
        try:
            return cipher.decrypt(self.secret_file.read_bytes()).decode()
        except InvalidToken:
            logger.warning(f"Could not decrypt {self.secret_file}; store the secret key again")
            return None

    async def save(self, secret_key: str) -> None:
        cipher = Fernet(self._get_or_create_key())
        self.secret_file.write_bytes(cipher.encrypt(secret_key.encode()))
        self.secret_file.chmod(0o600)
        logger.debug("Secret key saved to encrypted file")

    async def delete(self) -> None:
        self.secret_file.unlink(missing_ok=True)
        logger.debug("Secret key file deleted")


def get_storage() -> SecretStorage:
    """Get the appropriate secret storage backend.

    Tries keyring first, falls back to encrypted file storage.
    """
    import keyring
    from keyring.errors import KeyringError

    try:
        # A missing or failing backend raises on first use
        keyring.get_password("qbconductor-mcp-test", "test")
        return KeyringStorage()
    except (KeyringError, RuntimeError):
        logger.info("Keyring not available, using encrypted file storage")
        return EncryptedFileStorage()


async def load_secret_key() -> str | None:
    """Load the stored secret key from the active backend."""
    return await get_storage().load()


async def store_secret_key(secret_key: str) -> None:
    """Validate and store a secret key.

    Raises:
        ValueError: If the value does not look like a Conductor secret key.
    """
    secret_key = secret_key.strip()
    if not secret_key.startswith(SECRET_KEY_PREFIX):
        raise ValueError(
            f"Conductor secret keys start with '{SECRET_KEY_PREFIX}'. "
            "Find yours in the Conductor dashboard under API keys."
        )
    await get_storage().save(secret_key)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for storing or clearing the secret key."""
    parser = argparse.ArgumentParser(
        prog="qbconductor-mcp-auth",
        description="Store the Conductor secret key for the MCP server.",
    )
    parser.add_argument("--clear", action="store_true", help="delete the stored secret key")
    args = parser.parse_args(argv)

    try:
        if args.clear:
            asyncio.run(get_storage().delete())
            print("Stored secret key removed.")
            return

        secret_key = getpass.getpass("Conductor secret key: ")
        asyncio.run(store_secret_key(secret_key))
        print("Secret key stored securely.")
    except KeyboardInterrupt:
        print("\nCancelled.")
    except ValueError as e:
        print(f"\nError: {e}")
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
