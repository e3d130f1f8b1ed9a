"""Key vault for deposit wallet private keys."""

import base64
import binascii

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from custody.utils.exceptions import SecurityError


class KeyVault:
    """
    Decrypts stored deposit wallet keys.

    Keys are stored as base64-wrapped Fernet tokens. Without an
    encryption key the vault passes values through, which is only
    allowed outside production.
    """

    def __init__(
        self, encryption_key: str | None = None, environment: str = "development"
    ) -> None:
        """
        Initialize key vault.

        Args:
            encryption_key: Base64-encoded Fernet key
            environment: Deployment environment

        Raises:
            SecurityError: If the key is missing or invalid in production
        """
        self.environment = environment

        if encryption_key:
            try:
                self.fernet: Fernet | None = Fernet(encryption_key.encode())
            except (ValueError, binascii.Error) as e:
                logger.error(f"Invalid encryption key: {e}")
                if environment == "production":
                    raise SecurityError(
                        "Invalid encryption key in production environment."
                    ) from e
                self.fernet = None
        else:
            self.fernet = None
            if environment == "production":
                raise SecurityError(
                    "Encryption key not configured in production environment. "
                    "Set ENCRYPTION_KEY in .env file."
                )

    @property
    def enabled(self) -> bool:
        return self.fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a private key for storage.

        Args:
            plaintext: Key material

        Returns:
            Base64-wrapped Fernet token
        """
        if self.fernet is None:
            logger.warning("Encryption disabled - storing plaintext (DEV ONLY)")
            return plaintext
        return base64.b64encode(self.fernet.encrypt(plaintext.encode())).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored private key.

        Args:
            ciphertext: Base64-wrapped Fernet token

        Returns:
            Key material

        Raises:
            SecurityError: If decryption fails
        """
        if not ciphertext:
            raise SecurityError("No encrypted key stored")

        if self.fernet is None:
            logger.warning("Encryption disabled - returning stored key as-is (DEV ONLY)")
            return ciphertext

        try:
            token = base64.b64decode(ciphertext.encode())
            return self.fernet.decrypt(token).decode()
        except (InvalidToken, binascii.Error, ValueError) as e:
            logger.error(f"Key decryption failed: {type(e).__name__}")
            raise SecurityError("Decryption failed") from e
