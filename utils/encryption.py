"""
Account Number Encryption
Fernet encryption for stored bank account numbers, keyed from ENCRYPTION_KEY
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import Config
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AccountEncryption:
    """Encrypt, decrypt, hash and mask destination account numbers"""

    def __init__(self, secret: Optional[str] = None, salt: Optional[bytes] = None):
        secret = secret or Config.ENCRYPTION_KEY
        if not secret:
            logger.critical("🚨 ENCRYPTION_KEY_MISSING: account numbers cannot be encrypted")
            raise ConfigurationError(
                "ENCRYPTION_KEY environment variable is required", reason="encryption_key_missing"
            )

        key_material = self._derive_key(secret.encode("utf-8"), salt or Config.ENCRYPTION_SALT)
        self.fernet = Fernet(base64.urlsafe_b64encode(key_material))
        self._hash_key = key_material

    @staticmethod
    def _derive_key(secret: bytes, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return kdf.derive(secret)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self.fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Plaintext, or '' when the value is empty or cannot be decrypted"""
        if not ciphertext:
            return ""
        try:
            return self.fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            logger.error(f"❌ DECRYPTION_FAILED: {type(e).__name__}")
            return ""

    def hash(self, value: str) -> str:
        """Keyed one-way hash for lookups on encrypted values"""
        if not value:
            return ""
        return hmac.new(self._hash_key, value.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def mask_account_number(account_number: str, visible_digits: int = 4) -> str:
        if not account_number or len(account_number) <= visible_digits:
            return account_number
        return "*" * (len(account_number) - visible_digits) + account_number[-visible_digits:]
