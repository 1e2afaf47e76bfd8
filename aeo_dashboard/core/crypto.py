# aeo_dashboard/core/crypto.py
"""
Encryption at rest for delegated Google access tokens.

Key handling:
1. ENCRYPTION_KEY holding a Fernet key is used directly
2. Any other ENCRYPTION_KEY value is treated as a passphrase (PBKDF2)
3. Without ENCRYPTION_KEY a temporary key is generated (development only)

Usage:
    from aeo_dashboard.core.crypto import encrypt_token, decrypt_token

    stored = encrypt_token(grant.access_token)
    token = decrypt_token(stored)
"""

import base64
import logging
from typing import Optional, Dict, Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config.settings import settings

logger = logging.getLogger(__name__)

KDF_SALT = b'aeo_dashboard_token_salt'
KDF_ITERATIONS = 100000


class CryptoManager:
    """Fernet wrapper used by the grant store"""

    def __init__(self, key: Optional[str] = None):
        self._key_source: Optional[str] = None
        self._cipher = self._build_cipher(key if key is not None else settings.encryption_key)

    def _build_cipher(self, key: Optional[str]) -> Fernet:
        if key:
            if self._is_valid_fernet_key(key):
                self._key_source = 'environment_direct'
                return Fernet(key.encode())
            self._key_source = 'environment_derived'
            return self._derive_key_from_passphrase(key)

        logger.warning("⚠️ No ENCRYPTION_KEY found - generating temporary key, stored tokens will not survive a restart")
        self._key_source = 'temporary'
        return Fernet(Fernet.generate_key())

    @staticmethod
    def _is_valid_fernet_key(key: str) -> bool:
        try:
            Fernet(key.encode())
            return True
        except (ValueError, TypeError):
            return False

    @staticmethod
    def _derive_key_from_passphrase(passphrase: str) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode())))

    def encrypt_token(self, token: str) -> str:
        """
        Encrypt an access token for storage.

        Returns:
            Base64 text safe for a TEXT column
        """
        if not token:
            raise ValueError("Cannot encrypt empty token")
        return base64.b64encode(self._cipher.encrypt(token.encode())).decode()

    def decrypt_token(self, encrypted_token: str) -> str:
        """Decrypt a value produced by encrypt_token."""
        if not encrypted_token:
            raise ValueError("Cannot decrypt empty token")
        try:
            return self._cipher.decrypt(base64.b64decode(encrypted_token.encode())).decode()
        except (InvalidToken, ValueError) as e:
            logger.error(f"❌ Token decryption failed: {e}")
            raise RuntimeError(f"Failed to decrypt token: {e}") from e

    def get_encryption_info(self) -> Dict[str, Any]:
        """Encryption status for health checks"""
        return {
            'key_source': self._key_source,
            'secure_setup': self._key_source in ('environment_direct', 'environment_derived'),
            'algorithm': 'Fernet (AES 128)',
        }


_crypto_manager: Optional[CryptoManager] = None


def get_crypto_manager() -> CryptoManager:
    """Shared manager, built on first use so settings are read after startup."""
    global _crypto_manager
    if _crypto_manager is None:
        _crypto_manager = CryptoManager()
    return _crypto_manager


def encrypt_token(token: str) -> str:
    """Encrypt a token using the shared crypto manager"""
    return get_crypto_manager().encrypt_token(token)


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a token using the shared crypto manager"""
    return get_crypto_manager().decrypt_token(encrypted_token)


def get_encryption_info() -> Dict[str, Any]:
    return get_crypto_manager().get_encryption_info()
