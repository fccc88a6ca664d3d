"""Password based encryption for full-dataset backups.

The payload format is ``base64(salt) + "." + fernet_token``. The Fernet key is
derived from the password with PBKDF2-HMAC-SHA256, so the same password that
protects the admin account can be used to restore the file later.
"""

import base64
import os
from typing import Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import get_settings

SALT_BYTES = 16


class BackupDecryptError(ValueError):
    pass


class Cipher(Protocol):
    def encrypt(self, plaintext: str, password: str) -> str: ...

    def decrypt(self, payload: str, password: str) -> str: ...


class PasswordCipher:
    def __init__(self, iterations: Optional[int] = None) -> None:
        self.iterations = iterations or get_settings().backup_kdf_iterations

    def _fernet(self, password: str, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))
        return Fernet(key)

    def encrypt(self, plaintext: str, password: str) -> str:
        salt = os.urandom(SALT_BYTES)
        token = self._fernet(password, salt).encrypt(plaintext.encode("utf-8"))
        return base64.urlsafe_b64encode(salt).decode("ascii") + "." + token.decode(
            "ascii"
        )

    def decrypt(self, payload: str, password: str) -> str:
        try:
            salt_part, token_part = payload.strip().split(".", 1)
            salt = base64.urlsafe_b64decode(salt_part.encode("ascii"))
            plaintext = self._fernet(password, salt).decrypt(token_part.encode("ascii"))
        except (ValueError, InvalidToken) as exc:
            raise BackupDecryptError("Wrong password or corrupted backup") from exc
        return plaintext.decode("utf-8")
