"""
Credential store: private key encryption and withdrawal PIN hashing.

Private keys are encrypted with Fernet under a key derived (PBKDF2-HMAC-SHA256)
from ``ENCRYPTION_SECRET`` and a random per-ciphertext salt; the stored form is
``<salt_b64>:<fernet_token>``. PINs are hashed with scrypt and stored as
``scrypt$<salt_hex>$<hash_hex>``. Nothing in this module logs key material.
"""

from __future__ import annotations

import base64
import os
import re

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_PIN_RE = re.compile(r"[0-9]{4}")
_KDF_ITERATIONS = 100000


class CredentialError(Exception):
    """Secreto ausente o texto cifrado ilegible."""


class CredentialService:
    def __init__(self, secret: str | None = None) -> None:
        self._secret = secret if secret is not None else os.getenv("ENCRYPTION_SECRET", "")
        if not self._secret:
            raise CredentialError("Falta ENCRYPTION_SECRET")

    def _fernet(self, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=_KDF_ITERATIONS,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(self._secret.encode())))

    def encrypt_private_key(self, private_key: str) -> str:
        salt = os.urandom(16)
        token = self._fernet(salt).encrypt(private_key.encode())
        return f"{base64.b64encode(salt).decode()}:{token.decode()}"

    def decrypt_private_key(self, encrypted_private_key: str) -> str:
        try:
            salt_b64, token = encrypted_private_key.split(":", 1)
            return self._fernet(base64.b64decode(salt_b64)).decrypt(token.encode()).decode()
        except (ValueError, InvalidToken) as e:
            raise CredentialError("No se pudo descifrar la clave privada") from e

    # ---------- PIN ----------
    @staticmethod
    def is_valid_pin(pin: str) -> bool:
        return bool(_PIN_RE.fullmatch(pin or ""))

    @staticmethod
    def _scrypt(salt: bytes) -> Scrypt:
        return Scrypt(salt=salt, length=32, n=2 ** 14, r=8, p=1)

    def hash_pin(self, pin: str) -> str:
        salt = os.urandom(16)
        digest = self._scrypt(salt).derive(pin.encode())
        return f"scrypt${salt.hex()}${digest.hex()}"

    def verify_pin(self, pin: str, pin_hash: str) -> bool:
        try:
            scheme, salt_hex, digest_hex = pin_hash.split("$")
        except (AttributeError, ValueError):
            return False
        if scheme != "scrypt":
            return False
        try:
            self._scrypt(bytes.fromhex(salt_hex)).verify(pin.encode(), bytes.fromhex(digest_hex))
            return True
        except (InvalidKey, ValueError):
            return False
