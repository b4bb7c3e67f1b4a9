"""
Code Cipher - Encryption at rest for game codes.

AES-256-GCM with a key derived once per process via PBKDF2-HMAC-SHA256.
Stored payload format: ``v1:<nonce hex>:<ciphertext+tag hex>``.
Duplicate detection uses a keyed HMAC-SHA256 digest of the trimmed code,
since ciphertexts are randomized per code.
"""

import hashlib
import hmac
import os
import secrets
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from storefront.config import settings
from storefront.exceptions import CodeDecryptionError

PAYLOAD_VERSION = "v1"
NONCE_BYTES = 12
KEY_BYTES = 32
ASSOCIATED_DATA = b"game-code"


def generate_encryption_key() -> str:
    """Generate a random 32-character value suitable for CODE_ENCRYPTION_KEY."""
    return secrets.token_hex(16)


class CodeCipher:
    """Encrypts, decrypts and fingerprints game codes."""

    def __init__(self, passphrase: str, salt: str, iterations: int) -> None:
        if len(passphrase) != 32:
            raise ValueError("Encryption passphrase must be exactly 32 characters long")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES * 2,
            salt=salt.encode("utf-8"),
            iterations=iterations,
        )
        material = kdf.derive(passphrase.encode("utf-8"))
        # First half encrypts, second half keys the duplicate digest
        self._aead = AESGCM(material[:KEY_BYTES])
        self._digest_key = material[KEY_BYTES:]

    def encrypt(self, code: str) -> str:
        """Encrypt a code with a fresh random nonce."""
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, code.encode("utf-8"), ASSOCIATED_DATA)
        return f"{PAYLOAD_VERSION}:{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, payload: str) -> str:
        """
        Decrypt a stored payload.

        Raises:
            CodeDecryptionError: Malformed payload, wrong key, or tampered data
        """
        parts = payload.split(":")
        if len(parts) != 3 or parts[0] != PAYLOAD_VERSION:
            raise CodeDecryptionError()

        try:
            nonce = bytes.fromhex(parts[1])
            ciphertext = bytes.fromhex(parts[2])
            plaintext = self._aead.decrypt(nonce, ciphertext, ASSOCIATED_DATA)
        except (ValueError, InvalidTag) as exc:
            raise CodeDecryptionError() from exc

        return plaintext.decode("utf-8")

    def digest(self, code: str) -> str:
        """Keyed fingerprint of a trimmed code, stable across uploads."""
        return hmac.new(self._digest_key, code.strip().encode("utf-8"), hashlib.sha256).hexdigest()


@lru_cache(maxsize=1)
def get_cipher() -> CodeCipher:
    """Process-wide cipher built from settings (key derivation runs once)."""
    return CodeCipher(
        passphrase=settings.code_encryption_key,
        salt=settings.code_encryption_salt,
        iterations=settings.code_key_iterations,
    )
