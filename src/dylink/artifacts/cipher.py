"""Symmetric cipher for distributed artifacts.

AES-256-CBC with PKCS7 padding and a fixed key/IV embedded in the package.
This obfuscates artifact contents against casual extraction. It is NOT a
confidentiality control: anyone holding the package holds the key.
"""

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

_KEY = b"q7Vd2LmR9xKp4TzW8hNc3FbYs6GjA1Ue"
_IV = b"Hx5rN8wQ2kLt7ZpC"

_BLOCK_BITS = 128


class ArtifactCipher:
    """Deterministic AES-CBC cipher; equal inputs give equal ciphertexts."""

    def __init__(self, key: bytes = _KEY, iv: bytes = _IV):
        if len(key) != 32:
            raise ValueError("Artifact key must be 32 bytes (AES-256)")
        if len(iv) != 16:
            raise ValueError("Artifact IV must be 16 bytes")
        self._key = key
        self._iv = iv

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, data: bytes) -> bytes:
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt a blob.

        Raises:
            ValueError: If the blob is not a valid ciphertext for this key.
        """
        decryptor = self._cipher().decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()


_default_cipher = ArtifactCipher()


def encrypt(data: bytes) -> bytes:
    return _default_cipher.encrypt(data)


def decrypt(data: bytes) -> bytes:
    return _default_cipher.decrypt(data)
