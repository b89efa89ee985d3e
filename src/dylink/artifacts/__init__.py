"""Encrypted artifact pipeline."""

from dylink.artifacts.cipher import ArtifactCipher, decrypt, encrypt
from dylink.artifacts.fetch import FileFetcher, Fetcher
from dylink.artifacts.store import SecureArtifactStore

__all__ = [
    "ArtifactCipher",
    "FileFetcher",
    "Fetcher",
    "SecureArtifactStore",
    "decrypt",
    "encrypt",
]
