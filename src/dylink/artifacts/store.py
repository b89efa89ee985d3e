"""Secure artifact store.

Each module is stored as an encrypted pair in the library directory:

    {name}.bin   encrypted binary bundle
    {name}.sym   encrypted debug-symbol companion

The pair is all-or-nothing on read.
"""

import asyncio
import logging
import os
from pathlib import Path

from dylink.artifacts.cipher import ArtifactCipher
from dylink.artifacts.fetch import FileFetcher, Fetcher
from dylink.domain import ArtifactPair
from dylink.errors import ArtifactCorrupt, ArtifactNotFound, BatchFetchError

logger = logging.getLogger(__name__)

BINARY_SUFFIX = ".bin"
SYMBOL_SUFFIX = ".sym"


class SecureArtifactStore:
    """Encrypts artifact pairs on write and decrypts them on read."""

    def __init__(
        self,
        library_dir: str | Path,
        fetcher: Fetcher | None = None,
        cipher: ArtifactCipher | None = None,
    ):
        self.library_dir = Path(library_dir)
        self.fetcher = fetcher or FileFetcher()
        self.cipher = cipher or ArtifactCipher()

    def binary_path(self, name: str) -> Path:
        return self.library_dir / f"{name}{BINARY_SUFFIX}"

    def symbol_path(self, name: str) -> Path:
        return self.library_dir / f"{name}{SYMBOL_SUFFIX}"

    def _write_file(self, path: Path, data: bytes) -> Path:
        """Write data next to path and return the staged file."""
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        return tmp

    def write(self, name: str, binary: bytes, symbols: bytes) -> None:
        """Encrypt and store an artifact pair under its distribution name.

        Creates the library directory if needed. Rewriting the same inputs
        produces identical stored bytes.

        Both blobs are staged before anything is replaced. The old symbol file
        is removed before the new binary goes in, so an interrupted write
        reads back as a broken pair and never as a mix of old and new.
        """
        self.library_dir.mkdir(parents=True, exist_ok=True)
        bin_path = self.binary_path(name)
        sym_path = self.symbol_path(name)

        staged: list[Path] = []
        try:
            staged.append(self._write_file(bin_path, self.cipher.encrypt(binary)))
            staged.append(self._write_file(sym_path, self.cipher.encrypt(symbols)))
        except BaseException:
            for tmp in staged:
                tmp.unlink(missing_ok=True)
            raise

        bin_tmp, sym_tmp = staged
        try:
            sym_path.unlink(missing_ok=True)
            os.replace(bin_tmp, bin_path)
            os.replace(sym_tmp, sym_path)
        finally:
            bin_tmp.unlink(missing_ok=True)
            sym_tmp.unlink(missing_ok=True)
        logger.debug(f"Stored artifact {name} ({len(binary)} + {len(symbols)} bytes)")

    async def read(self, name: str) -> ArtifactPair:
        """Fetch and decrypt an artifact pair.

        Raises:
            ArtifactNotFound: If neither file exists.
            ArtifactCorrupt: If only one file of the pair exists or a blob
                cannot be decrypted.
        """
        bin_path = self.binary_path(name)
        sym_path = self.symbol_path(name)

        has_bin, has_sym = await asyncio.gather(
            self.fetcher.exists(bin_path), self.fetcher.exists(sym_path)
        )
        if not has_bin and not has_sym:
            raise ArtifactNotFound(name, bin_path)
        if not has_bin:
            raise ArtifactCorrupt(name, "symbol file present without binary", bin_path)
        if not has_sym:
            raise ArtifactCorrupt(name, "binary present without symbol file", sym_path)

        try:
            raw_bin, raw_sym = await asyncio.gather(
                self.fetcher.fetch(bin_path), self.fetcher.fetch(sym_path)
            )
        except FileNotFoundError as e:
            # Removed between the existence check and the fetch
            raise ArtifactCorrupt(name, f"pair changed while reading: {e}") from e

        try:
            binary = self.cipher.decrypt(raw_bin)
            symbols = self.cipher.decrypt(raw_sym)
        except ValueError as e:
            raise ArtifactCorrupt(name, f"decryption failed: {e}") from e

        return ArtifactPair(name=name, binary=binary, symbols=symbols)

    async def read_many(self, names: list[str]) -> dict[str, ArtifactPair]:
        """Fetch a batch of pairs concurrently.

        The result preserves the order of names.

        Raises:
            BatchFetchError: Naming the first module, in input order, whose read failed.
        """
        results = await asyncio.gather(*(self.read(n) for n in names), return_exceptions=True)

        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                raise BatchFetchError(name, result) from result

        return {pair.name: pair for pair in results}  # type: ignore[union-attr]

    def exists(self, name: str) -> bool:
        return self.binary_path(name).exists() and self.symbol_path(name).exists()

    def artifact_mtime(self, name: str) -> int:
        """Modification time of the stored binary in ns, 0 when absent."""
        try:
            return self.binary_path(name).stat().st_mtime_ns
        except FileNotFoundError:
            return 0

    def newest_mtime(self) -> int:
        """Newest modification time across all stored artifact files, 0 when empty."""
        if not self.library_dir.exists():
            return 0
        mtimes = [
            p.stat().st_mtime_ns
            for p in self.library_dir.iterdir()
            if p.is_file() and p.suffix in (BINARY_SUFFIX, SYMBOL_SUFFIX)
        ]
        return max(mtimes, default=0)

    async def read_metadata(self, metadata_dir: str | Path, name: str) -> bytes:
        """Fetch a plaintext metadata-only blob ``{name}.bytes``."""
        path = Path(metadata_dir) / f"{name}.bytes"
        try:
            return await self.fetcher.fetch(path)
        except FileNotFoundError:
            raise ArtifactNotFound(name, path) from None
