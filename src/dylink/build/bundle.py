"""Binary bundle format shared by the bytecode compiler and the module loader.

A bundle is a marshalled tuple ``(magic, unit, defines, entries)`` where each
entry is ``(module, code)``. ``module`` is the dotted path relative to the
package ("" for the package ``__init__``). The companion symbol blob is JSON
describing where each entry came from.
"""

import hashlib
import json
import marshal
from dataclasses import dataclass, field
from pathlib import Path
from types import CodeType

BUNDLE_MAGIC = "dylink-bundle-1"


@dataclass(frozen=True)
class BundleEntry:
    module: str
    code: CodeType

    @property
    def depth(self) -> int:
        return 0 if not self.module else self.module.count(".") + 1


@dataclass
class Bundle:
    unit: str
    defines: tuple[str, ...] = ()
    entries: list[BundleEntry] = field(default_factory=list)

    def execution_order(self) -> list[BundleEntry]:
        """Deepest modules first so a package body sees its submodules."""
        return sorted(self.entries, key=lambda e: (-e.depth, e.module))


def pack_bundle(bundle: Bundle) -> bytes:
    entries = [(e.module, e.code) for e in bundle.entries]
    return marshal.dumps((BUNDLE_MAGIC, bundle.unit, tuple(bundle.defines), entries))


def unpack_bundle(data: bytes) -> Bundle:
    """Decode bundle bytes.

    Raises:
        ValueError: If the bytes are not a bundle produced by this interpreter.
    """
    try:
        payload = marshal.loads(data)
    except (EOFError, TypeError, ValueError) as e:
        raise ValueError(f"Not a marshalled bundle: {e}") from e

    if not isinstance(payload, tuple) or len(payload) != 4 or payload[0] != BUNDLE_MAGIC:
        raise ValueError("Bundle header mismatch")

    _magic, unit, defines, entries = payload
    return Bundle(
        unit=unit,
        defines=tuple(defines),
        entries=[BundleEntry(module=m, code=c) for m, c in entries],
    )


def module_path_for(relpath: Path) -> str:
    """``pkg/sub.py`` -> ``pkg.sub``; ``__init__.py`` -> ``""``."""
    parts = relpath.with_suffix("").parts
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def build_bundle(
    source_dir: Path,
    unit: str,
    sources: list[Path],
    defines: list[str] | None = None,
    optimize: int = 0,
) -> tuple[bytes, bytes]:
    """Compile sources into (binary, symbols).

    Raises:
        SyntaxError: If any source fails to compile.
    """
    bundle = Bundle(unit=unit, defines=tuple(defines or ()))
    symbol_entries = []

    for path in sorted(sources):
        relpath = path.relative_to(source_dir)
        source = path.read_bytes()
        code = compile(source, f"{unit}/{relpath.as_posix()}", "exec", optimize=optimize)
        module = module_path_for(relpath)
        bundle.entries.append(BundleEntry(module=module, code=code))
        symbol_entries.append(
            {
                "module": module,
                "source": relpath.as_posix(),
                "sha256": hashlib.sha256(source).hexdigest(),
                "lines": source.count(b"\n") + 1,
            }
        )

    symbols = {"unit": unit, "defines": list(bundle.defines), "entries": symbol_entries}
    return pack_bundle(bundle), json.dumps(symbols, indent=2, sort_keys=True).encode("utf-8")
