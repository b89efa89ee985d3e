"""Compiler collaborators.

The coordinator invokes a compiler once per batch. Implementations write
plaintext ``{identity}.bin`` / ``{identity}.sym`` pairs into the output
directory, where identity is the name currently recorded in each module's
build-unit file.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from dylink.build.bundle import build_bundle
from dylink.build.unit import UNIT_FILE, BuildUnit
from dylink.errors import BuildUnitError

logger = logging.getLogger(__name__)


@dataclass
class CompileOptions:
    """Options passed through to the compiler."""

    development: bool = True


class CompilerInterface(ABC):
    """Abstract compiler collaborator."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable compiler name."""

    @abstractmethod
    async def compile(
        self,
        output_dir: Path,
        extra_defines: list[str],
        options: CompileOptions,
    ) -> bool:
        """Build every module into output_dir.

        Returns:
            True on success, False on a compile error.
        """


class BytecodeCompiler(CompilerInterface):
    """Compiles module packages into marshalled bytecode bundles in-process."""

    def __init__(self, source_root: str | Path, patterns: list[str] | None = None):
        self.source_root = Path(source_root)
        self.patterns = patterns or ["*.py"]

    @property
    def name(self) -> str:
        return "bytecode"

    def _sources(self, source_dir: Path) -> list[Path]:
        files: set[Path] = set()
        for pattern in self.patterns:
            files.update(p for p in source_dir.rglob(pattern) if "__pycache__" not in p.parts)
        return sorted(files)

    def _compile_all(self, output_dir: Path, extra_defines: list[str], options: CompileOptions) -> bool:
        output_dir.mkdir(parents=True, exist_ok=True)
        optimize = 0 if options.development else 1

        if not self.source_root.exists():
            logger.warning(f"Source root not found: {self.source_root}")
            return True

        for source_dir in sorted(p for p in self.source_root.iterdir() if (p / UNIT_FILE).is_file()):
            try:
                identity = BuildUnit(source_dir, source_dir.name).identity()
                binary, symbols = build_bundle(
                    source_dir,
                    identity,
                    self._sources(source_dir),
                    defines=extra_defines,
                    optimize=optimize,
                )
            except (SyntaxError, BuildUnitError) as e:
                logger.error(f"Failed to compile {source_dir.name}: {e}")
                return False

            (output_dir / f"{identity}.bin").write_bytes(binary)
            (output_dir / f"{identity}.sym").write_bytes(symbols)
            logger.debug(f"Compiled {source_dir.name} as {identity}")

        return True

    async def compile(
        self,
        output_dir: Path,
        extra_defines: list[str],
        options: CompileOptions,
    ) -> bool:
        return await asyncio.to_thread(self._compile_all, Path(output_dir), extra_defines, options)


class CommandCompiler(CompilerInterface):
    """Runs an external build command.

    ``{output_dir}`` in any argument is replaced with the output directory.
    Defines and options are exported as DYLINK_DEFINES and DYLINK_DEVELOPMENT.
    """

    def __init__(self, command: list[str], cwd: str | Path | None = None, timeout: float = 600.0):
        if not command:
            raise ValueError("Compile command must not be empty")
        self.command = command
        self.cwd = Path(cwd) if cwd else Path.cwd()
        self.timeout = timeout

    @property
    def name(self) -> str:
        return Path(self.command[0]).name

    async def compile(
        self,
        output_dir: Path,
        extra_defines: list[str],
        options: CompileOptions,
    ) -> bool:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        cmd = [arg.replace("{output_dir}", str(output_dir)) for arg in self.command]
        env = {
            **os.environ,
            "DYLINK_DEFINES": ";".join(extra_defines),
            "DYLINK_DEVELOPMENT": "1" if options.development else "0",
        }

        logger.info(f"Running compiler: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=self.cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            logger.error(f"Compiler timed out after {self.timeout} seconds")
            process.kill()
            await process.wait()
            return False

        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            logger.error(f"Compiler failed with exit code {process.returncode}:\n{output}")
            return False

        logger.debug(output)
        return True
