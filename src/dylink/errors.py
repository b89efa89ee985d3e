"""Error taxonomy for module registration, compilation, artifacts and loading."""

from pathlib import Path


class DylinkError(Exception):
    """Base class for all dylink errors."""


class ConfigError(DylinkError):
    """Raised when settings or properties files cannot be parsed."""


class ManifestError(DylinkError):
    """Raised when the module manifest is malformed."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid module manifest {path}: {reason}")


class DuplicateModuleError(DylinkError):
    """Raised when a module name is registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Module '{name}' is already registered")


class UnknownModuleError(DylinkError, KeyError):
    """Raised when looking up a module that was never registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Module '{name}' is not registered")

    def __str__(self) -> str:
        return self.args[0]


class CompileFailed(DylinkError):
    """Raised when a compile batch fails. Retry by re-running the rebuild."""

    def __init__(self, name: str, cause: str | BaseException, modules: list[str] | None = None):
        self.name = name
        self.cause = cause
        self.modules = modules or [name]
        super().__init__(f"Compile failed for '{name}': {cause}")


class BuildUnitError(DylinkError):
    """Raised when a build-unit file cannot be renamed or reverted."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Build unit '{name}': {reason}")


class ArtifactNotFound(DylinkError):
    """Raised when an artifact pair is missing from the store."""

    def __init__(self, name: str, path: Path | str | None = None):
        self.name = name
        self.path = Path(path) if path is not None else None
        where = f" at {path}" if path is not None else ""
        super().__init__(f"Artifact '{name}' not found{where}")


class ArtifactCorrupt(ArtifactNotFound):
    """Raised when only half of an artifact pair exists or a blob fails to decrypt.

    Subclasses ArtifactNotFound so that a broken pair is never mistaken for a
    partial result.
    """

    def __init__(self, name: str, reason: str, path: Path | str | None = None):
        self.reason = reason
        super().__init__(name, path)
        self.args = (f"Artifact '{name}' is corrupt: {reason}",)


class BatchFetchError(DylinkError):
    """Raised when any fetch in a batch fails; names the first failing module."""

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"Batch fetch aborted at module '{name}': {cause}")


class LoadIncomplete(DylinkError):
    """Raised when a selected module could not be loaded. Fatal at start-up."""

    def __init__(self, name: str, cause: BaseException | str | None = None):
        self.name = name
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Module '{name}' failed to load{detail}")


class InvalidStateError(DylinkError):
    """Raised when an orchestration operation is called in the wrong state."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while in state '{state}'")


class ReloadInProgress(DylinkError):
    """Raised when reload() is invoked while another reload is running."""

    def __init__(self) -> None:
        super().__init__("A reload is already in progress")


class EntryModuleUnresolved(DylinkError):
    """Raised when the entry module cannot be resolved for notification."""

    def __init__(self, reason: str, name: str | None = None):
        self.name = name
        self.reason = reason
        super().__init__(f"Entry module unresolved: {reason}")
