"""Build-unit file handling.

Every module source directory carries ``module.json`` whose ``"name"`` value
is the identity the compiler builds the module under. Renames rewrite only
that value; every other byte of the file is preserved.
"""

import json
import logging
import os
import re
from pathlib import Path

from dylink.errors import BuildUnitError

logger = logging.getLogger(__name__)

UNIT_FILE = "module.json"


def qualified_name(name: str, token: int) -> str:
    """Time-qualified build identity used while compiling."""
    return f"{name}_{token}"


class BuildUnit:
    """The build-unit file of one module."""

    def __init__(self, source_dir: Path, name: str):
        self.source_dir = Path(source_dir)
        self.name = name

    @property
    def path(self) -> Path:
        return self.source_dir / UNIT_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def identity(self) -> str:
        """Current build identity recorded in the unit file.

        Raises:
            BuildUnitError: If the file is missing or has no name.
        """
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise BuildUnitError(self.name, f"missing {self.path}") from None
        except json.JSONDecodeError as e:
            raise BuildUnitError(self.name, f"invalid JSON in {self.path}: {e}") from e

        identity = data.get("name") if isinstance(data, dict) else None
        if not isinstance(identity, str) or not identity:
            raise BuildUnitError(self.name, f"no name in {self.path}")
        return identity

    def rewrite(self, from_name: str, to_name: str) -> bool:
        """Replace the identity from_name with to_name.

        The new content is written to a temporary file and moved into place,
        so the unit file is never left half-written.

        Returns:
            True if the file changed, False if from_name was not the identity.
        """
        if not self.exists():
            return False

        text = self.path.read_text(encoding="utf-8")
        pattern = re.compile(r'("name"\s*:\s*")' + re.escape(from_name) + r'"')
        new_text, count = pattern.subn(lambda m: f'{m.group(1)}{to_name}"', text, count=1)
        if count == 0:
            return False

        tmp = self.path.with_name(UNIT_FILE + ".tmp")
        tmp.write_text(new_text, encoding="utf-8")
        os.replace(tmp, self.path)
        logger.debug(f"Build unit {self.name}: {from_name} -> {to_name}")
        return True
