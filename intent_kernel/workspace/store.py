"""
Workspace Store — the pipeline's view of the external file store.

Resources are identified by canonical workspace-relative POSIX paths. The
store owns no content; it only reads and writes the files under its root.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class WorkspaceStore:
    """File-system backed workspace rooted at a single directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def canonicalize(self, path: Union[str, Path]) -> str:
        """
        Canonical resource id for a path.

        Relative paths resolve against the workspace root. Paths that land
        outside the root keep their absolute form, so they never match a
        workspace-relative scope pattern.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = Path(os.path.normpath(str(candidate)))
        for option in (resolved, resolved.resolve()):
            try:
                return option.relative_to(self.root).as_posix()
            except ValueError:
                continue
        return resolved.as_posix()

    def absolute(self, resource: str) -> Path:
        candidate = Path(resource)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    def exists(self, resource: str) -> bool:
        return self.absolute(resource).is_file()

    def read_bytes(self, resource: str) -> bytes:
        """Raises OSError when the resource is missing or unreadable."""
        return self.absolute(resource).read_bytes()

    def read_text(self, resource: str, errors: str = "strict") -> Optional[str]:
        """Current text, or None when the resource does not exist."""
        target = self.absolute(resource)
        if not target.is_file():
            return None
        return target.read_bytes().decode("utf-8", errors)

    def write_text(self, resource: str, content: str) -> None:
        target = self.absolute(resource)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content.encode("utf-8"))
        logger.debug("Wrote %s (%d bytes)", resource, len(content.encode("utf-8")))

    def delete(self, resource: str) -> bool:
        target = self.absolute(resource)
        if target.is_file():
            target.unlink()
            return True
        return False
