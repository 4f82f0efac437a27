from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class WorkDirectory:
    """Temporary directory owned by exactly one request attempt."""

    def __init__(self, parent: Optional[Path] = None, prefix: str = "tubevault-"):
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(parent) if parent else None))
        self._persisted = False
        self._removed = False
        logger.debug("Created work directory %s", self.path)

    @property
    def persisted(self) -> bool:
        return self._persisted

    def persist(self) -> Path:
        """Detach the directory from automatic deletion and return where it lives."""
        self._persisted = True
        return self.path

    def cleanup(self) -> None:
        if self._persisted or self._removed:
            return
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove work directory %s: %s", self.path, exc)
        self._removed = True
        logger.debug("Removed work directory %s", self.path)

    def __enter__(self) -> "WorkDirectory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()
