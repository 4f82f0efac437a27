from __future__ import annotations

from pathlib import Path
from typing import List


def regular_files_in(directory: Path) -> List[str]:
    """Names of the regular files directly inside ``directory``, sorted; [] if unreadable."""
    try:
        entries = list(directory.iterdir())
    except OSError:
        return []
    return sorted(entry.name for entry in entries if entry.is_file() and not entry.is_symlink())
