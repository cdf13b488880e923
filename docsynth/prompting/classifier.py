"""File-category heuristics used to pick a summarization prompt."""

from __future__ import annotations

import re
from enum import Enum

_CONFIG_PATTERN = re.compile(r"(\.(json|lock|config|rc|md|yml|yaml)|LICENSE)$", re.IGNORECASE)


class FileCategory(str, Enum):
    CONFIG = "config"
    SOURCE = "source"


def classify_file(path: str) -> FileCategory:
    """Config, lock, Markdown and license-like files get the short prompt variant."""
    if _CONFIG_PATTERN.search(path.strip()):
        return FileCategory.CONFIG
    return FileCategory.SOURCE


__all__ = ["FileCategory", "classify_file"]
