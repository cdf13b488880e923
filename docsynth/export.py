"""Writing generated documents to disk."""

from __future__ import annotations

from pathlib import Path

from .models import Document


def default_filename(document: Document) -> str:
    """Name the download after the last source repository, like ``widgets.md``."""
    if document.source_urls:
        name = document.source_urls[-1].rstrip("/").rsplit("/", 1)[-1]
        if name:
            return f"{name}.md"
    return "documentation.md"


def write_document(document: Document, destination: Path) -> Path:
    """Write the Markdown text; a directory destination gets the default file name."""
    target = destination.expanduser()
    if target.is_dir():
        target = target / default_filename(document)
    target.parent.mkdir(parents=True, exist_ok=True)
    text = document.text if document.text.endswith("\n") else document.text + "\n"
    target.write_text(text, encoding="utf-8")
    return target


__all__ = ["default_filename", "write_document"]
