"""Core data models shared across docsynth components."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidRepositoryPath

_REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+/[A-Za-z0-9._-]+$")


@dataclass(frozen=True)
class RepositoryId:
    """Identifies a remote repository as ``owner/name``."""

    owner: str
    name: str

    @classmethod
    def parse(cls, value: str) -> "RepositoryId":
        text = (value or "").strip()
        if not _REPOSITORY_PATTERN.match(text):
            raise InvalidRepositoryPath(value)
        owner, name = text.split("/", 1)
        return cls(owner=owner, name=name)

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "dir"


@dataclass(frozen=True)
class Node:
    """A file or directory entry in a lazily fetched repository tree.

    Directories carry a (possibly empty) ``children`` tuple; files carry ``None``.
    An empty tuple alone does not mean the directory is empty: the tree model
    tracks whether its listing was actually loaded.
    """

    name: str
    path: str
    kind: NodeKind
    children: Optional[Tuple["Node", ...]] = None
    sha: Optional[str] = None

    @property
    def is_dir(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    @classmethod
    def file(cls, path: str, *, sha: Optional[str] = None) -> "Node":
        return cls(name=path.rsplit("/", 1)[-1], path=path, kind=NodeKind.FILE, sha=sha)

    @classmethod
    def directory(
        cls,
        path: str,
        children: Tuple["Node", ...] = (),
        *,
        sha: Optional[str] = None,
    ) -> "Node":
        return cls(
            name=path.rsplit("/", 1)[-1],
            path=path,
            kind=NodeKind.DIRECTORY,
            children=tuple(children),
            sha=sha,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "type": self.kind.value,
            "sha": self.sha,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Node":
        """Build a listing entry from its serialized form; raises ValueError on bad input."""
        if not isinstance(payload, dict):
            raise ValueError("listing entry must be a mapping")
        name = payload.get("name")
        path = payload.get("path")
        sha = payload.get("sha")
        if not isinstance(name, str) or not isinstance(path, str) or not path:
            raise ValueError("listing entry requires string name and path")
        if sha is not None and not isinstance(sha, str):
            raise ValueError("listing entry sha must be a string")
        if payload.get("type") == NodeKind.DIRECTORY.value:
            return cls(name=name, path=path, kind=NodeKind.DIRECTORY, children=(), sha=sha)
        return cls(name=name, path=path, kind=NodeKind.FILE, children=None, sha=sha)


class TriState(str, Enum):
    SELECTED = "selected"
    UNSELECTED = "unselected"
    INDETERMINATE = "indeterminate"


class FetchState(str, Enum):
    NOT_REQUESTED = "not_requested"
    IN_FLIGHT = "in_flight"
    LOADED = "loaded"
    FAILED = "failed"


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING_CONTENT = "fetching_content"
    SUMMARIZING = "summarizing"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class SelectedFile:
    """A file flagged for generation, in selection order."""

    repository: RepositoryId
    path: str
    sha: Optional[str] = None


@dataclass(frozen=True)
class FileContent:
    """Decoded body of one selected file for a single generation run."""

    repository: RepositoryId
    path: str
    content: str
    size: int
    from_cache: bool = False

    @property
    def display_path(self) -> str:
        return f"{self.repository}/{self.path}"


@dataclass(frozen=True)
class FileSummary:
    path: str
    summary: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "summary": self.summary}


@dataclass(frozen=True)
class Document:
    """Synthesized Markdown document and the repositories it was built from."""

    text: str
    source_urls: Tuple[str, ...] = ()


@dataclass
class AIInteraction:
    """One request/response exchange with the generative-text provider."""

    request: str
    response: Dict[str, Any]


@dataclass(frozen=True)
class Notification:
    """User-visible message emitted when something notable happens."""

    level: str
    title: str
    description: str = ""


@dataclass
class ApiKeys:
    github: str = ""
    gemini: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"github": self.github, "gemini": self.gemini}

    @classmethod
    def from_dict(cls, payload: Any) -> "ApiKeys":
        if not isinstance(payload, dict):
            return cls()
        github = payload.get("github")
        gemini = payload.get("gemini")
        return cls(
            github=github if isinstance(github, str) else "",
            gemini=gemini if isinstance(gemini, str) else "",
        )


@dataclass
class RunSnapshot:
    """Read-only view of the latest generation run for presentation layers."""

    state: RunState
    transcript: List[str] = field(default_factory=list)
    interactions: List[AIInteraction] = field(default_factory=list)
    document: Optional[Document] = None
