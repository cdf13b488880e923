"""Error taxonomy shared by the tree model, clients and generation pipeline."""

from __future__ import annotations

from typing import Optional


class DocSynthError(RuntimeError):
    """Base class for every error docsynth raises on purpose."""


class InvalidRepositoryPath(DocSynthError):
    """Raised when a repository identifier does not match ``owner/name``."""

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid repository path '{value}'. Please enter a valid `owner/repo` path."
        )
        self.value = value


class UnknownRepository(DocSynthError):
    """Raised when an operation targets a repository that was never added."""

    def __init__(self, repository: object) -> None:
        super().__init__(f"Repository '{repository}' has not been added.")
        self.repository = repository


class UnknownPath(DocSynthError):
    """Raised when a path cannot be found in a repository tree."""

    def __init__(self, repository: object, path: str) -> None:
        super().__init__(f"Path '{path}' was not found in {repository}.")
        self.repository = repository
        self.path = path


class ProviderRequestFailed(DocSynthError):
    """A remote provider answered with a non-success status or could not be reached."""

    def __init__(self, status: Optional[int], message: str) -> None:
        if status is None:
            text = f"Request failed: {message}"
        else:
            text = f"Request failed with status {status}: {message}"
        super().__init__(text)
        self.status = status
        self.message = message


class UnexpectedResponseShape(DocSynthError):
    """A provider payload parsed but did not have the expected structure."""


class ResponseParseError(DocSynthError):
    """The AI candidate text was not a structured value with the expected fields."""


class NoFilesSelected(DocSynthError):
    """Generation was requested without any selected file."""


class MissingApiKey(DocSynthError):
    """Generation was requested without an AI provider credential."""


class NoContentFetched(DocSynthError):
    """None of the selected files yielded content."""


class GenerationFailed(DocSynthError):
    """An AI call failed during summarization or synthesis."""

    def __init__(self, provider_message: str) -> None:
        super().__init__(provider_message)
        self.provider_message = provider_message


class EmptyDocument(DocSynthError):
    """The synthesis call succeeded but produced no documentation text."""


class RunSuperseded(DocSynthError):
    """A newer generation run started while this one was suspended."""


class CacheIOError(DocSynthError):
    """A cache entry could not be read or written. Always handled inside the store."""


__all__ = [
    "CacheIOError",
    "DocSynthError",
    "EmptyDocument",
    "GenerationFailed",
    "InvalidRepositoryPath",
    "MissingApiKey",
    "NoContentFetched",
    "NoFilesSelected",
    "ProviderRequestFailed",
    "ResponseParseError",
    "RunSuperseded",
    "UnexpectedResponseShape",
    "UnknownPath",
    "UnknownRepository",
]
