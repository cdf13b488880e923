from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from docsynth.config import DocSynthConfig
from docsynth.errors import ProviderRequestFailed
from docsynth.models import Node, RepositoryId
from docsynth.stores.cache import MemoryCacheStore
from docsynth.workspace import Workspace


def make_nodes(*paths: str) -> List[Node]:
    """Build listing entries; a trailing slash marks a directory."""
    nodes: List[Node] = []
    for path in paths:
        if path.endswith("/"):
            nodes.append(Node.directory(path.rstrip("/")))
        else:
            nodes.append(Node.file(path))
    return nodes


class FakeRepositoryClient:
    """Serves canned listings and file bodies and records every call."""

    def __init__(self) -> None:
        self.token: Optional[str] = None
        self.listings: Dict[Tuple[str, str], List[Node]] = {}
        self.files: Dict[Tuple[str, str], str] = {}
        self.list_errors: Dict[Tuple[str, str], Exception] = {}
        self.read_errors: Dict[Tuple[str, str], Exception] = {}
        self.list_calls: List[Tuple[str, str]] = []
        self.read_calls: List[Tuple[str, str]] = []
        self.on_list: Optional[Callable[[str], Any]] = None

    def add_listing(self, repository: RepositoryId, path: str | None, *entries: str) -> None:
        self.listings[(str(repository), path or "")] = make_nodes(*entries)

    def add_file(self, repository: RepositoryId, path: str, content: str) -> None:
        self.files[(str(repository), path)] = content

    async def list_directory(
        self, repository: RepositoryId, path: str | None = None
    ) -> List[Node]:
        key = (str(repository), path or "")
        self.list_calls.append(key)
        if self.on_list is not None:
            await self.on_list(key[1])
        # Yield once so concurrent callers can interleave.
        await asyncio.sleep(0)
        if key in self.list_errors:
            raise self.list_errors[key]
        if key not in self.listings:
            raise ProviderRequestFailed(404, "Not Found")
        return list(self.listings[key])

    async def read_file(self, repository: RepositoryId, path: str) -> str:
        key = (str(repository), path)
        self.read_calls.append(key)
        await asyncio.sleep(0)
        if key in self.read_errors:
            raise self.read_errors[key]
        if key not in self.files:
            raise ProviderRequestFailed(404, "Not Found")
        return self.files[key]

    async def aclose(self) -> None:
        return None


class FakeLLM:
    """Answers summary prompts with a summary and synthesis prompts with a document."""

    def __init__(self) -> None:
        self.has_credentials = True
        self.prompts: List[str] = []
        self.responses: List[Any] = []
        self.documentation = "# Widgets\n\nGenerated docs."
        self.on_call: Optional[Callable[[str], Any]] = None

    async def generate_structured(self, prompt: str) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if self.on_call is not None:
            await self.on_call(prompt)
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if "File Summaries:" in prompt:
            return {"documentation": self.documentation}
        return {"path": "ignored", "summary": f"Summary #{len(self.prompts)}"}


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def repo() -> RepositoryId:
    return RepositoryId("acme", "widgets")


@pytest.fixture
def fake_client() -> FakeRepositoryClient:
    return FakeRepositoryClient()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def config(tmp_path: Path) -> DocSynthConfig:
    return DocSynthConfig(root=tmp_path)


@pytest.fixture
def workspace(
    config: DocSynthConfig,
    cache: MemoryCacheStore,
    fake_client: FakeRepositoryClient,
    fake_llm: FakeLLM,
    sleeper: SleepRecorder,
) -> Workspace:
    return Workspace(
        config,
        cache=cache,
        client=fake_client,  # type: ignore[arg-type]
        llm=fake_llm,
        sleep=sleeper,
    )


@pytest.fixture
def nodes() -> Callable[..., List[Node]]:
    return make_nodes
