"""Session object tying repositories, selection, credentials and generation together."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

from .config import DocSynthConfig
from .errors import DocSynthError, UnknownPath
from .github.client import RepositoryClient
from .llm.runner import LLMRunner
from .logging import get_logger
from .models import ApiKeys, Document, Node, Notification, RepositoryId
from .pipeline import GenerationPipeline, SleepFn, StructuredGenerator
from .prompting.constants import DEFAULT_GOAL_PROMPT
from .stores.cache import CacheKey, CacheStore, JsonFileCacheStore, MemoryCacheStore
from .tree.model import TreeModel
from .tree.selection import SelectionController


class Workspace:
    """Holds every added repository and the state of the latest generation run."""

    def __init__(
        self,
        config: DocSynthConfig,
        *,
        cache: CacheStore | None = None,
        client: RepositoryClient | None = None,
        llm: StructuredGenerator | None = None,
        sleep: SleepFn = asyncio.sleep,
        on_notify: Callable[[Notification], None] | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("workspace")
        self.cache = cache if cache is not None else _default_cache(config)
        self.notifications: List[Notification] = []
        self._on_notify = on_notify

        # Only keys entered through set_api_keys are persisted.
        self._stored_keys = ApiKeys.from_dict(self.cache.get(CacheKey.api_keys()))
        keys = self.api_keys

        self._owns_client = client is None
        self.client = client or RepositoryClient(
            keys.github or None,
            api_url=config.github.api_url,
            timeout=config.github.request_timeout,
        )
        self._owns_llm = llm is None
        self.llm = llm or LLMRunner(
            config.llm.provider,
            model=config.llm.model,
            api_key=keys.gemini or None,
            base_url=config.llm.base_url,
            temperature=config.llm.temperature,
            request_timeout=config.llm.request_timeout,
        )

        self.tree = TreeModel(
            self.client,
            self.cache,
            throttle=config.github.throttle_ms / 1000,
            sleep=sleep,
        )
        self.selection = SelectionController(self.tree)
        self.pipeline = GenerationPipeline(
            self.client,
            self.llm,
            self.cache,
            content_throttle=config.github.throttle_ms / 1000,
            ai_throttle=config.llm.throttle_ms / 1000,
            sleep=sleep,
            notifier=self.notify,
        )
        self.goal_prompt = config.generation.goal_prompt or DEFAULT_GOAL_PROMPT
        self.file_sizes: Dict[RepositoryId, Dict[str, int]] = {}

    async def __aenter__(self) -> "Workspace":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
        if self._owns_llm and isinstance(self.llm, LLMRunner):
            await self.llm.aclose()

    # ------------------------------------------------------------------
    # Repositories

    def repositories(self) -> List[RepositoryId]:
        return self.tree.repositories()

    async def add_repository(self, value: str | RepositoryId) -> Optional[RepositoryId]:
        """Validate, register and load the root listing; returns None for duplicates."""
        repository = value if isinstance(value, RepositoryId) else RepositoryId.parse(value)
        if not self.tree.add_repository(repository):
            self.notify(
                Notification(
                    "info",
                    "Repository already added.",
                    "This repository is already in the list.",
                )
            )
            return None

        self.pipeline.reset()
        try:
            await self.tree.fetch_directory(repository)
        except DocSynthError as exc:
            self.tree.remove_repository(repository)
            self.notify(Notification("error", "Failed to fetch repository.", str(exc)))
            raise
        self.logger.info("Added repository %s", repository)
        return repository

    def remove_repository(self, repository: RepositoryId) -> None:
        self.tree.remove_repository(repository)
        self.file_sizes.pop(repository, None)

    async def expand(self, repository: RepositoryId, path: str) -> bool:
        node = self.tree.find_node(repository, path)
        if node is None:
            node = await self.locate(repository, path)
        try:
            return await self.tree.toggle_expansion(repository, node)
        except DocSynthError as exc:
            self.notify(Notification("error", "Failed to fetch repository.", str(exc)))
            raise

    async def locate(self, repository: RepositoryId, path: str) -> Node:
        """Find a node by path, loading each unloaded ancestor directory on the way."""
        path = path.strip("/")
        parts = path.split("/")
        for depth in range(1, len(parts)):
            ancestor = "/".join(parts[:depth])
            node = self.tree.find_node(repository, ancestor)
            if node is None:
                break
            if self.tree.needs_fetch(repository, node):
                await self.tree.fetch_directory(repository, ancestor)
        node = self.tree.find_node(repository, path)
        if node is None:
            raise UnknownPath(repository, path)
        return node

    # ------------------------------------------------------------------
    # Credentials

    @property
    def api_keys(self) -> ApiKeys:
        """Effective credentials: stored keys first, then config and environment."""
        return ApiKeys(
            github=self._stored_keys.github or self.config.github.token or "",
            gemini=self._stored_keys.gemini or self.config.llm.api_key or "",
        )

    def set_api_keys(self, *, github: str | None = None, gemini: str | None = None) -> None:
        """Persist the given keys; an empty string clears the stored value."""
        if github is not None:
            self._stored_keys.github = github.strip()
        if gemini is not None:
            self._stored_keys.gemini = gemini.strip()
        self.cache.set(CacheKey.api_keys(), self._stored_keys.to_dict())

        keys = self.api_keys
        if github is not None:
            self.client.token = keys.github or None
        if gemini is not None and isinstance(self.llm, LLMRunner):
            self.llm.api_key = keys.gemini or None

    # ------------------------------------------------------------------
    # Generation

    async def generate(self, goal_prompt: str | None = None) -> Document:
        if goal_prompt is not None:
            self.goal_prompt = goal_prompt
        try:
            return await self.pipeline.run(self.tree.selected_files(), self.goal_prompt)
        finally:
            for file in self.pipeline.files:
                self.file_sizes.setdefault(file.repository, {})[file.path] = file.size

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        log = self.logger.error if notification.level == "error" else self.logger.info
        log("%s %s", notification.title, notification.description)
        if self._on_notify is not None:
            self._on_notify(notification)


def _default_cache(config: DocSynthConfig) -> CacheStore:
    if config.cache.path is None:
        return MemoryCacheStore()
    return JsonFileCacheStore(config.cache.path)


__all__ = ["Workspace"]
