"""Lazily expanded repository forest with tri-state selection aggregation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..errors import DocSynthError, UnknownRepository
from ..github.client import RepositoryClient
from ..logging import get_logger
from ..models import FetchState, Node, RepositoryId, SelectedFile, TriState
from ..stores.cache import CacheKey, CacheStore

# Fetch bookkeeping key of the repository root; real paths are never empty.
ROOT_KEY = ""

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class RepositoryState:
    """Everything the tree model tracks for one repository."""

    roots: Tuple[Node, ...] = ()
    selection: Dict[str, bool] = field(default_factory=dict)
    fetch_states: Dict[str, FetchState] = field(default_factory=dict)
    expanded: Dict[str, bool] = field(default_factory=dict)
    cache_status: Dict[str, bool] = field(default_factory=dict)
    pending: Dict[str, "asyncio.Future[List[Node]]"] = field(default_factory=dict)


class TreeModel:
    """Owns the node forests and selection maps of every added repository.

    Listings are merged as they arrive, so expanding one directory never
    disturbs subtrees that were already loaded elsewhere. Directory selection
    is never stored; it is aggregated from file flags on every read.
    """

    def __init__(
        self,
        client: RepositoryClient,
        cache: CacheStore,
        *,
        throttle: float = 0.2,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._throttle = throttle
        self._sleep = sleep
        self._states: Dict[RepositoryId, RepositoryState] = {}
        self.logger = get_logger("tree")

    # ------------------------------------------------------------------
    # Repository registry

    def add_repository(self, repository: RepositoryId) -> bool:
        if repository in self._states:
            return False
        self._states[repository] = RepositoryState()
        return True

    def remove_repository(self, repository: RepositoryId) -> None:
        self._states.pop(repository, None)

    def has_repository(self, repository: RepositoryId) -> bool:
        return repository in self._states

    def repositories(self) -> List[RepositoryId]:
        return list(self._states)

    # ------------------------------------------------------------------
    # Reads

    def roots(self, repository: RepositoryId) -> Tuple[Node, ...]:
        return self._state(repository).roots

    def find_node(self, repository: RepositoryId, path: str) -> Optional[Node]:
        return _find(self._state(repository).roots, path)

    def selection(self, repository: RepositoryId) -> Dict[str, bool]:
        return dict(self._state(repository).selection)

    def is_selected(self, repository: RepositoryId, path: str) -> bool:
        return bool(self._state(repository).selection.get(path, False))

    def fetch_state(self, repository: RepositoryId, path: str | None = None) -> FetchState:
        state = self._state(repository)
        return state.fetch_states.get(path or ROOT_KEY, FetchState.NOT_REQUESTED)

    def cache_status(self, repository: RepositoryId, path: str | None = None) -> Optional[bool]:
        """True when the listing came from the cache, False when fetched, None if unknown."""
        return self._state(repository).cache_status.get(path or ROOT_KEY)

    def is_expanded(self, repository: RepositoryId, path: str) -> bool:
        return bool(self._state(repository).expanded.get(path, False))

    def needs_fetch(self, repository: RepositoryId, node: Node) -> bool:
        return _needs_fetch(self._state(repository), node)

    def selected_files(self) -> List[SelectedFile]:
        """Flatten every true flag, repositories in insertion order, paths in selection order."""
        selected: List[SelectedFile] = []
        for repository, state in self._states.items():
            shas = {
                node.path: node.sha
                for node in _iter_nodes(state.roots)
                if not node.is_dir
            }
            for path, flag in state.selection.items():
                if flag:
                    selected.append(SelectedFile(repository, path, shas.get(path)))
        return selected

    def folder_selection_state(
        self, repository: RepositoryId, nodes: Iterable[Node]
    ) -> TriState:
        selection = self._state(repository).selection
        has_selected = False
        has_unselected = False
        for path in iter_file_paths(nodes):
            if selection.get(path, False):
                has_selected = True
            else:
                has_unselected = True
            if has_selected and has_unselected:
                return TriState.INDETERMINATE
        return TriState.SELECTED if has_selected else TriState.UNSELECTED

    # ------------------------------------------------------------------
    # Mutations

    def merge_listing(
        self,
        repository: RepositoryId,
        nodes: Sequence[Node],
        parent_path: str | None = None,
    ) -> None:
        state = self._state(repository)
        unique = _dedupe(nodes)
        if parent_path is None:
            state.roots = _graft(unique, state.roots)
        else:
            state.roots, found = _replace_children(state.roots, parent_path, unique)
            if not found:
                self.logger.debug(
                    "Parent %s not present in %s tree; only seeding selection",
                    parent_path,
                    repository,
                )
        for node in unique:
            if not node.is_dir:
                state.selection.setdefault(node.path, False)

    def toggle_file(self, repository: RepositoryId, path: str, selected: bool) -> None:
        self._state(repository).selection[path] = bool(selected)

    async def toggle_subtree(
        self,
        repository: RepositoryId,
        root_nodes: Sequence[Node],
        selected: bool,
    ) -> List[str]:
        """Set every file flag below ``root_nodes``; returns directories that failed to load.

        Selecting fetches unloaded directories before descending into them. All
        flags are committed together once the traversal has finished.
        """
        state = self._state(repository)
        selected = bool(selected)
        updates: Dict[str, bool] = {}
        failed: List[str] = []

        async def traverse(items: Iterable[Node]) -> None:
            for item in items:
                if not item.is_dir:
                    updates[item.path] = selected
                    continue
                current = _find(state.roots, item.path) or item
                children: Sequence[Node] = current.children or ()
                if selected and _needs_fetch(state, current):
                    try:
                        children = await self.fetch_directory(repository, item.path)
                    except DocSynthError as exc:
                        self.logger.warning(
                            "Skipping %s:%s while selecting: %s", repository, item.path, exc
                        )
                        failed.append(item.path)
                        continue
                    current = _find(state.roots, item.path)
                    if current is not None and current.children:
                        children = current.children
                await traverse(children)

        await traverse(root_nodes)

        if self._states.get(repository) is not state:
            self.logger.debug("Repository %s removed during selection; discarding", repository)
            return failed
        state.selection.update(updates)
        return failed

    async def toggle_expansion(self, repository: RepositoryId, node: Node) -> bool:
        """Flip the expanded flag, loading the directory the first time it is opened."""
        state = self._state(repository)
        expanded = not state.expanded.get(node.path, False)
        state.expanded[node.path] = expanded
        current = _find(state.roots, node.path) or node
        if (
            current.is_dir
            and _needs_fetch(state, current)
            and state.fetch_states.get(node.path) is not FetchState.IN_FLIGHT
        ):
            await self.fetch_directory(repository, node.path)
        return expanded

    async def fetch_directory(
        self, repository: RepositoryId, path: str | None = None
    ) -> List[Node]:
        """Load one directory level through the cache, merging it into the tree.

        Concurrent calls for the same path share a single request.
        """
        state = self._state(repository)
        path = path or None
        key = path or ROOT_KEY
        pending = state.pending.get(key)
        if pending is not None:
            return list(await asyncio.shield(pending))

        # No suspension point between the check above and these writes.
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[List[Node]]" = loop.create_future()
        state.pending[key] = future
        state.fetch_states[key] = FetchState.IN_FLIGHT
        try:
            nodes = await self._load_listing(repository, path, state)
        except asyncio.CancelledError:
            state.fetch_states[key] = FetchState.FAILED
            future.cancel()
            raise
        except Exception as exc:
            state.fetch_states[key] = FetchState.FAILED
            future.set_exception(exc)
            # Mark retrieved so a fetch nobody else awaited does not warn at GC.
            future.exception()
            raise
        else:
            state.fetch_states[key] = FetchState.LOADED
            future.set_result(nodes)
            return nodes
        finally:
            if state.pending.get(key) is future:
                del state.pending[key]

    # ------------------------------------------------------------------
    # Internal helpers

    def _state(self, repository: RepositoryId) -> RepositoryState:
        try:
            return self._states[repository]
        except KeyError:
            raise UnknownRepository(repository) from None

    async def _load_listing(
        self,
        repository: RepositoryId,
        path: str | None,
        state: RepositoryState,
    ) -> List[Node]:
        cache_key = CacheKey.repo_tree(repository, path)
        cached = self._cache.get(cache_key)
        if cached is not None:
            try:
                if not isinstance(cached, list):
                    raise ValueError("cached listing is not a list")
                nodes = [Node.from_dict(entry) for entry in cached]
            except ValueError as exc:
                self.logger.warning("Evicting malformed listing %s: %s", cache_key, exc)
                self._cache.delete(cache_key)
            else:
                self.logger.debug("Using cached listing for %s:%s", repository, path or "/")
                self._commit_listing(repository, state, nodes, path, from_cache=True)
                return nodes

        await self._sleep(self._throttle)
        nodes = await self._client.list_directory(repository, path)
        self._commit_listing(repository, state, nodes, path, from_cache=False)
        self._cache.set(cache_key, [node.to_dict() for node in nodes])
        return nodes

    def _commit_listing(
        self,
        repository: RepositoryId,
        state: RepositoryState,
        nodes: Sequence[Node],
        path: str | None,
        *,
        from_cache: bool,
    ) -> None:
        if self._states.get(repository) is not state:
            self.logger.debug("Discarding listing for removed repository %s", repository)
            return
        self.merge_listing(repository, nodes, path)
        state.cache_status[path or ROOT_KEY] = from_cache


def iter_file_paths(nodes: Iterable[Node]) -> Iterator[str]:
    """Yield file paths depth-first; lazily, so callers may stop early."""
    for node in nodes:
        if node.is_dir:
            yield from iter_file_paths(node.children or ())
        else:
            yield node.path


def _iter_nodes(nodes: Iterable[Node]) -> Iterator[Node]:
    for node in nodes:
        yield node
        if node.children:
            yield from _iter_nodes(node.children)


def _needs_fetch(state: RepositoryState, node: Node) -> bool:
    return (
        node.is_dir
        and not node.children
        and state.fetch_states.get(node.path) is not FetchState.LOADED
    )


def _find(nodes: Iterable[Node], path: str) -> Optional[Node]:
    for node in nodes:
        if node.path == path:
            return node
        if node.children and path.startswith(node.path + "/"):
            found = _find(node.children, path)
            if found is not None:
                return found
    return None


def _dedupe(nodes: Iterable[Node]) -> Tuple[Node, ...]:
    seen = set()
    unique: List[Node] = []
    for node in nodes:
        if node.path in seen:
            continue
        seen.add(node.path)
        unique.append(node)
    return tuple(unique)


def _graft(incoming: Tuple[Node, ...], previous: Iterable[Node]) -> Tuple[Node, ...]:
    """Keep already loaded subtrees of directories that are still present."""
    loaded = {node.path: node for node in previous if node.is_dir and node.children}
    grafted: List[Node] = []
    for node in incoming:
        old = loaded.get(node.path)
        if node.is_dir and old is not None:
            grafted.append(replace(node, children=old.children))
        else:
            grafted.append(node)
    return tuple(grafted)


def _replace_children(
    nodes: Tuple[Node, ...],
    parent_path: str,
    children: Tuple[Node, ...],
) -> Tuple[Tuple[Node, ...], bool]:
    updated: List[Node] = []
    found = False
    for node in nodes:
        if found or not node.is_dir:
            updated.append(node)
        elif node.path == parent_path:
            updated.append(replace(node, children=_graft(children, node.children or ())))
            found = True
        elif node.children and parent_path.startswith(node.path + "/"):
            new_children, found = _replace_children(node.children, parent_path, children)
            updated.append(replace(node, children=new_children) if found else node)
        else:
            updated.append(node)
    return tuple(updated), found


__all__ = ["ROOT_KEY", "RepositoryState", "TreeModel", "iter_file_paths"]
