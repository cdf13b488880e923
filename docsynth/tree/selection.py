"""User-facing selection verbs over the tree model."""

from __future__ import annotations

from typing import List

from ..errors import UnknownRepository
from ..models import Node, RepositoryId, TriState
from .model import TreeModel


class SelectionController:
    """Facade translating select-file/folder/all gestures into tree model calls."""

    def __init__(self, tree: TreeModel) -> None:
        self._tree = tree

    def select_file(self, repository: RepositoryId, path: str, selected: bool) -> None:
        self._require(repository)
        path = path.strip().strip("/")
        if not path:
            raise ValueError("A file path is required")
        node = self._tree.find_node(repository, path)
        if node is not None and node.is_dir:
            raise ValueError(f"'{path}' is a directory; use select_folder instead")
        self._tree.toggle_file(repository, path, selected)

    async def select_folder(
        self, repository: RepositoryId, node: Node, selected: bool
    ) -> List[str]:
        self._require(repository)
        if not node.is_dir:
            raise ValueError(f"'{node.path}' is not a directory")
        return await self._tree.toggle_subtree(repository, [node], selected)

    async def select_all(self, repository: RepositoryId, selected: bool) -> List[str]:
        self._require(repository)
        roots = self._tree.roots(repository)
        if not roots:
            return []
        return await self._tree.toggle_subtree(repository, roots, selected)

    def folder_state(self, repository: RepositoryId, node: Node) -> TriState:
        self._require(repository)
        current = self._tree.find_node(repository, node.path) or node
        if not current.is_dir:
            selected = self._tree.is_selected(repository, current.path)
            return TriState.SELECTED if selected else TriState.UNSELECTED
        return self._tree.folder_selection_state(repository, current.children or ())

    def root_state(self, repository: RepositoryId) -> TriState:
        """Value of the repository-level "select all" checkbox."""
        self._require(repository)
        return self._tree.folder_selection_state(repository, self._tree.roots(repository))

    def _require(self, repository: RepositoryId) -> None:
        if not isinstance(repository, RepositoryId):
            raise TypeError("repository must be a RepositoryId")
        if not self._tree.has_repository(repository):
            raise UnknownRepository(repository)


__all__ = ["SelectionController"]
