"""Stateless adapter over the GitHub repository contents API."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ProviderRequestFailed, UnexpectedResponseShape
from ..logging import get_logger
from ..models import Node, NodeKind, RepositoryId

UNDECODABLE_CONTENT = "Could not decode file content."

API_HEADERS = {
    "Accept": "application/vnd.github.v3+json",
}

logger = get_logger("github")


class RepositoryClient:
    """Fetches one directory level or one file body per call.

    The client never throttles on its own; callers sleep between calls to stay
    under the anonymous rate allowance when no token is configured.
    """

    DEFAULT_API_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        *,
        api_url: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token or None
        self.api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "RepositoryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def list_directory(
        self, repository: RepositoryId, path: str | None = None
    ) -> List[Node]:
        """Return the immediate children of ``path`` (or the repository root)."""
        payload = await self._get_json(self._contents_url(repository, path))
        if not isinstance(payload, list):
            raise UnexpectedResponseShape(
                "Unexpected API response format. Expected an array of files/directories."
            )
        nodes: List[Node] = []
        for item in payload:
            if not isinstance(item, dict):
                raise UnexpectedResponseShape("Directory listing entries must be objects.")
            name = item.get("name")
            item_path = item.get("path")
            if not isinstance(name, str) or not isinstance(item_path, str):
                raise UnexpectedResponseShape("Directory listing entry is missing name or path.")
            sha = item.get("sha") if isinstance(item.get("sha"), str) else None
            if item.get("type") == NodeKind.DIRECTORY.value:
                nodes.append(
                    Node(name=name, path=item_path, kind=NodeKind.DIRECTORY, children=(), sha=sha)
                )
            else:
                nodes.append(Node(name=name, path=item_path, kind=NodeKind.FILE, sha=sha))
        logger.debug("Listed %d entries under %s:%s", len(nodes), repository, path or "/")
        return nodes

    async def read_file(self, repository: RepositoryId, path: str) -> str:
        """Return the decoded text of a file, or a placeholder if it cannot be decoded."""
        payload = await self._get_json(self._contents_url(repository, path))
        if not isinstance(payload, dict):
            raise UnexpectedResponseShape(
                f"Unexpected API response format for {path}. Expected a file object."
            )
        return _decode_content(payload, path)

    # ------------------------------------------------------------------
    # Internal helpers

    def _contents_url(self, repository: RepositoryId, path: str | None) -> str:
        suffix = (path or "").strip("/")
        return f"{self.api_url}/repos/{repository.owner}/{repository.name}/contents/{suffix}"

    def _headers(self) -> Dict[str, str]:
        headers = dict(API_HEADERS)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_json(self, url: str) -> Any:
        try:
            response = await self._http.get(url, headers=self._headers())
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ProviderRequestFailed(None, str(exc) or exc.__class__.__name__) from exc
        if not response.is_success:
            raise ProviderRequestFailed(response.status_code, response.text.strip())
        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponseShape("GitHub API returned invalid JSON.") from exc


def _decode_content(payload: Dict[str, Any], path: str) -> str:
    content: Optional[str] = payload.get("content") if isinstance(payload.get("content"), str) else None
    if payload.get("encoding") != "base64" or content is None:
        logger.debug("No base64 content for %s; using placeholder", path)
        return UNDECODABLE_CONTENT
    try:
        raw = base64.b64decode(content, validate=False)
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.debug("Content of %s is not UTF-8 text; using placeholder", path)
        return UNDECODABLE_CONTENT


__all__ = ["RepositoryClient", "UNDECODABLE_CONTENT"]
