"""FastAPI application exposing a docsynth workspace over HTTP."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import DocSynthConfig, load_config
from ..errors import (
    DocSynthError,
    EmptyDocument,
    GenerationFailed,
    InvalidRepositoryPath,
    NoContentFetched,
    ProviderRequestFailed,
    ResponseParseError,
    UnexpectedResponseShape,
    UnknownPath,
    UnknownRepository,
)
from ..models import Node, RepositoryId
from ..workspace import Workspace


class HealthResponse(BaseModel):
    status: str


class AddRepositoryRequest(BaseModel):
    repository: str


class RepositoryResponse(BaseModel):
    repository: str
    added: bool


class NodeResponse(BaseModel):
    name: str
    path: str
    type: str
    selection: str
    expanded: bool
    fetch_state: Optional[str] = None


class TreeResponse(BaseModel):
    repository: str
    path: Optional[str] = None
    cached: Optional[bool] = None
    selection: str
    nodes: List[NodeResponse]


class ExpandRequest(BaseModel):
    path: str


class ExpandResponse(BaseModel):
    path: str
    expanded: bool


class SelectionRequest(BaseModel):
    path: Optional[str] = None
    selected: bool = True


class SelectionResponse(BaseModel):
    selection: str
    selected_files: List[str]
    failed: List[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    goal_prompt: Optional[str] = None


class InteractionResponse(BaseModel):
    request: str
    response: Dict[str, Any]


class NotificationResponse(BaseModel):
    level: str
    title: str
    description: str


class RunResponse(BaseModel):
    state: str
    transcript: List[str]
    interactions: List[InteractionResponse] = Field(default_factory=list)
    documentation: Optional[str] = None
    source_urls: List[str] = Field(default_factory=list)
    notifications: List[NotificationResponse] = Field(default_factory=list)


_NOT_FOUND = (UnknownRepository, UnknownPath)
_UPSTREAM = (
    ProviderRequestFailed,
    UnexpectedResponseShape,
    ResponseParseError,
    GenerationFailed,
    NoContentFetched,
    EmptyDocument,
)


def _status_for(exc: DocSynthError) -> int:
    if isinstance(exc, _NOT_FOUND):
        return 404
    if isinstance(exc, InvalidRepositoryPath):
        return 422
    if isinstance(exc, _UPSTREAM):
        return 502
    return 400


def _default_workspace() -> Workspace:
    return Workspace(load_config())


def create_app(
    workspace_factory: Callable[[], Workspace] = _default_workspace,
) -> FastAPI:
    """Create the FastAPI application around a single long-lived workspace."""

    workspace = workspace_factory()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await workspace.aclose()

    app = FastAPI(title="DocSynth Service", version="1.0.0", lifespan=lifespan)
    app.state.workspace = workspace

    async def get_workspace() -> Workspace:
        return workspace

    def _repository(owner: str, name: str) -> RepositoryId:
        return RepositoryId.parse(f"{owner}/{name}")

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/repositories", response_model=RepositoryResponse, status_code=201)
    async def add_repository(
        payload: AddRepositoryRequest,
        ws: Workspace = Depends(get_workspace),
    ) -> Any:
        repository = await ws.add_repository(payload.repository)
        if repository is None:
            existing = RepositoryId.parse(payload.repository)
            return JSONResponse(
                status_code=200,
                content=RepositoryResponse(repository=str(existing), added=False).model_dump(),
            )
        return RepositoryResponse(repository=str(repository), added=True)

    @app.delete("/repositories/{owner}/{name}", response_model=RepositoryResponse)
    async def remove_repository(
        owner: str,
        name: str,
        ws: Workspace = Depends(get_workspace),
    ) -> RepositoryResponse:
        repository = _repository(owner, name)
        if repository not in ws.repositories():
            raise UnknownRepository(repository)
        ws.remove_repository(repository)
        return RepositoryResponse(repository=str(repository), added=False)

    @app.get("/repositories/{owner}/{name}/tree", response_model=TreeResponse)
    async def tree(
        owner: str,
        name: str,
        path: Optional[str] = None,
        ws: Workspace = Depends(get_workspace),
    ) -> TreeResponse:
        repository = _repository(owner, name)
        nodes = ws.tree.roots(repository)
        selection = ws.selection.root_state(repository)
        key = None
        if path and path.strip("/"):
            node = await ws.locate(repository, path)
            key = node.path
            if node.is_dir and ws.tree.needs_fetch(repository, node):
                await ws.tree.fetch_directory(repository, node.path)
            node = ws.tree.find_node(repository, node.path) or node
            nodes = node.children or ()
            selection = ws.selection.folder_state(repository, node)
        return TreeResponse(
            repository=str(repository),
            path=key,
            cached=ws.tree.cache_status(repository, key),
            selection=selection.value,
            nodes=[_node_response(ws, repository, node) for node in nodes],
        )

    @app.post("/repositories/{owner}/{name}/expand", response_model=ExpandResponse)
    async def expand(
        owner: str,
        name: str,
        payload: ExpandRequest,
        ws: Workspace = Depends(get_workspace),
    ) -> ExpandResponse:
        repository = _repository(owner, name)
        expanded = await ws.expand(repository, payload.path)
        return ExpandResponse(path=payload.path.strip("/"), expanded=expanded)

    @app.post("/repositories/{owner}/{name}/selection", response_model=SelectionResponse)
    async def select(
        owner: str,
        name: str,
        payload: SelectionRequest,
        ws: Workspace = Depends(get_workspace),
    ) -> SelectionResponse:
        repository = _repository(owner, name)
        failed: List[str] = []
        if payload.path is None or not payload.path.strip("/"):
            failed = await ws.selection.select_all(repository, payload.selected)
            state = ws.selection.root_state(repository)
        else:
            node = await ws.locate(repository, payload.path)
            if node.is_dir:
                failed = await ws.selection.select_folder(repository, node, payload.selected)
            else:
                ws.selection.select_file(repository, node.path, payload.selected)
            state = ws.selection.folder_state(repository, node)
        selected = [
            f"{item.repository}/{item.path}"
            for item in ws.tree.selected_files()
            if item.repository == repository
        ]
        return SelectionResponse(selection=state.value, selected_files=selected, failed=failed)

    @app.post("/generate", response_model=RunResponse)
    async def generate(
        payload: GenerateRequest,
        ws: Workspace = Depends(get_workspace),
    ) -> RunResponse:
        await ws.generate(payload.goal_prompt)
        return _run_response(ws)

    @app.get("/run", response_model=RunResponse)
    async def run_status(ws: Workspace = Depends(get_workspace)) -> RunResponse:
        return _run_response(ws)

    @app.exception_handler(DocSynthError)
    async def docsynth_error_handler(_: Request, exc: DocSynthError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def _node_response(ws: Workspace, repository: RepositoryId, node: Node) -> NodeResponse:
    return NodeResponse(
        name=node.name,
        path=node.path,
        type=node.kind.value,
        selection=ws.selection.folder_state(repository, node).value,
        expanded=ws.tree.is_expanded(repository, node.path),
        fetch_state=ws.tree.fetch_state(repository, node.path).value if node.is_dir else None,
    )


def _run_response(ws: Workspace) -> RunResponse:
    snapshot = ws.pipeline.snapshot()
    document = snapshot.document
    return RunResponse(
        state=snapshot.state.value,
        transcript=snapshot.transcript,
        interactions=[
            InteractionResponse(request=item.request, response=item.response)
            for item in snapshot.interactions
        ],
        documentation=document.text if document is not None else None,
        source_urls=list(document.source_urls) if document is not None else [],
        notifications=[
            NotificationResponse(
                level=item.level, title=item.title, description=item.description
            )
            for item in ws.notifications
        ],
    )


def run_service(
    host: str = "127.0.0.1",
    port: int = 8000,
    config: DocSynthConfig | None = None,
) -> None:  # pragma: no cover - integration path
    import uvicorn

    resolved = config or load_config()
    app = create_app(lambda: Workspace(resolved))
    uvicorn.run(app, host=host, port=port)


__all__ = ["create_app", "run_service"]
