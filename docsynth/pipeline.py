"""Map-reduce documentation generation over the selected repository files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from .errors import (
    DocSynthError,
    EmptyDocument,
    GenerationFailed,
    MissingApiKey,
    NoContentFetched,
    NoFilesSelected,
    ProviderRequestFailed,
    ResponseParseError,
    RunSuperseded,
)
from .github.client import RepositoryClient
from .logging import get_logger
from .models import (
    AIInteraction,
    Document,
    FileContent,
    FileSummary,
    Notification,
    RepositoryId,
    RunSnapshot,
    RunState,
    SelectedFile,
)
from .prompting.builder import PromptBuilder
from .prompting.constants import DOCUMENTATION_FIELD, SUMMARY_FIELD
from .stores.cache import CacheKey, CacheStore

Notifier = Callable[[Notification], None]
SleepFn = Callable[[float], Awaitable[None]]


class StructuredGenerator(Protocol):
    has_credentials: bool

    async def generate_structured(self, prompt: str) -> Dict[str, Any]:
        ...


@dataclass
class GenerationRun:
    """State owned by a single invocation of :meth:`GenerationPipeline.run`."""

    run_id: int
    state: RunState = RunState.IDLE
    transcript: List[str] = field(default_factory=list)
    interactions: List[AIInteraction] = field(default_factory=list)
    files: List[FileContent] = field(default_factory=list)
    summaries: List[FileSummary] = field(default_factory=list)
    document: Optional[Document] = None
    error: Optional[DocSynthError] = None


class GenerationPipeline:
    """Fetches selected file contents, summarizes each file, then synthesizes one document."""

    def __init__(
        self,
        client: RepositoryClient,
        llm: StructuredGenerator,
        cache: CacheStore,
        *,
        prompt_builder: PromptBuilder | None = None,
        content_throttle: float = 0.2,
        ai_throttle: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._client = client
        self._llm = llm
        self._cache = cache
        self.prompt_builder = prompt_builder or PromptBuilder()
        self._content_throttle = content_throttle
        self._ai_throttle = ai_throttle
        self._sleep = sleep
        self._notifier = notifier
        self._clock = clock
        self._generation = 0
        self._current = GenerationRun(run_id=0)
        self.logger = get_logger("pipeline")

    # ------------------------------------------------------------------
    # Current run accessors

    @property
    def current(self) -> GenerationRun:
        return self._current

    @property
    def state(self) -> RunState:
        return self._current.state

    @property
    def transcript(self) -> List[str]:
        return list(self._current.transcript)

    @property
    def interactions(self) -> List[AIInteraction]:
        return list(self._current.interactions)

    @property
    def document(self) -> Optional[Document]:
        return self._current.document

    @property
    def files(self) -> List[FileContent]:
        return list(self._current.files)

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            state=self.state,
            transcript=self.transcript,
            interactions=self.interactions,
            document=self.document,
        )

    def reset(self) -> None:
        """Forget the last run; any run still in flight becomes stale."""
        self._generation += 1
        self._current = GenerationRun(run_id=self._generation)

    # ------------------------------------------------------------------
    # Pipeline

    async def run(
        self,
        selection: Sequence[SelectedFile],
        goal_prompt: str | None = None,
    ) -> Document:
        if not selection:
            self._notify(
                "error",
                "No files selected",
                "Please select at least one file to generate documentation.",
            )
            raise NoFilesSelected("Please select at least one file to generate documentation.")
        if not getattr(self._llm, "has_credentials", True):
            self._notify(
                "error",
                "Missing API Key",
                "Please enter your Gemini API key in the settings.",
            )
            raise MissingApiKey("Please enter your Gemini API key in the settings.")

        self.reset()
        run = self._current
        self.logger.info("Starting generation run %d for %d file(s)", run.run_id, len(selection))

        try:
            files = await self._fetch_contents(run, selection)
            if not files:
                raise NoContentFetched(
                    "Could not fetch content for any of the selected files. Check logs for details."
                )
            summaries = await self._summarize(run, files)
            if len(summaries) != len(files):
                raise GenerationFailed(
                    f"Expected {len(files)} summaries but received {len(summaries)}."
                )
            document = await self._synthesize(run, files, summaries, goal_prompt)
        except RunSuperseded:
            self.logger.debug("Generation run %d was superseded; discarding results", run.run_id)
            raise
        except DocSynthError as exc:
            self._fail(run, exc)
            raise
        except Exception as exc:
            self.logger.exception("Unexpected error in generation run %d", run.run_id)
            failure = GenerationFailed(str(exc) or exc.__class__.__name__)
            self._fail(run, failure)
            raise failure from exc

        run.document = document
        run.state = RunState.DONE
        self._log(run, "Step 2: Documentation generated successfully!")
        self.logger.info("Generation run %d finished", run.run_id)
        self._notify("info", "Success!", "Documentation generated successfully.")
        return document

    async def _fetch_contents(
        self, run: GenerationRun, selection: Sequence[SelectedFile]
    ) -> List[FileContent]:
        run.state = RunState.FETCHING_CONTENT
        self._log(run, "Step 1: Fetching content for selected files...")

        for selected in selection:
            display_path = f"{selected.repository}/{selected.path}"
            cache_key = CacheKey.file_content(selected.repository, selected.path, selected.sha)
            cached = _cached_content(self._cache.get(cache_key))
            if cached is not None:
                content, size = cached
                run.files.append(
                    FileContent(selected.repository, selected.path, content, size, from_cache=True)
                )
                self._log(run, f"  [CACHE] Using cached content for {display_path}.")
                continue

            self._log(run, f"  [API] Fetching {display_path}...")
            try:
                await self._sleep(self._content_throttle)
                self._ensure_current(run)
                content = await self._client.read_file(selected.repository, selected.path)
                self._ensure_current(run)
            except RunSuperseded:
                raise
            except DocSynthError as exc:
                self._log(run, f"  [ERROR] Failed to fetch {display_path}: {exc}")
                self.logger.warning("Failed to fetch %s: %s", display_path, exc)
                self._notify("error", f"Failed to fetch {selected.path}", str(exc))
                continue

            size = len(content.encode("utf-8"))
            self._cache.set(cache_key, {"content": content, "size": size})
            run.files.append(FileContent(selected.repository, selected.path, content, size))

        self._log(run, "Step 1: Finished fetching file contents.")
        return list(run.files)

    async def _summarize(
        self, run: GenerationRun, files: Sequence[FileContent]
    ) -> List[FileSummary]:
        run.state = RunState.SUMMARIZING
        self._log(run, "Step 2: Starting documentation generation with AI...")
        self._log(run, f"  [AI] Summarizing {len(files)} file(s)...")

        for file in files:
            self._log(run, f"  Summarizing file: {file.display_path}")
            await self._sleep(self._ai_throttle)
            self._ensure_current(run)
            prompt = self.prompt_builder.build_summary_prompt(file)
            response = await self._call_llm(run, prompt)
            summary = response.get(SUMMARY_FIELD)
            if not isinstance(summary, str):
                raise ResponseParseError(
                    f"The AI response for {file.display_path} did not include a summary."
                )
            run.summaries.append(FileSummary(path=file.display_path, summary=summary))
        return list(run.summaries)

    async def _synthesize(
        self,
        run: GenerationRun,
        files: Sequence[FileContent],
        summaries: Sequence[FileSummary],
        goal_prompt: str | None,
    ) -> Document:
        run.state = RunState.SYNTHESIZING
        self._log(run, "  [AI] Synthesizing final documentation...")
        prompt = self.prompt_builder.build_synthesis_prompt(summaries, goal_prompt)
        response = await self._call_llm(run, prompt)
        documentation = response.get(DOCUMENTATION_FIELD)
        if not isinstance(documentation, str) or not documentation.strip():
            raise EmptyDocument("The generated documentation is empty.")
        return Document(text=documentation, source_urls=_source_urls(files))

    async def _call_llm(self, run: GenerationRun, prompt: str) -> Dict[str, Any]:
        try:
            response = await self._llm.generate_structured(prompt)
        except ProviderRequestFailed as exc:
            self._ensure_current(run)
            raise GenerationFailed(exc.message or str(exc)) from exc
        self._ensure_current(run)
        run.interactions.append(AIInteraction(request=prompt, response=response))
        return response

    # ------------------------------------------------------------------
    # Internal helpers

    def _ensure_current(self, run: GenerationRun) -> None:
        if run.run_id != self._generation:
            raise RunSuperseded(f"Generation run {run.run_id} was superseded")

    def _fail(self, run: GenerationRun, exc: DocSynthError) -> None:
        run.state = RunState.FAILED
        run.error = exc
        run.document = None
        self._log(run, f"  [ERROR] {exc}")
        self.logger.error("Generation run %d failed: %s", run.run_id, exc)
        if run.run_id != self._generation:
            return
        if isinstance(exc, NoContentFetched):
            self._notify("error", "Failed to fetch content", str(exc))
        else:
            self._notify(
                "error",
                "Uh oh! Something went wrong.",
                f"Failed to generate documentation. {exc}",
            )

    def _log(self, run: GenerationRun, message: str) -> None:
        stamp = self._clock().strftime("%H:%M:%S")
        run.transcript.append(f"[{stamp}] {message}")
        self.logger.debug(message.strip())

    def _notify(self, level: str, title: str, description: str) -> None:
        if self._notifier is not None:
            self._notifier(Notification(level=level, title=title, description=description))


def _cached_content(value: Any) -> Optional[tuple[str, int]]:
    if not isinstance(value, dict):
        return None
    content = value.get("content")
    if not isinstance(content, str) or not content:
        return None
    size = value.get("size")
    if not isinstance(size, int) or isinstance(size, bool):
        size = len(content.encode("utf-8"))
    return content, size


def _source_urls(files: Sequence[FileContent]) -> tuple[str, ...]:
    seen: List[RepositoryId] = []
    for file in files:
        if file.repository not in seen:
            seen.append(file.repository)
    return tuple(repository.url for repository in seen)


__all__ = ["GenerationPipeline", "GenerationRun", "StructuredGenerator"]
