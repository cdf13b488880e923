"""Builds map (per-file) and reduce (synthesis) prompts from Jinja2 templates."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..models import FileContent, FileSummary
from .classifier import FileCategory, classify_file
from .constants import CONFIG_INSTRUCTION, DEFAULT_GOAL_PROMPT, SOURCE_INSTRUCTION


class PromptBuilder:
    """Renders the summarization and synthesis prompts."""

    SUMMARY_TEMPLATE = "summary.j2"
    SYNTHESIS_TEMPLATE = "synthesis.j2"

    def __init__(self, templates_dir: Path | None = None) -> None:
        self.templates_dir = templates_dir or Path(__file__).with_name("templates")
        self._env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def build_summary_prompt(self, file: FileContent) -> str:
        category = classify_file(file.path)
        instruction = (
            CONFIG_INSTRUCTION if category is FileCategory.CONFIG else SOURCE_INSTRUCTION
        )
        template = self._env.get_template(self.SUMMARY_TEMPLATE)
        return template.render(
            path=file.display_path,
            content=file.content,
            instruction=instruction,
        )

    def build_synthesis_prompt(
        self,
        summaries: Iterable[FileSummary],
        goal_prompt: Optional[str] = None,
    ) -> str:
        goal = resolve_goal_prompt(goal_prompt)
        summaries_json = json.dumps(
            [summary.to_dict() for summary in summaries], indent=2, ensure_ascii=False
        )
        template = self._env.get_template(self.SYNTHESIS_TEMPLATE)
        return template.render(goal=goal, summaries_json=summaries_json)


def resolve_goal_prompt(goal_prompt: Optional[str]) -> str:
    if goal_prompt and goal_prompt.strip():
        return goal_prompt.strip()
    return DEFAULT_GOAL_PROMPT


__all__ = ["PromptBuilder", "resolve_goal_prompt"]
