"""Shared constants for per-file and synthesis prompting."""

from __future__ import annotations

DEFAULT_GOAL_PROMPT = (
    "Please provide a high-level overview of the project, including its purpose and key "
    "features. Then, for each file, describe its role and functionality. Finally, detail "
    "the relationships and interactions between the different files and components."
)

CONFIG_INSTRUCTION = (
    "This appears to be a config or metadata file. Provide a brief, one-sentence "
    "description of its purpose."
)

SOURCE_INSTRUCTION = (
    "Provide a concise summary covering the file's primary purpose, its key "
    "functions/classes/components, and its role in the project."
)

SUMMARY_FIELD = "summary"
DOCUMENTATION_FIELD = "documentation"


__all__ = [
    "CONFIG_INSTRUCTION",
    "DEFAULT_GOAL_PROMPT",
    "DOCUMENTATION_FIELD",
    "SOURCE_INSTRUCTION",
    "SUMMARY_FIELD",
]
