"""
System prompts for remote execution and remote classification.
"""

from __future__ import annotations

from .types import ClassificationResult, TaskType

BASE_PROMPT = "You are a helpful personal assistant running on the user's computer. "

TASK_PROMPTS: dict[TaskType, str] = {
    TaskType.FILE_OPERATION: "Help the user with file operations. Provide clear, actionable instructions.",
    TaskType.SYSTEM_QUERY: "Provide system information and help with questions about the user's computer.",
    TaskType.APP_CONTROL: "Help control and interact with the user's applications.",
    TaskType.TEXT_PROCESSING: (
        "Help with text analysis, summarization and processing tasks. "
        "Work only with the text the user provides."
    ),
    TaskType.CALCULATION: "Solve the calculation and show the result plainly.",
    TaskType.WEB_QUERY: "Answer the question concisely and say when information may be out of date.",
    TaskType.AUTOMATION: "Help create and manage automated workflows. Spell out each step.",
    TaskType.SETTINGS: "Explain how to change the requested setting.",
    TaskType.HELP: "Explain what you can do and how to ask for it.",
}

DEFAULT_TASK_PROMPT = "Provide helpful assistance with the user's request."

CLASSIFY_SYSTEM_PROMPT = """You classify requests sent to a personal assistant.

Reply with a single JSON object and nothing else:
{"task_type": "<type>", "confidence": <0.0-1.0>, "complexity": "<complexity>", "parameters": {"<name>": "<value>"}}

task_type is one of: file_operation, system_query, app_control, text_processing, calculation, web_query, automation, settings, help, unknown.
complexity is one of: simple, moderate, complex, advanced.
parameters holds short string values the task needs (file names, app names, settings, numbers)."""


def build_system_prompt(classification: ClassificationResult) -> str:
    """System prompt for executing a classified task remotely."""
    return BASE_PROMPT + TASK_PROMPTS.get(classification.task_type, DEFAULT_TASK_PROMPT)


def build_classify_prompt(text: str, context: str | None = None) -> str:
    """User message asking the remote model to classify `text`."""
    if context:
        return f"Context:\n{context}\n\nRequest:\n{text}"
    return f"Request:\n{text}"


__all__ = [
    "BASE_PROMPT",
    "CLASSIFY_SYSTEM_PROMPT",
    "TASK_PROMPTS",
    "build_classify_prompt",
    "build_system_prompt",
]
