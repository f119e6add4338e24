"""
Lesson recording — a shared knowledge base for parallel agent sessions.

Lessons are appended under a "## Lessons Learned" section of a markdown
file in the workspace. The section is created when it does not exist yet.
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from intent_kernel.workspace.store import WorkspaceStore

logger = logging.getLogger(__name__)

LESSONS_SECTION = "## Lessons Learned"


class LessonCategory(str, Enum):
    FAILURE = "failure"
    SUCCESS = "success"
    ARCHITECTURE = "architecture"
    WORKFLOW = "workflow"
    GENERAL = "general"


def format_lesson(lesson: str, category: LessonCategory, task_id: str, timestamp: str) -> str:
    return (
        f"\n### {category.value.capitalize()} - {timestamp}\n\n"
        f"**Task:** {task_id}\n\n"
        f"{lesson.strip()}\n\n"
        f"---\n"
    )


def insert_lesson(existing: str, entry: str) -> str:
    """Place the entry at the end of the lessons section, creating it if needed."""
    if not existing:
        return f"# Project Knowledge Base\n\n{LESSONS_SECTION}\n{entry}"

    lines = existing.split("\n")
    start = next((i for i, line in enumerate(lines) if line.startswith(LESSONS_SECTION)), None)
    if start is None:
        return f"{existing.rstrip()}\n\n{LESSONS_SECTION}\n{entry}"

    end = start + 1
    while end < len(lines) and not lines[end].startswith("## "):
        end += 1
    lines[end:end] = entry.rstrip("\n").split("\n")
    return "\n".join(lines)


class LessonRecorder:
    """
    Appends lessons to markdown files inside the workspace.

    Read-modify-write of a lessons file is serialized, so concurrent tasks
    recording at the same time never drop each other's lessons.
    """

    def __init__(self, store: WorkspaceStore, filename: str = "CLAUDE.md"):
        self.store = store
        self.filename = filename
        self._lock = threading.Lock()

    def resolve(self, file_path: Optional[str] = None) -> str:
        """Canonical lessons file for a request; the configured file by default."""
        return self.store.canonicalize(file_path or self.filename)

    def is_default(self, resource: str) -> bool:
        return resource == self.resolve()

    def record(
        self,
        lesson: str,
        task_id: str,
        category: str = "general",
        file_path: Optional[str] = None,
    ) -> dict:
        if not lesson or not lesson.strip():
            raise ValueError("The lesson parameter is required")
        try:
            cat = LessonCategory(category)
        except ValueError:
            cat = LessonCategory.GENERAL

        resource = self.resolve(file_path)
        if PurePosixPath(resource).is_absolute():
            raise ValueError(f"Lessons file must be inside the workspace: {resource}")
        if PurePosixPath(resource).suffix.lower() != ".md":
            raise ValueError(f"Lessons can only be recorded to markdown files: {resource}")

        with self._lock:
            timestamp = datetime.now(timezone.utc).isoformat()
            existing = self.store.read_text(resource) or ""
            self.store.write_text(resource, insert_lesson(existing, format_lesson(lesson, cat, task_id, timestamp)))

        logger.info("Recorded %s lesson from task %s to %s", cat.value, task_id, resource)
        return {"path": resource, "category": cat.value, "timestamp": timestamp}
