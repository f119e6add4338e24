"""
Intent Registry — which intents exist, which one each task is working under.

Behavioral Contract:
- Intents are loaded lazily from the first existing, parseable YAML document
  among an ordered list of candidate locations. Later candidates are never
  merged with earlier ones.
- Selecting an intent is the only way a task gains an active intent. A new
  selection replaces the task's previous one unconditionally.
- Active intent is held per task, so concurrent tasks never clobber each other.
- Intents are never removed; selections, releases and completions are
  appended to a history.
- Scope checks require an intent: no intent means "not in scope".
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from intent_kernel.models.intent import Intent, IntentSelection, IntentStatus
from intent_kernel.registry.scope import matches_scope

logger = logging.getLogger(__name__)


class ConfigUnavailable(Exception):
    """No intent declaration document could be located."""

    def __init__(self, searched: Sequence[Path]):
        self.searched = [str(p) for p in searched]
        super().__init__(
            "No intent configuration found. Searched: " + ", ".join(self.searched)
        )


class IntentNotFound(Exception):
    """The requested intent id does not name a selectable intent."""

    def __init__(self, intent_id: str, valid_ids: List[str], reason: str = "not found"):
        self.intent_id = intent_id
        self.valid_ids = valid_ids
        super().__init__(
            f'Intent "{intent_id}" {reason}. Available intents: {", ".join(valid_ids) or "(none)"}'
        )


def default_intent_sources(
    workspace_root: Union[str, Path],
    filename: str = "active_intents.yaml",
) -> List[Path]:
    """Candidate locations, probed in order. First existing and parseable wins."""
    root = Path(workspace_root)
    return [
        root / filename,
        root / ".orchestration" / filename,
        Path.home() / ".orchestration" / filename,
    ]


def parse_intents_document(text: str) -> List[Intent]:
    """
    Parse an intent declaration document.

    Expects a top-level `intents:` list (`active_intents:` is accepted too).
    Raises ValueError on anything that is not a well-formed declaration.
    """
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("intent document must be a mapping")
    raw = data.get("intents", data.get("active_intents"))
    if not isinstance(raw, list):
        raise ValueError("intent document has no 'intents' list")

    intents = []
    seen = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"intent entry is not a mapping: {item!r}")
        try:
            intent = Intent.model_validate(item)
        except ValidationError as e:
            raise ValueError(f"invalid intent entry {item.get('id')!r}: {e}") from e
        if intent.id in seen:
            raise ValueError(f"duplicate intent id {intent.id!r}")
        seen.add(intent.id)
        intents.append(intent)
    return intents


class IntentRegistry:
    """Loads declared intents and tracks each task's active intent."""

    def __init__(
        self,
        sources: Optional[Sequence[Union[str, Path]]] = None,
        intents: Optional[List[Intent]] = None,
    ):
        self._sources = [Path(s) for s in (sources or [])]
        self._intents: Optional[Dict[str, Intent]] = None
        self._active: Dict[str, str] = {}           # task_id -> intent_id
        self._history: List[IntentSelection] = []
        self._lock = threading.RLock()
        self.loaded_from: Optional[Path] = None
        if intents is not None:
            self._intents = self._index(intents)

    @staticmethod
    def _index(intents: List[Intent]) -> Dict[str, Intent]:
        return {i.id: i for i in intents}

    def _load(self) -> Dict[str, Intent]:
        for path in self._sources:
            if not path.is_file():
                continue
            try:
                intents = parse_intents_document(path.read_text(encoding="utf-8"))
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Skipping unparseable intent source %s: %s", path, e)
                continue
            self.loaded_from = path
            logger.info("Loaded %d intents from %s", len(intents), path)
            return self._index(intents)
        raise ConfigUnavailable(self._sources)

    def _ensure_loaded(self) -> Dict[str, Intent]:
        with self._lock:
            if self._intents is None:
                self._intents = self._load()
            return self._intents

    def reload(self) -> List[Intent]:
        """Re-read the sources. Active selections of vanished intents are dropped."""
        with self._lock:
            self._intents = self._load()
            for task_id, intent_id in list(self._active.items()):
                if intent_id not in self._intents:
                    del self._active[task_id]
            return list(self._intents.values())

    def list_intents(self) -> List[Intent]:
        return list(self._ensure_loaded().values())

    def get_intent(self, intent_id: str) -> Optional[Intent]:
        return self._ensure_loaded().get(intent_id)

    def select_intent(self, task_id: str, intent_id: str) -> Intent:
        """
        Make `intent_id` the task's active intent.

        Raises IntentNotFound (with the selectable ids) for unknown or
        completed intents. Re-selecting the current intent is a no-op.
        """
        with self._lock:
            intents = self._ensure_loaded()
            selectable = [i.id for i in intents.values() if i.status != IntentStatus.COMPLETED]
            intent = intents.get(intent_id)
            if intent is None:
                raise IntentNotFound(intent_id, selectable)
            if intent.status == IntentStatus.COMPLETED:
                raise IntentNotFound(intent_id, selectable, reason="is already completed")

            if self._active.get(task_id) == intent_id:
                return intent

            self._active[task_id] = intent_id
            intent.status = IntentStatus.ACTIVE
            self._record(task_id, intent_id, "selected")
            logger.info("Task %s selected intent %s (%s)", task_id, intent.id, intent.name)
            return intent

    def get_active_intent(self, task_id: str) -> Optional[Intent]:
        with self._lock:
            intent_id = self._active.get(task_id)
            if intent_id is None or self._intents is None:
                return None
            return self._intents.get(intent_id)

    def release(self, task_id: str) -> None:
        """Drop a task's active intent, e.g. when the task ends."""
        with self._lock:
            intent_id = self._active.pop(task_id, None)
            if intent_id is not None:
                self._record(task_id, intent_id, "released")

    def complete_intent(self, intent_id: str) -> Intent:
        """External workflow signal: the intent is done. Releases it from every task."""
        with self._lock:
            intents = self._ensure_loaded()
            intent = intents.get(intent_id)
            if intent is None:
                raise IntentNotFound(intent_id, list(intents))
            intent.status = IntentStatus.COMPLETED
            self._record(None, intent_id, "completed")
            for task_id, active_id in list(self._active.items()):
                if active_id == intent_id:
                    del self._active[task_id]
                    self._record(task_id, intent_id, "released")
            logger.info("Intent %s completed", intent_id)
            return intent

    def is_in_scope(self, intent: Optional[Intent], resource: str) -> bool:
        if intent is None:
            return False
        return matches_scope(resource, intent.owned_scope)

    def selection_history(self) -> List[IntentSelection]:
        with self._lock:
            return list(self._history)

    def _record(self, task_id: Optional[str], intent_id: str, event: str) -> None:
        self._history.append(IntentSelection(
            task_id=task_id,
            intent_id=intent_id,
            event=event,
            at=datetime.now(timezone.utc),
        ))
