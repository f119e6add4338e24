"""
Mutation Ledger — append-only, intent-linked audit trail.

Behavioral Contract:
- Append-only. No entry is ever modified, rewritten or deleted.
- One JSON record per line, written with a single O_APPEND write so that
  concurrent appenders never interleave partial entries.
- Sequence position in the file is authoritative. Timestamps are kept
  non-decreasing within one process but may skew across writers.
- Queries re-read the whole log on every call; there is no index.
"""

import json
import logging
import os
import threading
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from intent_kernel.fingerprint.digest import Content, verify_fingerprint
from intent_kernel.models.ledger import (
    ContentRange,
    Contributor,
    LedgerEntry,
    MutationClass,
    RelatedRef,
)

logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    """The ledger could not be written; the mutation is not fully governed."""


class MutationLedger:
    """
    Append-only JSON Lines ledger.
    Prototype: flat file. The flat log is a constraint, not an optimization.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def append(
        self,
        resource: str,
        ranges: List[ContentRange],
        contributor: Contributor,
        mutation_class: MutationClass,
        intent_id: Optional[str] = None,
        revision_id: Optional[str] = None,
    ) -> str:
        """Append one entry and return its id. Raises PersistenceFailure."""
        related = [RelatedRef(type="intent", value=intent_id)] if intent_id else []

        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp
            entry = LedgerEntry(
                id=uuid4().hex,
                timestamp=now,
                revision_id=revision_id,
                resource=resource,
                ranges=ranges,
                contributor=contributor,
                related=related,
                mutation_class=mutation_class,
            )
            line = (entry.model_dump_json() + "\n").encode("utf-8")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
                try:
                    written = os.write(fd, line)
                finally:
                    os.close(fd)
            except OSError as e:
                logger.error("Ledger append to %s failed: %s", self.path, e)
                raise PersistenceFailure(f"Could not append to ledger {self.path}: {e}") from e
            if written != len(line):
                logger.error("Short ledger write to %s (%d of %d bytes)", self.path, written, len(line))
                raise PersistenceFailure(f"Short write to ledger {self.path}")
            self._last_timestamp = now

        digest = ranges[0].content_hash[:8] if ranges else "-"
        logger.info(
            "Logged %s for %s (intent=%s, hash=%s...)",
            mutation_class.value, resource, intent_id, digest,
        )
        return entry.id

    def iter_entries(self) -> Iterator[LedgerEntry]:
        """All entries in append order. Malformed or undecodable lines are skipped."""
        if not self.path.exists():
            return
        with self.path.open("rb") as f:
            for lineno, raw in enumerate(f, start=1):
                try:
                    line = raw.decode("utf-8").strip()
                    if not line:
                        continue
                    entry = LedgerEntry.model_validate_json(line)
                except (UnicodeDecodeError, ValidationError) as e:
                    logger.warning("Skipping malformed ledger line %d in %s: %s", lineno, self.path, e)
                    continue
                yield entry

    def query_by_resource(self, resource: str) -> Iterator[LedgerEntry]:
        return (e for e in self.iter_entries() if e.resource == resource)

    def query_by_intent(self, intent_id: str) -> Iterator[LedgerEntry]:
        return (e for e in self.iter_entries() if e.is_linked_to(intent_id))

    def get_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        return next((e for e in self.iter_entries() if e.id == entry_id), None)

    def count(self) -> int:
        return sum(1 for _ in self.iter_entries())

    def verify_entry(self, entry: LedgerEntry, content: Content) -> bool:
        """True when the content still matches a range fingerprint recorded in the entry."""
        return any(verify_fingerprint(content, r.content_hash) for r in entry.ranges)

    def summary(self) -> dict:
        by_class: Counter = Counter()
        by_resource: Counter = Counter()
        by_intent: Counter = Counter()
        total = 0
        for entry in self.iter_entries():
            total += 1
            by_class[entry.mutation_class.value] += 1
            by_resource[entry.resource] += 1
            by_intent[entry.intent_id or "(unlinked)"] += 1
        return {
            "total_entries": total,
            "mutation_class_counts": dict(by_class),
            "most_changed_resources": by_resource.most_common(10),
            "intent_counts": dict(by_intent),
        }

    def export(self) -> List[dict]:
        return [json.loads(e.model_dump_json()) for e in self.iter_entries()]
