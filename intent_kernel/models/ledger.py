"""Ledger Entry — the immutable audit record of one mutation."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class MutationClass(str, Enum):
    AST_REFACTOR = "AST_REFACTOR"           # Surface preserved, same intent
    INTENT_EVOLUTION = "INTENT_EVOLUTION"   # New file, new surface, or large delta
    DOC_UPDATE = "DOC_UPDATE"               # Documentation only (surface classifier)
    CONFIG_CHANGE = "CONFIG_CHANGE"         # Configuration only (surface classifier)


class ContributorKind(str, Enum):
    AI = "AI"
    HUMAN = "Human"


class ContentRange(BaseModel):
    """A changed line span and the fingerprint of its content."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    end_line: int
    content_hash: str


class Contributor(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_type: ContributorKind = ContributorKind.AI
    model_identifier: Optional[str] = None


class RelatedRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str                               # "intent" | "specification" | "requirement"
    value: str


class LedgerEntry(BaseModel):
    """
    One line of the mutation ledger. Never modified once appended.

    Sequence position in the log is authoritative; timestamps are only
    non-decreasing within a single writer process.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    revision_id: Optional[str] = None       # External VCS revision, when known
    resource: str
    ranges: List[ContentRange] = []
    contributor: Contributor = Contributor()
    related: List[RelatedRef] = []
    mutation_class: MutationClass

    @property
    def intent_id(self) -> Optional[str]:
        for ref in self.related:
            if ref.type == "intent":
                return ref.value
        return None

    def is_linked_to(self, intent_id: str) -> bool:
        return any(r.type == "intent" and r.value == intent_id for r in self.related)
