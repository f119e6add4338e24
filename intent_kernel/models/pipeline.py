"""Interception Pipeline — requests, rejections and outcomes."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class ActionKind(str, Enum):
    SELECT_INTENT = "select_intent"
    RECORD_LESSON = "record_lesson"
    READ = "read"
    MUTATE = "mutate"
    OTHER = "other"                         # Neither read-like nor mutating; passes through


class PipelineStage(str, Enum):
    RECEIVED = "received"
    PRE_CHECKING = "pre_checking"
    BLOCKED = "blocked"
    EXECUTING = "executing"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BlockKind(str, Enum):
    NO_ACTIVE_INTENT = "NoActiveIntent"
    OUT_OF_SCOPE = "OutOfScope"
    STALE_RESOURCE = "StaleResource"
    INTENT_NOT_FOUND = "IntentNotFound"


class Rejection(BaseModel):
    """Structured, agent-consumable block. Never raised, always returned."""

    kind: BlockKind
    message: str                            # Human-readable
    remediation: str                        # What the agent should do before retrying
    details: dict = {}


class ActionRequest(BaseModel):
    """One attempted tool call from an agent."""

    name: str                               # e.g. "write_to_file", "read_file"
    params: dict = {}
    task_id: str
    intent_changed: bool = False            # Explicit intent-boundary signal
    revision_id: Optional[str] = None
    model_identifier: Optional[str] = None


class PreCheckResult(BaseModel):
    kind: ActionKind
    allowed: bool
    targets: List[str] = []                 # Canonical resource paths
    intent_id: Optional[str] = None
    rejection: Optional[Rejection] = None
    # Fingerprint each target had at check time (None = did not exist)
    expected_fingerprints: Dict[str, Optional[str]] = {}


class ActionOutcome(BaseModel):
    """Final state of one action through the pipeline."""

    action: str
    task_id: str
    kind: ActionKind
    stage: PipelineStage
    rejection: Optional[Rejection] = None
    message: Optional[str] = None
    result: Optional[dict] = None
    error: Optional[str] = None
    intent_id: Optional[str] = None
    ledger_entry_ids: List[str] = []

    @property
    def blocked(self) -> bool:
        return self.stage == PipelineStage.BLOCKED
