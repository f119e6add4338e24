"""Intent Kernel data models."""

from intent_kernel.models.config import KernelConfig
from intent_kernel.models.intent import Intent, IntentSelection, IntentStatus
from intent_kernel.models.ledger import (
    ContentRange,
    Contributor,
    ContributorKind,
    LedgerEntry,
    MutationClass,
    RelatedRef,
)
from intent_kernel.models.pipeline import (
    ActionKind,
    ActionOutcome,
    ActionRequest,
    BlockKind,
    PipelineStage,
    PreCheckResult,
    Rejection,
)
from intent_kernel.models.tracking import (
    FreshnessReport,
    FreshnessStatus,
    TrackedObservation,
)

__all__ = [
    "ActionKind",
    "ActionOutcome",
    "ActionRequest",
    "BlockKind",
    "ContentRange",
    "Contributor",
    "ContributorKind",
    "FreshnessReport",
    "FreshnessStatus",
    "Intent",
    "IntentSelection",
    "IntentStatus",
    "KernelConfig",
    "LedgerEntry",
    "MutationClass",
    "PipelineStage",
    "PreCheckResult",
    "RelatedRef",
    "Rejection",
    "TrackedObservation",
]
