"""Kernel configuration."""

from typing import List, Optional

from pydantic import BaseModel, Field

from intent_kernel.models.ledger import ContributorKind


class KernelConfig(BaseModel):
    """Configuration for the Interception Pipeline and its collaborators."""

    select_intent_action: str = "select_active_intent"
    record_lesson_action: str = "record_lesson"
    read_actions: List[str] = ["read_file"]
    mutating_actions: List[str] = [
        "write_to_file",
        "apply_diff",
        "edit",
        "search_and_replace",
        "search_replace",
        "edit_file",
        "apply_patch",
        "delete_file",
        "execute_command",
    ]
    path_params: List[str] = ["path", "file_path"]

    require_active_intent: bool = True      # False: allow mutations unlinked
    multi_target_policy: str = Field(default="skip", pattern="^(skip|decompose|block)$")
    track_reads: bool = True

    classifier: str = Field(default="line_delta", pattern="^(line_delta|surface)$")
    evolution_threshold: float = Field(default=0.2, ge=0.0, le=1.0)

    contributor_kind: ContributorKind = ContributorKind.AI
    model_identifier: Optional[str] = None

    intents_filename: str = "active_intents.yaml"
    ledger_path: str = ".orchestration/agent_trace.jsonl"
    lessons_filename: str = "CLAUDE.md"
