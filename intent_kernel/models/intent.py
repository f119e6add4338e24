"""Intent — the declared unit of business scope an agent works under."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class IntentStatus(str, Enum):
    DECLARED = "declared"
    ACTIVE = "active"
    COMPLETED = "completed"


class Intent(BaseModel):
    """
    A declared intent. Mutations are only governed once a task has selected one.

    The owned scope is fixed at declaration; widening it means declaring a new intent.
    """

    id: str
    name: str
    owned_scope: Tuple[str, ...] = Field(default=(), frozen=True)   # Glob patterns, e.g. "src/auth/**"
    constraints: List[str] = []             # Advisory, not enforced beyond scope
    acceptance_criteria: List[str] = []
    description: Optional[str] = None
    status: IntentStatus = IntentStatus.DECLARED

    @field_validator("constraints", "acceptance_criteria", mode="before")
    @classmethod
    def _text_to_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("owned_scope", mode="before")
    @classmethod
    def _scope_to_tuple(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)


class IntentSelection(BaseModel):
    """History record: intents are never deleted, only appended to history."""

    task_id: Optional[str] = None
    intent_id: str
    event: str                              # "selected" | "released" | "completed"
    at: datetime
