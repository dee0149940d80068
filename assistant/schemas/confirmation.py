from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ClassifierVerdict(BaseModel):
    verdict: Literal["DUPLICATE", "UNIQUE"]
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    matched_label: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.verdict == "DUPLICATE"

    @property
    def confidence_percent(self) -> int:
        return round(self.confidence * 100)


class Candidate(BaseModel):
    """An existing record offered to the user as a possible match."""

    id: str
    label: str
    fields: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class PendingConfirmation(BaseModel):
    kind: Literal["duplicate_lead", "duplicate_transaction"]
    proposed_entity: dict[str, Any]
    verdict: ClassifierVerdict
    candidates: list[Candidate] = Field(default_factory=list, max_length=3)
    created_at: int  # epoch milliseconds
