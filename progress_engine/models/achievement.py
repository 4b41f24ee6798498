from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from progress_engine.services.criteria import CriteriaExpr

UnlockKind = Literal["achievement", "milestone"]


@dataclass(frozen=True, slots=True)
class UnlockDefinition:
    """Static, versioned achievement or milestone definition.

    Milestones are structurally identical to achievements; their criteria
    just tend to span phases and learning paths instead of single topics.
    """

    id: str
    kind: UnlockKind
    unlock_criteria: CriteriaExpr
    points: int = 0
    title: str = ""
    description: str = ""


@dataclass(frozen=True, slots=True)
class UnlockRecord:
    """Write-once marker that a user satisfied a definition's criteria.

    Once `unlocked` is True no field may change; this is the idempotency
    anchor for at-least-once event delivery.
    """

    user_id: str
    definition_id: str
    kind: UnlockKind
    unlocked: bool
    unlocked_at: datetime
    triggering_event_id: str
    points: int = 0


@dataclass(frozen=True, slots=True)
class UnlockNotification:
    user_id: str
    definition_id: str
    kind: UnlockKind
    points: int
    unlocked_at: datetime
    triggering_event_id: str

    @staticmethod
    def from_record(record: UnlockRecord) -> UnlockNotification:
        return UnlockNotification(
            user_id=record.user_id,
            definition_id=record.definition_id,
            kind=record.kind,
            points=record.points,
            unlocked_at=record.unlocked_at,
            triggering_event_id=record.triggering_event_id,
        )

    def to_payload(self) -> dict:
        return {
            "user_id": self.user_id,
            "achievement_id": self.definition_id,
            "kind": self.kind,
            "points": self.points,
            "unlocked_at": self.unlocked_at.isoformat(),
            "triggering_event_id": self.triggering_event_id,
        }
