from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from progress_engine.services.ranking import RuleExpr


@dataclass(frozen=True, slots=True)
class Candidate:
    """One document returned by the external search provider.

    `fields` is opaque facet metadata (depth, phase, tags, personas, ...);
    `topic_id` links the document back to progress aggregates.
    """

    id: str
    score: float
    topic_id: str | None = None
    fields: Mapping[str, Any] = field(default_factory=dict)

    def field_values(self, name: str) -> tuple[str, ...]:
        if name == "topic":
            return (self.topic_id,) if self.topic_id else ()
        value = self.fields.get(name)
        if value is None:
            return ()
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(str(v) for v in value)
        return (str(value),)


@dataclass(frozen=True, slots=True)
class UserContext:
    user_id: str
    persona: str | None = None
    current_phase: str | None = None
    completed_topics: frozenset[str] = frozenset()
    bookmarked_topics: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class RankingRule:
    """A boost (positive weight) or bury (negative weight) rule."""

    id: str
    condition: RuleExpr
    weight: int


@dataclass(frozen=True, slots=True)
class RankedCandidate:
    candidate: Candidate
    adjusted_score: float
    applied_rules: tuple[str, ...] = ()
