"""Boost/bury ranking adjustment for search results.

The external search provider returns candidates with a base score.  Each
rule carries a signed weight and a condition over (UserContext, Candidate);
a candidate's adjusted score is its base score plus the weights of every
rule whose condition holds.  Results are re-sorted by adjusted score,
descending, with a STABLE sort: equal scores keep the provider's order, so
the same query + context + candidates always yields the same list.

Rule conditions reuse the And/Or nodes from criteria.py and add leaf nodes
that look at the user context and the document:

  {"persona": ["new-developer"]}      user persona is one of these
  {"phase": "build"}                  user's current phase is one of these
  {"filter": "depth:surface"}         document facet equals value
  {"bookmarked": true}                user bookmarked the document's topic
  {"completed": true}                 user completed the document's topic
  {"in_current_phase": true}          document phase == user's current phase

`false` negates the three boolean leaves.  Several keys in one object are
combined with And.  Personas and filter fields are checked against the
catalog at load time.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from progress_engine.core.errors import ConfigError
from progress_engine.core.metrics import RANKING_RULE_HITS
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.ranking import (
    Candidate,
    RankedCandidate,
    RankingRule,
    UserContext,
)
from progress_engine.services.criteria import And, Or


@dataclass(frozen=True, slots=True)
class PersonaIn:
    personas: frozenset[str]


@dataclass(frozen=True, slots=True)
class PhaseIn:
    phases: frozenset[str]


@dataclass(frozen=True, slots=True)
class FieldEquals:
    field: str
    value: str


@dataclass(frozen=True, slots=True)
class IsBookmarked:
    expected: bool = True


@dataclass(frozen=True, slots=True)
class IsCompleted:
    expected: bool = True


@dataclass(frozen=True, slots=True)
class InCurrentPhase:
    expected: bool = True


RuleExpr = (
    PersonaIn | PhaseIn | FieldEquals | IsBookmarked | IsCompleted | InCurrentPhase | And | Or
)


def matches(expr: RuleExpr, context: UserContext, candidate: Candidate) -> bool:
    if isinstance(expr, And):
        return all(matches(c, context, candidate) for c in expr.children)  # type: ignore[arg-type]
    if isinstance(expr, Or):
        return any(matches(c, context, candidate) for c in expr.children)  # type: ignore[arg-type]
    if isinstance(expr, PersonaIn):
        return context.persona in expr.personas
    if isinstance(expr, PhaseIn):
        return context.current_phase in expr.phases
    if isinstance(expr, FieldEquals):
        return expr.value in candidate.field_values(expr.field)
    if isinstance(expr, IsBookmarked):
        hit = candidate.topic_id is not None and candidate.topic_id in context.bookmarked_topics
        return hit is expr.expected
    if isinstance(expr, IsCompleted):
        hit = candidate.topic_id is not None and candidate.topic_id in context.completed_topics
        return hit is expr.expected
    if isinstance(expr, InCurrentPhase):
        hit = (
            context.current_phase is not None
            and context.current_phase in candidate.field_values("phase")
        )
        return hit is expr.expected
    raise TypeError(f"not a rule expression: {expr!r}")


def adjust_ranking(
    rules: Sequence[RankingRule],
    context: UserContext,
    candidates: Iterable[Candidate],
) -> list[RankedCandidate]:
    """Apply every rule to every candidate and return a stably re-sorted list."""
    ranked: list[RankedCandidate] = []
    for candidate in candidates:
        fired = tuple(rule for rule in rules if matches(rule.condition, context, candidate))
        for rule in fired:
            RANKING_RULE_HITS.labels(rule_id=rule.id).inc()
        ranked.append(
            RankedCandidate(
                candidate=candidate,
                adjusted_score=candidate.score + sum(rule.weight for rule in fired),
                applied_rules=tuple(rule.id for rule in fired),
            )
        )
    # sorted() is stable, and reverse=True keeps equal elements in input order
    return sorted(ranked, key=lambda r: r.adjusted_score, reverse=True)


# ---------------------------------------------------------------------------
# Compilation (load time)
# ---------------------------------------------------------------------------

_BOOLEAN_LEAVES = {
    "bookmarked": IsBookmarked,
    "completed": IsCompleted,
    "in_current_phase": InCurrentPhase,
}


def compile_rule(
    *,
    rule_id: str,
    weight: int,
    catalog: ContentCatalog,
    condition: Mapping[str, Any] | None = None,
    personas: Sequence[str] | None = None,
    facet_filter: str | None = None,
    source: str = "rules",
) -> RankingRule:
    """Build a RankingRule from its config fields.

    `personas` and `facet_filter` are the flat shorthand used in the rule files;
    they are And-ed in front of any explicit `condition`.
    """
    parts: list[RuleExpr] = []
    if personas:
        parts.append(_compile_node("persona", list(personas), catalog, source))
    if facet_filter:
        parts.append(_compile_node("filter", facet_filter, catalog, source))
    if condition:
        parts.append(compile_condition(condition, catalog, source=source))
    if not parts:
        raise ConfigError(source, f"rule {rule_id!r} has no condition")

    expr = parts[0] if len(parts) == 1 else And(tuple(parts))  # type: ignore[arg-type]
    return RankingRule(id=rule_id, condition=expr, weight=weight)


def compile_condition(
    raw: Any, catalog: ContentCatalog, *, source: str = "rules"
) -> RuleExpr:
    if not isinstance(raw, Mapping) or not raw:
        raise ConfigError(source, f"condition must be a non-empty object (got {raw!r})")
    nodes = [_compile_node(key, value, catalog, source) for key, value in raw.items()]
    if len(nodes) == 1:
        return nodes[0]
    if any(key in ("and", "or") for key in raw):
        raise ConfigError(source, "'and'/'or' must be the only key in its object")
    return And(tuple(nodes))  # type: ignore[arg-type]


def _compile_node(key: str, value: Any, catalog: ContentCatalog, source: str) -> RuleExpr:
    if key in ("and", "or"):
        if not isinstance(value, list) or not value:
            raise ConfigError(source, f"'{key}' needs a non-empty list")
        children = tuple(compile_condition(v, catalog, source=source) for v in value)
        return And(children) if key == "and" else Or(children)  # type: ignore[arg-type]

    if key == "persona":
        personas = [value] if isinstance(value, str) else value
        if not isinstance(personas, list) or not personas:
            raise ConfigError(source, "persona needs a name or a non-empty list")
        for persona in personas:
            if not catalog.has_persona(persona):
                raise ConfigError(source, f"unknown persona {persona!r}")
        return PersonaIn(frozenset(personas))

    if key == "phase":
        phases = [value] if isinstance(value, str) else value
        if not isinstance(phases, list) or not phases:
            raise ConfigError(source, "phase needs a name or a non-empty list")
        for phase in phases:
            if not catalog.has_phase(phase):
                raise ConfigError(source, f"unknown phase {phase!r}")
        return PhaseIn(frozenset(phases))

    if key == "filter":
        if not isinstance(value, str) or ":" not in value:
            raise ConfigError(source, f"filter must look like 'field:value' (got {value!r})")
        field, _, expected = value.partition(":")
        field, expected = field.strip(), expected.strip()
        if not catalog.has_facet(field):
            raise ConfigError(source, f"filter field {field!r} is not a search facet")
        if not expected:
            raise ConfigError(source, f"filter {value!r} has an empty value")
        return FieldEquals(field, expected)

    if key in _BOOLEAN_LEAVES:
        if not isinstance(value, bool):
            raise ConfigError(source, f"'{key}' must be true or false")
        return _BOOLEAN_LEAVES[key](value)

    raise ConfigError(source, f"unknown condition key {key!r}")
