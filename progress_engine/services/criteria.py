"""Declarative unlock criteria for achievements and milestones.

Config files describe criteria as JSON predicates.  They are compiled ONCE,
at load time, into a closed set of immutable expression nodes:

  CountAtLeast(field, n)          a progress counter reaches n
  AllOf(tag, min_depth)           every catalog topic with the tag is done
                                  at min_depth or deeper
  PhaseCoverage(phases, pct, d)   each phase has >= pct% of its topics done
                                  at depth d or deeper
  StreakAtLeast(days)             longest streak reaches `days`
  PathCompleted(path_id)          the learning path is completed
  And(children) / Or(children)    short-circuit, left to right

Anything the compiler does not recognise (an unknown key, a tag no topic
carries, a phase or path the catalog lacks) raises ConfigError, so a bad
definition fails startup instead of quietly evaluating to False.

JSON grammar (explicit form):

  {"count_at_least": {"field": "topics_completed", "n": 1}}
  {"all_of": {"tag": "security", "min_depth": "mid-depth"}}
  {"phase_coverage": {"phases": ["orientation"], "threshold_percent": 100,
                      "min_depth": "surface"}}
  {"streak_at_least": {"days": 7}}
  {"path_completed": "new-developer"}
  {"and": [ ... ]}   {"or": [ ... ]}

Shorthand (the flat form used by the content team's achievement files):

  {"topics_completed": 1}                 -> CountAtLeast
  {"streak_days": 7}                      -> StreakAtLeast
  {"topics_completed": 5, "streak_days": 3}  -> And(...) in key order
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from progress_engine.core.errors import ConfigError, UnknownReference
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.event import DEPTH_LEVELS, DepthLevel
from progress_engine.models.progress import PathProgress, StreakData, TopicProgress

# ---------------------------------------------------------------------------
# Expression nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CountAtLeast:
    field: str
    n: int


@dataclass(frozen=True, slots=True)
class AllOf:
    tag: str
    min_depth: DepthLevel


@dataclass(frozen=True, slots=True)
class PhaseCoverage:
    phases: tuple[str, ...]
    threshold_percent: int
    min_depth: DepthLevel = "surface"


@dataclass(frozen=True, slots=True)
class StreakAtLeast:
    days: int


@dataclass(frozen=True, slots=True)
class PathCompleted:
    path_id: str


@dataclass(frozen=True, slots=True)
class And:
    children: tuple[CriteriaExpr, ...]


@dataclass(frozen=True, slots=True)
class Or:
    children: tuple[CriteriaExpr, ...]


CriteriaExpr = CountAtLeast | AllOf | PhaseCoverage | StreakAtLeast | PathCompleted | And | Or


@dataclass(frozen=True, slots=True)
class EvaluationContext:
    """Everything a criteria expression may look at, for one user."""

    catalog: ContentCatalog
    topics: Mapping[str, TopicProgress]
    paths: Mapping[str, PathProgress]
    streak: StreakData | None = None


# ---------------------------------------------------------------------------
# Count fields
# ---------------------------------------------------------------------------


def _topics_started(ctx: EvaluationContext) -> int:
    return sum(1 for t in ctx.topics.values() if t.status != "not_started")


def _topics_completed(ctx: EvaluationContext) -> int:
    return sum(1 for t in ctx.topics.values() if t.status == "completed")


def _depth_counter(depth: DepthLevel) -> Callable[[EvaluationContext], int]:
    def _count(ctx: EvaluationContext) -> int:
        return sum(1 for t in ctx.topics.values() if depth in t.depth_levels_completed)

    return _count


def _depth_levels_completed(ctx: EvaluationContext) -> int:
    return sum(len(t.depth_levels_completed) for t in ctx.topics.values())


def _topics_bookmarked(ctx: EvaluationContext) -> int:
    return sum(1 for t in ctx.topics.values() if t.bookmarked)


def _topics_rated(ctx: EvaluationContext) -> int:
    return sum(1 for t in ctx.topics.values() if t.rating is not None)


def _time_spent_minutes(ctx: EvaluationContext) -> int:
    return sum(t.time_spent_seconds for t in ctx.topics.values()) // 60


def _paths_started(ctx: EvaluationContext) -> int:
    return sum(1 for p in ctx.paths.values() if p.status != "not_started")


def _paths_completed(ctx: EvaluationContext) -> int:
    return sum(1 for p in ctx.paths.values() if p.status == "completed")


def _path_steps_completed(ctx: EvaluationContext) -> int:
    return sum(len(p.steps_completed) for p in ctx.paths.values())


def _current_streak(ctx: EvaluationContext) -> int:
    return ctx.streak.current if ctx.streak else 0


def _longest_streak(ctx: EvaluationContext) -> int:
    return ctx.streak.longest if ctx.streak else 0


COUNT_FIELDS: dict[str, Callable[[EvaluationContext], int]] = {
    "topics_started": _topics_started,
    "topics_completed": _topics_completed,
    "surface_topics_completed": _depth_counter("surface"),
    "mid_depth_topics_completed": _depth_counter("mid-depth"),
    "deep_water_topics_completed": _depth_counter("deep-water"),
    "depth_levels_completed": _depth_levels_completed,
    "topics_bookmarked": _topics_bookmarked,
    "topics_rated": _topics_rated,
    "time_spent_minutes": _time_spent_minutes,
    "paths_started": _paths_started,
    "paths_completed": _paths_completed,
    "path_steps_completed": _path_steps_completed,
    "current_streak": _current_streak,
    "longest_streak": _longest_streak,
}


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate(expr: CriteriaExpr, ctx: EvaluationContext) -> bool:
    """Pure, deterministic evaluation.  No I/O, no mutation."""
    if isinstance(expr, And):
        return all(evaluate(child, ctx) for child in expr.children)
    if isinstance(expr, Or):
        return any(evaluate(child, ctx) for child in expr.children)
    if isinstance(expr, CountAtLeast):
        return COUNT_FIELDS[expr.field](ctx) >= expr.n
    if isinstance(expr, AllOf):
        return all(
            _topic_done_at(ctx, topic.id, expr.min_depth)
            for topic in ctx.catalog.topics_with_tag(expr.tag)
        )
    if isinstance(expr, PhaseCoverage):
        return all(
            _phase_coverage_percent(ctx, phase, expr.min_depth) >= expr.threshold_percent
            for phase in expr.phases
        )
    if isinstance(expr, StreakAtLeast):
        return _longest_streak(ctx) >= expr.days
    if isinstance(expr, PathCompleted):
        path = ctx.paths.get(expr.path_id)
        return path is not None and path.status == "completed"
    raise TypeError(f"not a criteria expression: {expr!r}")


def _topic_done_at(ctx: EvaluationContext, topic_id: str, depth: DepthLevel) -> bool:
    progress = ctx.topics.get(topic_id)
    return progress is not None and progress.has_depth_at_least(depth)


def _phase_coverage_percent(
    ctx: EvaluationContext, phase: str, depth: DepthLevel
) -> float:
    topics = ctx.catalog.topics_in_phase(phase)
    if not topics:
        return 0.0
    done = sum(1 for t in topics if _topic_done_at(ctx, t.id, depth))
    return 100 * done / len(topics)


# ---------------------------------------------------------------------------
# Compilation (load time)
# ---------------------------------------------------------------------------

_SHORTHAND_STREAK = "streak_days"


def compile_criteria(
    raw: Any, catalog: ContentCatalog, *, source: str = "criteria"
) -> CriteriaExpr:
    """Compile a JSON predicate into a CriteriaExpr or raise ConfigError."""
    if not isinstance(raw, Mapping) or not raw:
        raise ConfigError(source, f"criteria must be a non-empty object (got {raw!r})")

    if len(raw) == 1:
        ((key, value),) = raw.items()
        return _compile_node(key, value, catalog, source)

    # Multi-key objects are only allowed in shorthand form: implicit And.
    children = []
    for key, value in raw.items():
        if key in ("and", "or"):
            raise ConfigError(source, f"'{key}' must be the only key in its object")
        children.append(_compile_node(key, value, catalog, source))
    return And(tuple(children))


def _compile_node(
    key: str, value: Any, catalog: ContentCatalog, source: str
) -> CriteriaExpr:
    if key in ("and", "or"):
        if not isinstance(value, list) or not value:
            raise ConfigError(source, f"'{key}' needs a non-empty list")
        children = tuple(compile_criteria(v, catalog, source=source) for v in value)
        return And(children) if key == "and" else Or(children)

    if key == "count_at_least":
        args = _require_object(value, key, source)
        field = args.get("field")
        if field not in COUNT_FIELDS:
            raise ConfigError(source, f"unknown count field {field!r}")
        return CountAtLeast(field, _require_int(args.get("n"), f"{key}.n", source))

    if key in COUNT_FIELDS:
        return CountAtLeast(key, _require_int(value, key, source))

    if key == "all_of":
        args = _require_object(value, key, source)
        tag = args.get("tag")
        if not isinstance(tag, str) or not catalog.has_tag(tag):
            raise _unknown(source, "tag", tag)
        return AllOf(tag, _require_depth(args.get("min_depth", "surface"), source))

    if key == "phase_coverage":
        args = _require_object(value, key, source)
        phases = args.get("phases")
        if isinstance(phases, str):
            phases = [phases]
        if not isinstance(phases, list) or not phases:
            raise ConfigError(source, "phase_coverage.phases needs a non-empty list")
        for phase in phases:
            if not catalog.has_phase(phase):
                raise _unknown(source, "phase", phase)
            if not catalog.topics_in_phase(phase):
                raise ConfigError(source, f"phase {phase!r} has no topics")
        threshold = _require_int(
            args.get("threshold_percent"), f"{key}.threshold_percent", source
        )
        if threshold > 100:
            raise ConfigError(source, "threshold_percent must be within [0, 100]")
        return PhaseCoverage(
            tuple(phases),
            threshold,
            _require_depth(args.get("min_depth", "surface"), source),
        )

    if key == "streak_at_least":
        args = _require_object(value, key, source)
        return StreakAtLeast(_require_int(args.get("days"), f"{key}.days", source))

    if key == _SHORTHAND_STREAK:
        return StreakAtLeast(_require_int(value, key, source))

    if key == "path_completed":
        if not isinstance(value, str) or not catalog.has_path(value):
            raise _unknown(source, "path", value)
        return PathCompleted(value)

    raise ConfigError(source, f"unknown criteria key {key!r}")


def _unknown(source: str, kind: str, value: Any) -> ConfigError:
    error = ConfigError(source, f"unknown {kind} {value!r}")
    error.__cause__ = UnknownReference(kind, f"{value!r} is not in the content catalog")
    return error


def _require_object(value: Any, key: str, source: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(source, f"'{key}' needs an object argument")
    return value


def _require_int(value: Any, name: str, source: str) -> int:
    # bool is an int subclass; `true` in JSON is not a count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(source, f"{name} must be a non-negative integer (got {value!r})")
    return value


def _require_depth(value: Any, source: str) -> DepthLevel:
    if value not in DEPTH_LEVELS:
        raise ConfigError(
            source, f"min_depth must be one of {', '.join(DEPTH_LEVELS)} (got {value!r})"
        )
    return value
