from __future__ import annotations

from datetime import date

import pytest

from progress_engine.core.errors import ConfigError, UnknownReference
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.progress import PathProgress, StreakData, TopicProgress
from progress_engine.services.criteria import (
    AllOf,
    And,
    CountAtLeast,
    EvaluationContext,
    PathCompleted,
    PhaseCoverage,
    StreakAtLeast,
    compile_criteria,
    evaluate,
)


def _topic(topic_id: str, *depths: str) -> TopicProgress:
    status = "completed" if len(depths) == 3 else ("in_progress" if depths else "not_started")
    return TopicProgress(
        user_id="u-1",
        topic_id=topic_id,
        status=status,
        depth_levels_completed=frozenset(depths),
        version=1,
    )


def _ctx(catalog: ContentCatalog, *topics: TopicProgress, **kwargs) -> EvaluationContext:
    return EvaluationContext(
        catalog=catalog,
        topics={t.topic_id: t for t in topics},
        paths=kwargs.get("paths", {}),
        streak=kwargs.get("streak"),
    )


# ---- compilation ----


def test_shorthand_compiles_to_count(catalog: ContentCatalog) -> None:
    assert compile_criteria({"topics_completed": 1}, catalog) == CountAtLeast(
        "topics_completed", 1
    )


def test_multi_key_shorthand_is_an_implicit_and(catalog: ContentCatalog) -> None:
    expr = compile_criteria({"topics_completed": 5, "streak_days": 3}, catalog)
    assert expr == And((CountAtLeast("topics_completed", 5), StreakAtLeast(3)))


def test_explicit_forms_compile(catalog: ContentCatalog) -> None:
    assert compile_criteria(
        {"all_of": {"tag": "security", "min_depth": "mid-depth"}}, catalog
    ) == AllOf("security", "mid-depth")
    assert compile_criteria(
        {"phase_coverage": {"phases": "orientation", "threshold_percent": 100}}, catalog
    ) == PhaseCoverage(("orientation",), 100, "surface")
    assert compile_criteria({"path_completed": "new-developer"}, catalog) == PathCompleted(
        "new-developer"
    )


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"topics_mastered": 1},
        {"count_at_least": {"field": "bogus", "n": 1}},
        {"topics_completed": -1},
        {"topics_completed": True},
        {"phase_coverage": {"phases": ["orientation"], "threshold_percent": 101}},
        {"all_of": {"tag": "security", "min_depth": "abyss"}},
        {"and": []},
        {"and": [{"topics_completed": 1}], "streak_days": 2},
    ],
)
def test_malformed_criteria_rejected(catalog: ContentCatalog, raw) -> None:
    with pytest.raises(ConfigError):
        compile_criteria(raw, catalog, source="achievements.json:x")


@pytest.mark.parametrize(
    "raw",
    [
        {"all_of": {"tag": "astrology"}},
        {"phase_coverage": {"phases": ["retirement"], "threshold_percent": 50}},
        {"path_completed": "no-such-path"},
    ],
)
def test_unknown_catalog_reference_rejected(catalog: ContentCatalog, raw) -> None:
    with pytest.raises(ConfigError) as exc_info:
        compile_criteria(raw, catalog, source="achievements.json:x")
    assert isinstance(exc_info.value.__cause__, UnknownReference)
    assert exc_info.value.source == "achievements.json:x"


# ---- evaluation ----


def test_first_step_needs_a_fully_completed_topic(catalog: ContentCatalog) -> None:
    expr = compile_criteria({"topics_completed": 1}, catalog)
    assert not evaluate(expr, _ctx(catalog, _topic("t1", "surface")))
    assert evaluate(expr, _ctx(catalog, _topic("t1", "surface", "mid-depth", "deep-water")))


def test_deep_water_counter(catalog: ContentCatalog) -> None:
    expr = compile_criteria({"deep_water_topics_completed": 1}, catalog)
    assert evaluate(expr, _ctx(catalog, _topic("threat-modeling", "deep-water")))
    assert not evaluate(expr, _ctx(catalog, _topic("threat-modeling", "surface")))


def test_all_of_tag_requires_every_tagged_topic(catalog: ContentCatalog) -> None:
    expr = AllOf("security", "mid-depth")
    security = [t.id for t in catalog.topics_with_tag("security")]
    almost = [_topic(t, "mid-depth") for t in security[:-1]]
    assert not evaluate(expr, _ctx(catalog, *almost))
    everything = almost + [_topic(security[-1], "deep-water")]
    assert evaluate(expr, _ctx(catalog, *everything))


def test_surface_completion_does_not_satisfy_mid_depth(catalog: ContentCatalog) -> None:
    expr = AllOf("orientation", "mid-depth")
    assert not evaluate(expr, _ctx(catalog, _topic("job-to-be-done", "surface")))


def test_phase_coverage_at_surface(catalog: ContentCatalog) -> None:
    expr = PhaseCoverage(("orientation",), 100, "surface")
    assert not evaluate(expr, _ctx(catalog))
    assert evaluate(expr, _ctx(catalog, _topic("job-to-be-done", "surface")))


def test_partial_phase_coverage_threshold(catalog: ContentCatalog) -> None:
    foundations = [t.id for t in catalog.topics_in_phase("foundations")]
    expr = PhaseCoverage(("foundations",), 50, "surface")
    one = _ctx(catalog, _topic(foundations[0], "surface"))
    assert not evaluate(expr, one)
    two = _ctx(catalog, *(_topic(t, "surface") for t in foundations[:2]))
    assert evaluate(expr, two)


def test_streak_uses_longest(catalog: ContentCatalog) -> None:
    streak = StreakData(user_id="u-1", current=1, longest=7, last_active_date=date(2026, 3, 1))
    assert evaluate(StreakAtLeast(7), _ctx(catalog, streak=streak))
    assert not evaluate(StreakAtLeast(8), _ctx(catalog, streak=streak))
    assert not evaluate(StreakAtLeast(1), _ctx(catalog))


def test_path_completed(catalog: ContentCatalog) -> None:
    done = PathProgress(
        user_id="u-1",
        path_id="new-developer",
        total_steps=4,
        status="completed",
        steps_completed=frozenset(range(4)),
    )
    expr = PathCompleted("new-developer")
    assert evaluate(expr, _ctx(catalog, paths={"new-developer": done}))
    assert not evaluate(expr, _ctx(catalog))


def test_evaluation_is_pure(catalog: ContentCatalog) -> None:
    expr = compile_criteria({"and": [{"topics_started": 1}, {"topics_bookmarked": 0}]}, catalog)
    ctx = _ctx(catalog, _topic("t1", "surface"))
    assert [evaluate(expr, ctx) for _ in range(3)] == [True, True, True]
