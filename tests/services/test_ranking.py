from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from progress_engine.core.errors import ConfigError
from progress_engine.models.catalog import ContentCatalog
from progress_engine.models.ranking import Candidate, UserContext
from progress_engine.services.definitions import EngineConfig
from progress_engine.services.ranking import adjust_ranking, compile_condition, compile_rule

BEGINNER = UserContext(user_id="u-1", persona="new-developer")


def _doc(doc_id: str, score: float, depth: str, topic_id: str | None = None, **fields):
    return Candidate(id=doc_id, score=score, topic_id=topic_id, fields={"depth": depth, **fields})


def test_surface_boost_outranks_higher_base_score(engine_config: EngineConfig) -> None:
    mid = _doc("mid", 12, "mid-depth")
    surface = _doc("surface", 10, "surface")

    ranked = adjust_ranking(engine_config.ranking_rules, BEGINNER, [mid, surface])

    assert [r.candidate.id for r in ranked] == ["surface", "mid"]
    assert ranked[0].adjusted_score == 14
    assert ranked[0].applied_rules == ("boost_surface_for_beginners",)
    assert ranked[1].adjusted_score == 12
    assert ranked[1].applied_rules == ()


def test_other_persona_gets_no_beginner_boost(engine_config: EngineConfig) -> None:
    lead = UserContext(user_id="u-1", persona="tech-lead")
    ranked = adjust_ranking(
        engine_config.ranking_rules, lead, [_doc("mid", 12, "mid-depth"), _doc("s", 10, "surface")]
    )
    assert [r.candidate.id for r in ranked] == ["mid", "s"]


def test_completed_topics_are_buried(engine_config: EngineConfig) -> None:
    ctx = UserContext(user_id="u-1", completed_topics=frozenset({"t1"}))
    ranked = adjust_ranking(
        engine_config.ranking_rules,
        ctx,
        [
            _doc("done", 10, "mid-depth", topic_id="t1"),
            _doc("new", 8, "mid-depth", topic_id="api-design"),
        ],
    )
    assert [r.candidate.id for r in ranked] == ["new", "done"]
    assert ranked[1].adjusted_score == 7
    assert ranked[1].applied_rules == ("bury_completed",)


def test_boost_and_bury_weights_add_up(engine_config: EngineConfig) -> None:
    ctx = UserContext(
        user_id="u-1",
        persona="new-developer",
        completed_topics=frozenset({"t1"}),
        bookmarked_topics=frozenset({"t1"}),
    )
    (ranked,) = adjust_ranking(engine_config.ranking_rules, ctx, [_doc("d", 10, "surface", "t1")])
    # +4 surface, +2 bookmarked, -3 completed
    assert ranked.adjusted_score == 13
    assert set(ranked.applied_rules) == {
        "boost_surface_for_beginners",
        "boost_bookmarked_topics",
        "bury_completed",
    }


def test_ties_keep_provider_order(engine_config: EngineConfig) -> None:
    docs = [_doc(f"d{i}", 5, "deep-water") for i in range(5)]
    ranked = adjust_ranking(engine_config.ranking_rules, BEGINNER, docs)
    assert [r.candidate.id for r in ranked] == ["d0", "d1", "d2", "d3", "d4"]


def test_ranking_is_deterministic(engine_config: EngineConfig) -> None:
    docs = [_doc("a", 3, "surface"), _doc("b", 7, "mid-depth"), _doc("c", 5, "surface")]
    first = adjust_ranking(engine_config.ranking_rules, BEGINNER, docs)
    second = adjust_ranking(engine_config.ranking_rules, BEGINNER, docs)
    assert first == second


def test_in_current_phase_rule(engine_config: EngineConfig) -> None:
    ctx = UserContext(user_id="u-1", current_phase="build")
    ranked = adjust_ranking(
        engine_config.ranking_rules,
        ctx,
        [
            _doc("ops", 4, "mid-depth", phase="operate"),
            _doc("build", 4, "mid-depth", phase="build"),
        ],
    )
    assert [r.candidate.id for r in ranked] == ["build", "ops"]
    assert ranked[0].applied_rules == ("boost_current_phase",)


def test_list_valued_fields_match_any_value(catalog: ContentCatalog) -> None:
    rule = compile_rule(rule_id="tagged", weight=2, catalog=catalog, facet_filter="tags:security")
    doc = Candidate(id="d", score=1, fields={"tags": ["basics", "security"]})
    (ranked,) = adjust_ranking([rule], UserContext(user_id="u-1"), [doc])
    assert ranked.adjusted_score == 3


def test_rule_hits_are_counted(engine_config: EngineConfig) -> None:
    labels = {"rule_id": "boost_surface_for_beginners"}
    before = REGISTRY.get_sample_value("ranking_rule_hits_total", labels) or 0.0
    adjust_ranking(engine_config.ranking_rules, BEGINNER, [_doc("s", 1, "surface")])
    after = REGISTRY.get_sample_value("ranking_rule_hits_total", labels) or 0.0
    assert after - before == 1


def test_negated_boolean_leaf(catalog: ContentCatalog) -> None:
    rule = compile_rule(
        rule_id="not-done", weight=1, catalog=catalog, condition={"completed": False}
    )
    ctx = UserContext(user_id="u-1", completed_topics=frozenset({"t1"}))
    ranked = adjust_ranking(
        [rule], ctx, [Candidate(id="a", score=0, topic_id="t1"), Candidate(id="b", score=0)]
    )
    assert [r.candidate.id for r in ranked] == ["b", "a"]


@pytest.mark.parametrize(
    "condition",
    [
        {"persona": "astronaut"},
        {"phase": "retirement"},
        {"filter": "colour:blue"},
        {"filter": "depth"},
        {"bookmarked": "yes"},
        {"mood": "happy"},
        {"or": []},
    ],
)
def test_invalid_conditions_rejected(catalog: ContentCatalog, condition) -> None:
    with pytest.raises(ConfigError):
        compile_condition(condition, catalog, source="boost-rules.json:x")


def test_rule_without_any_condition_rejected(catalog: ContentCatalog) -> None:
    with pytest.raises(ConfigError, match="no condition"):
        compile_rule(rule_id="empty", weight=1, catalog=catalog)
