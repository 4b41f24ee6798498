"""Load, validate and hot-swap the declarative engine configuration.

CONTENT_DIR holds five JSON files, owned by the content team:

  catalog.json         phases, topics (phase, tags, depths), learning paths,
                       personas and search facets
  achievements.json    {"achievements": [definition, ...]}
  milestones.json      {"milestones": [definition, ...]}        (optional)
  boost-rules.json     {"rules": [rule, ...]}                   (optional)
  bury-rules.json      {"rules": [rule, ...]}                   (optional)

Loading is all-or-nothing.  Every criteria expression and ranking rule is
compiled against the catalog; the first problem raises ConfigError and
nothing is activated.  ConfigRegistry.reload() builds a complete new
EngineConfig before swapping it in, so a bad reload leaves the running
config untouched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from progress_engine.core.errors import ConfigError
from progress_engine.models.achievement import UnlockDefinition, UnlockKind
from progress_engine.models.catalog import ContentCatalog, PathMeta, PhaseMeta, TopicMeta
from progress_engine.models.event import DEPTH_LEVELS, DepthLevel
from progress_engine.models.ranking import RankingRule
from progress_engine.services.criteria import compile_criteria
from progress_engine.services.ranking import compile_rule

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.json"
ACHIEVEMENTS_FILE = "achievements.json"
MILESTONES_FILE = "milestones.json"
BOOST_RULES_FILE = "boost-rules.json"
BURY_RULES_FILE = "bury-rules.json"


# ---------------------------------------------------------------------------
# File schemas
# ---------------------------------------------------------------------------


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PhaseEntry(_Strict):
    id: str = Field(min_length=1)
    title: str = ""


class TopicEntry(_Strict):
    id: str = Field(min_length=1)
    phase: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    depths: list[DepthLevel] = Field(default_factory=lambda: list(DEPTH_LEVELS))


class PathEntry(_Strict):
    id: str = Field(min_length=1)
    category: str = "tracks"
    steps: list[str] = Field(min_length=1)


class CatalogFile(_Strict):
    phases: list[PhaseEntry]
    topics: list[TopicEntry]
    paths: list[PathEntry] = Field(default_factory=list)
    personas: list[str] = Field(default_factory=list)
    facets: list[str] = Field(default_factory=list)


class DefinitionEntry(_Strict):
    id: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    points: int = Field(default=0, ge=0)
    unlock_criteria: dict[str, Any] = Field(
        validation_alias=AliasChoices("unlock_criteria", "unlockCriteria")
    )


class AchievementsFile(_Strict):
    achievements: list[DefinitionEntry]


class MilestonesFile(_Strict):
    milestones: list[DefinitionEntry]


class RuleEntry(_Strict):
    id: str = Field(min_length=1)
    description: str = ""
    boost_by: int | None = None
    bury_by: int | None = None
    weight: int | None = None
    personas: list[str] | None = None
    filter: str | None = None
    condition: dict[str, Any] | None = None


class RulesFile(_Strict):
    rules: list[RuleEntry]


# ---------------------------------------------------------------------------
# Compiled config
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EngineConfig:
    catalog: ContentCatalog
    definitions: tuple[UnlockDefinition, ...]
    boost_rules: tuple[RankingRule, ...]
    bury_rules: tuple[RankingRule, ...]

    @property
    def ranking_rules(self) -> tuple[RankingRule, ...]:
        return self.boost_rules + self.bury_rules

    def definition(self, definition_id: str) -> UnlockDefinition | None:
        for d in self.definitions:
            if d.id == definition_id:
                return d
        return None


M = TypeVar("M", bound=BaseModel)


def _read(content_dir: Path, name: str, model: type[M]) -> M:
    path = content_dir / name
    if not path.is_file():
        raise ConfigError(name, f"missing from {content_dir}")
    return _parse(path, name, model)


def _read_optional(content_dir: Path, name: str, model: type[M]) -> M | None:
    path = content_dir / name
    if not path.is_file():
        return None
    return _parse(path, name, model)


def _parse(path: Path, name: str, model: type[M]) -> M:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(name, f"unreadable: {exc}") from exc
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first["loc"])
        raise ConfigError(name, f"{loc}: {first['msg']}") from None


def build_catalog(raw: CatalogFile, *, source: str = CATALOG_FILE) -> ContentCatalog:
    phase_ids = [p.id for p in raw.phases]
    _require_unique(phase_ids, "phase", source)
    _require_unique([t.id for t in raw.topics], "topic", source)
    _require_unique([p.id for p in raw.paths], "path", source)

    for topic in raw.topics:
        if topic.phase not in phase_ids:
            raise ConfigError(source, f"topic {topic.id!r} is in unknown phase {topic.phase!r}")
        missing = [d for d in DEPTH_LEVELS if d not in topic.depths]
        if missing:
            # status=completed needs every depth
            raise ConfigError(
                source, f"topic {topic.id!r} is missing depths {', '.join(missing)}"
            )

    return ContentCatalog(
        phases=(PhaseMeta(id=p.id, title=p.title) for p in raw.phases),
        topics=(
            TopicMeta(
                id=t.id,
                phase=t.phase,
                tags=frozenset(t.tags),
                depths=tuple(d for d in DEPTH_LEVELS if d in t.depths),
            )
            for t in raw.topics
        ),
        paths=(PathMeta(id=p.id, category=p.category, steps=tuple(p.steps)) for p in raw.paths),
        personas=raw.personas,
        facets=raw.facets,
    )


def _compile_definitions(
    entries: list[DefinitionEntry], kind: UnlockKind, catalog: ContentCatalog, source: str
) -> list[UnlockDefinition]:
    return [
        UnlockDefinition(
            id=entry.id,
            kind=kind,
            unlock_criteria=compile_criteria(
                entry.unlock_criteria, catalog, source=f"{source}:{entry.id}"
            ),
            points=entry.points,
            title=entry.title,
            description=entry.description,
        )
        for entry in entries
    ]


def _rule_weight(entry: RuleEntry, sign: int, source: str) -> int:
    given = [w for w in (entry.boost_by, entry.bury_by, entry.weight) if w is not None]
    if len(given) != 1:
        raise ConfigError(
            f"{source}:{entry.id}", "exactly one of boost_by, bury_by, weight is required"
        )
    if entry.weight is not None:
        weight = entry.weight
    else:
        # boost_by / bury_by are magnitudes; the file decides the sign
        weight = sign * abs(given[0])
    if weight == 0 or (weight > 0) != (sign > 0):
        kind = "boost" if sign > 0 else "bury"
        raise ConfigError(f"{source}:{entry.id}", f"{kind} weight has the wrong sign ({weight})")
    return weight


def _compile_rules(
    raw: RulesFile | None, sign: int, catalog: ContentCatalog, source: str
) -> list[RankingRule]:
    if raw is None:
        return []
    return [
        compile_rule(
            rule_id=entry.id,
            weight=_rule_weight(entry, sign, source),
            catalog=catalog,
            condition=entry.condition,
            personas=entry.personas,
            facet_filter=entry.filter,
            source=f"{source}:{entry.id}",
        )
        for entry in raw.rules
    ]


def load_engine_config(content_dir: Path) -> EngineConfig:
    """Read and compile every config file in `content_dir`, or raise ConfigError."""
    catalog = build_catalog(_read(content_dir, CATALOG_FILE, CatalogFile))

    achievements = _read(content_dir, ACHIEVEMENTS_FILE, AchievementsFile)
    milestones = _read_optional(content_dir, MILESTONES_FILE, MilestonesFile)

    definitions = _compile_definitions(
        achievements.achievements, "achievement", catalog, ACHIEVEMENTS_FILE
    )
    if milestones is not None:
        definitions += _compile_definitions(
            milestones.milestones, "milestone", catalog, MILESTONES_FILE
        )
    _require_unique([d.id for d in definitions], "achievement/milestone", ACHIEVEMENTS_FILE)

    boost = _compile_rules(
        _read_optional(content_dir, BOOST_RULES_FILE, RulesFile),
        1,
        catalog,
        BOOST_RULES_FILE,
    )
    bury = _compile_rules(
        _read_optional(content_dir, BURY_RULES_FILE, RulesFile),
        -1,
        catalog,
        BURY_RULES_FILE,
    )
    _require_unique([r.id for r in boost + bury], "ranking rule", BOOST_RULES_FILE)

    return EngineConfig(
        catalog=catalog,
        definitions=tuple(definitions),
        boost_rules=tuple(boost),
        bury_rules=tuple(bury),
    )


def _require_unique(ids: list[str], kind: str, source: str) -> None:
    seen: set[str] = set()
    for item in ids:
        if item in seen:
            raise ConfigError(source, f"duplicate {kind} id {item!r}")
        seen.add(item)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ConfigRegistry:
    """Holds the active EngineConfig.  Readers grab `current` once per unit
    of work; a reload swaps the reference, it never mutates a live config."""

    def __init__(self, content_dir: Path) -> None:
        self._content_dir = content_dir
        self._current: EngineConfig | None = None

    @property
    def loaded(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> EngineConfig:
        if self._current is None:
            raise RuntimeError("engine config has not been loaded")
        return self._current

    def load(self) -> EngineConfig:
        config = load_engine_config(self._content_dir)
        self._current = config
        logger.info(
            "Engine config loaded: %d topics, %d definitions, %d ranking rules",
            len(config.catalog.topic_ids),
            len(config.definitions),
            len(config.ranking_rules),
        )
        return config

    def reload(self) -> EngineConfig:
        try:
            return self.load()
        except ConfigError as exc:
            logger.warning("Config reload rejected, keeping previous config: %s", exc)
            raise

    def set(self, config: EngineConfig) -> None:
        self._current = config
