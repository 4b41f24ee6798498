from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from progress_engine.models.event import DEPTH_LEVELS, DepthLevel


@dataclass(frozen=True, slots=True)
class TopicMeta:
    id: str
    phase: str
    tags: frozenset[str] = frozenset()
    depths: tuple[DepthLevel, ...] = DEPTH_LEVELS


@dataclass(frozen=True, slots=True)
class PathMeta:
    id: str
    category: str  # personas|tracks|journeys
    steps: tuple[str, ...]

    @property
    def total_steps(self) -> int:
        return len(self.steps)


@dataclass(frozen=True, slots=True)
class PhaseMeta:
    id: str
    title: str = ""


class ContentCatalog:
    """Static content metadata: which topics, paths, phases, personas and
    search facets exist.  Read-only after construction; owned by the content
    collaborator and loaded alongside the achievement config."""

    def __init__(
        self,
        *,
        phases: Iterable[PhaseMeta] = (),
        topics: Iterable[TopicMeta] = (),
        paths: Iterable[PathMeta] = (),
        personas: Iterable[str] = (),
        facets: Iterable[str] = (),
    ) -> None:
        self._phases = {p.id: p for p in phases}
        self._topics = {t.id: t for t in topics}
        self._paths = {p.id: p for p in paths}
        self._personas = frozenset(personas)
        self._facets = frozenset(facets)

    def has_path(self, path_id: str) -> bool:
        return path_id in self._paths

    def has_phase(self, phase_id: str) -> bool:
        return phase_id in self._phases

    def has_persona(self, persona: str) -> bool:
        return persona in self._personas

    def has_facet(self, field: str) -> bool:
        return field in self._facets

    def has_tag(self, tag: str) -> bool:
        return any(tag in t.tags for t in self._topics.values())

    def topic(self, topic_id: str) -> TopicMeta | None:
        return self._topics.get(topic_id)

    def path(self, path_id: str) -> PathMeta | None:
        return self._paths.get(path_id)

    def topics_with_tag(self, tag: str) -> list[TopicMeta]:
        return [t for t in self._topics.values() if tag in t.tags]

    def topics_in_phase(self, phase_id: str) -> list[TopicMeta]:
        return [t for t in self._topics.values() if t.phase == phase_id]

    @property
    def topic_ids(self) -> frozenset[str]:
        return frozenset(self._topics)

    @property
    def phase_ids(self) -> frozenset[str]:
        return frozenset(self._phases)
