"""Conflict-relevance classification and scoring.

Classifies extracted entities as conflict-relevant using fixed lexicons,
assigns each a priority, and aggregates an article-level relevance score.
"""

import logging
import re
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field

from conflictradar.models import EntityExtractionResult, EntityType, ExtractedEntity

logger = logging.getLogger(__name__)

# Organization names mentioning any of these are conflict-relevant
MILITARY_SECURITY_TERMS: set[str] = {
    "military",
    "army",
    "nato",
    "un",
    "security council",
    "pentagon",
    "ministry of defense",
}

# Person spans carrying any of these titles are conflict-relevant
LEADERSHIP_TITLES: set[str] = {
    "president",
    "minister",
    "general",
    "commander",
}

# Known conflict and tension areas (countries, regions, cities)
CONFLICT_ZONES: set[str] = {
    "ukraine",
    "russia",
    "syria",
    "afghanistan",
    "iraq",
    "gaza",
    "israel",
    "palestine",
    "kashmir",
    "taiwan",
    "south china sea",
    "crimea",
    "donetsk",
    "donbass",
    "lebanon",
    "yemen",
    "somalia",
    "sudan",
    "myanmar",
}

# Human actors outweigh institutions, institutions outweigh places
TYPE_PRIORITY: dict[EntityType, int] = {
    EntityType.PERSON: 3,
    EntityType.ORGANIZATION: 2,
    EntityType.LOCATION: 1,
    EntityType.OTHER: 0,
}

# Terms this short only count as whole words ("UN" but not "Fund")
_WHOLE_WORD_MAX_LEN = 2

HIGH_PRIORITY_THRESHOLD = 2


@lru_cache(maxsize=64)
def _word_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(term)}\b")


def contains_term(text: str, term: str) -> bool:
    """Case-insensitive lexicon match against already-lowercased text.

    Terms of two characters or fewer must match a whole word, so "un"
    does not hit "fund" or "unrest" the way a plain substring test would.
    """
    if len(term) <= _WHOLE_WORD_MAX_LEN:
        return _word_pattern(term).search(text) is not None
    return term in text


def _matches_any(text: str, lexicon: set[str]) -> bool:
    lowered = text.lower()
    return any(contains_term(lowered, term) for term in lexicon)


def is_conflict_zone_name(text: str) -> bool:
    """True if a place name mentions a known conflict zone."""
    return _matches_any(text, CONFLICT_ZONES)


def is_conflict_relevant(text: str, entity_type: EntityType) -> bool:
    """Classify one entity by its type-specific lexicon."""
    if entity_type == EntityType.ORGANIZATION:
        return _matches_any(text, MILITARY_SECURITY_TERMS)
    if entity_type == EntityType.PERSON:
        return _matches_any(text, LEADERSHIP_TITLES)
    if entity_type == EntityType.LOCATION:
        return is_conflict_zone_name(text)
    return False


def conflict_priority(text: str, entity_type: EntityType) -> int:
    """Priority of an entity; 0 when it is not conflict-relevant."""
    if not is_conflict_relevant(text, entity_type):
        return 0
    return TYPE_PRIORITY[entity_type]


class RelevanceAssessment(BaseModel):
    """Article-level conflict relevance."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    total_entities: int = 0
    relevant_entities: int = 0
    average_priority: float = 0.0
    has_high_priority_conflict_entities: bool = False

    @classmethod
    def none(cls) -> "RelevanceAssessment":
        return cls(score=0.0)


class ConflictRelevanceScorer:
    """Derives per-entity relevance and the article-level score."""

    def classify(self, entity: ExtractedEntity) -> ExtractedEntity:
        """Return a copy of the entity with relevance and priority filled in."""
        relevant = is_conflict_relevant(entity.text, entity.type)
        priority = TYPE_PRIORITY[entity.type] if relevant else 0
        return entity.model_copy(update={"conflict_relevant": relevant, "priority": priority})

    def annotate(self, result: EntityExtractionResult) -> EntityExtractionResult:
        """Classify every entity of an extraction result."""
        if not result.entities:
            return result
        classified = tuple(self.classify(e) for e in result.entities)
        return result.model_copy(update={"entities": classified})

    def assess(self, result: EntityExtractionResult) -> RelevanceAssessment:
        """Aggregate relevance for an annotated extraction result.

        score = relevant / total + 0.1 * mean(priority), capped at 1.0.
        """
        entities = result.entities
        if not entities:
            return RelevanceAssessment.none()

        relevant = [e for e in entities if e.conflict_relevant]
        average_priority = sum(e.priority for e in entities) / len(entities)
        score = min(len(relevant) / len(entities) + 0.1 * average_priority, 1.0)

        return RelevanceAssessment(
            score=score,
            total_entities=len(entities),
            relevant_entities=len(relevant),
            average_priority=average_priority,
            has_high_priority_conflict_entities=any(
                e.priority >= HIGH_PRIORITY_THRESHOLD for e in relevant
            ),
        )

    def score(self, result: EntityExtractionResult) -> float:
        return self.assess(result).score


__all__ = [
    "MILITARY_SECURITY_TERMS",
    "LEADERSHIP_TITLES",
    "CONFLICT_ZONES",
    "TYPE_PRIORITY",
    "RelevanceAssessment",
    "ConflictRelevanceScorer",
    "contains_term",
    "conflict_priority",
    "is_conflict_relevant",
    "is_conflict_zone_name",
]
