"""Per-article enrichment steps.

Entity grouping, conflict-relevance scoring, risk enhancement, sentiment
and geographic resolution.
"""

from conflictradar.enrichment.extractor import EntityExtractor, overall_confidence
from conflictradar.enrichment.geo import GeographicResolver, is_conflict_zone, match_confidence
from conflictradar.enrichment.grouper import EntityGrouper, group_entities
from conflictradar.enrichment.relevance import (
    ConflictRelevanceScorer,
    RelevanceAssessment,
    is_conflict_relevant,
)
from conflictradar.enrichment.risk import RiskEnhancer, is_high_priority
from conflictradar.enrichment.sentiment import SentimentAnalyzer

__all__ = [
    # Extraction
    "EntityExtractor",
    "EntityGrouper",
    "group_entities",
    "overall_confidence",
    # Scoring
    "ConflictRelevanceScorer",
    "RelevanceAssessment",
    "RiskEnhancer",
    "SentimentAnalyzer",
    "is_conflict_relevant",
    "is_high_priority",
    # Geography
    "GeographicResolver",
    "is_conflict_zone",
    "match_confidence",
]
