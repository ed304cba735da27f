"""Risk-score enhancement.

Layers coarse boosts from entity analysis on top of the ingestion-time risk
score. No boost is negative, so the enhanced score never falls below the
original one, and the sum is capped at 1.0.
"""

import logging

from conflictradar.enrichment.relevance import RelevanceAssessment

logger = logging.getLogger(__name__)

RELEVANCE_WEIGHT = 0.3
HIGH_PRIORITY_BOOST = 0.2
PER_ENTITY_BOOST = 0.05
MAX_ENTITY_COUNT_BOOST = 0.15
ENTITY_COUNT_THRESHOLD = 2  # boost applies above this many relevant entities

HIGH_RISK_THRESHOLD = 0.7
HIGH_RELEVANCE_THRESHOLD = 0.6


def _clamp_unit(value: float) -> float:
    return max(0.0, min(value, 1.0))


def is_high_priority(enhanced_risk_score: float, conflict_relevance_score: float) -> bool:
    """An article is high priority iff risk > 0.7 or relevance > 0.6."""
    return (
        enhanced_risk_score > HIGH_RISK_THRESHOLD
        or conflict_relevance_score > HIGH_RELEVANCE_THRESHOLD
    )


class RiskEnhancer:
    """Combines the original risk score with relevance signals."""

    def entity_boost(self, assessment: RelevanceAssessment) -> float:
        boost = RELEVANCE_WEIGHT * assessment.score
        if assessment.has_high_priority_conflict_entities:
            boost += HIGH_PRIORITY_BOOST
        if assessment.relevant_entities > ENTITY_COUNT_THRESHOLD:
            boost += min(PER_ENTITY_BOOST * assessment.relevant_entities, MAX_ENTITY_COUNT_BOOST)
        return boost

    def enhance(
        self,
        original_risk_score: float,
        assessment: RelevanceAssessment,
        article_id: str | None = None,
    ) -> float:
        """Enhanced risk in [0, 1], never below the (clamped) original score."""
        base = _clamp_unit(original_risk_score)
        boost = self.entity_boost(assessment)
        enhanced = min(base + boost, 1.0)
        logger.debug(
            f"Enhanced risk for {article_id}: base={base:.2f} + boost={boost:.2f} = {enhanced:.2f}"
        )
        return enhanced


__all__ = ["RiskEnhancer", "is_high_priority"]
