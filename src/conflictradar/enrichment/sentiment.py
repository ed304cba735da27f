"""Rule-based sentiment signal.

Keyword counts and conflict flags push an article's sentiment negative.
This is a coarse triage signal, not a language model.
"""

import logging

from conflictradar.enrichment.relevance import RelevanceAssessment
from conflictradar.models import NewsIngestedEvent, SentimentResult

logger = logging.getLogger(__name__)

PER_KEYWORD_PENALTY = -0.3
MAX_COUNTED_KEYWORDS = 3
HIGH_PRIORITY_PENALTY = -0.2
CRITICAL_PENALTY = -0.3


class SentimentAnalyzer:
    def analyze(self, event: NewsIngestedEvent, assessment: RelevanceAssessment) -> SentimentResult:
        keywords = {k.lower() for k in event.keywords}

        overall = PER_KEYWORD_PENALTY * min(len(keywords), MAX_COUNTED_KEYWORDS)
        if assessment.has_high_priority_conflict_entities:
            overall += HIGH_PRIORITY_PENALTY
        if event.is_critical:
            overall += CRITICAL_PENALTY
        overall = max(-1.0, min(1.0, overall))

        if "violence" in keywords:
            violence = -0.8
        else:
            violence = overall if overall < -0.5 else 0.0
        diplomacy = 0.3 if "diplomacy" in keywords else max(overall, 0.0)
        economy = -0.2 if "economy" in keywords else overall * 0.3

        logger.debug(
            f"Sentiment for {event.article_id}: overall={overall:.2f}, "
            f"keywords={len(keywords)}, critical={event.is_critical}"
        )
        return SentimentResult(
            overall=overall,
            violence=violence,
            diplomacy=diplomacy,
            economy=economy,
        )


__all__ = ["SentimentAnalyzer"]
