"""Readiness probe for the enrichment service."""

import logging
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from conflictradar.enrichment.extractor import EntityExtractor
from conflictradar.enrichment.geo import GeographicResolver
from conflictradar.models import utc_now

logger = logging.getLogger(__name__)


class HealthReport(BaseModel):
    """UP iff the tagger is ready and the gazetteer answers."""

    status: Literal["UP", "DOWN"]
    tagger_ready: bool
    gazetteer_reachable: bool
    checked_at: datetime = Field(default_factory=utc_now)

    @property
    def is_up(self) -> bool:
        return self.status == "UP"


async def check_health(extractor: EntityExtractor, resolver: GeographicResolver) -> HealthReport:
    tagger_ready = extractor.is_ready()
    gazetteer_reachable = await resolver.is_healthy()
    status: Literal["UP", "DOWN"] = "UP" if tagger_ready and gazetteer_reachable else "DOWN"
    if status == "DOWN":
        logger.warning(
            f"Health DOWN: tagger_ready={tagger_ready}, gazetteer_reachable={gazetteer_reachable}"
        )
    return HealthReport(
        status=status,
        tagger_ready=tagger_ready,
        gazetteer_reachable=gazetteer_reachable,
    )


__all__ = ["HealthReport", "check_health"]
