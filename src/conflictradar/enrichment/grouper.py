"""Merge token-level tagger output into entity spans.

Taggers label one token at a time ("Joe" PERSON, "Biden" PERSON). Adjacent
tokens of the same type are merged into one span, duplicates are collapsed
case-insensitively and single-character noise is dropped.
"""

import logging
from collections.abc import Sequence

from conflictradar.models import EntityType, ExtractedEntity, RawEntity

logger = logging.getLogger(__name__)

# Max characters between the end of a group and the start of the next token
DEFAULT_MAX_GAP = 2


class _Span:
    """Mutable accumulator for the group being built."""

    __slots__ = ("parts", "type", "confidence", "start", "end")

    def __init__(self, entity: RawEntity) -> None:
        self.parts = [entity.text]
        self.type: EntityType = entity.type
        self.confidence = entity.confidence
        self.start = entity.start_offset
        self.end = entity.end_offset

    def accepts(self, entity: RawEntity, max_gap: int) -> bool:
        return entity.type == self.type and entity.start_offset <= self.end + max_gap

    def extend(self, entity: RawEntity) -> None:
        self.parts.append(entity.text)
        self.confidence = max(self.confidence, entity.confidence)
        self.end = max(self.end, entity.end_offset)

    def to_entity(self) -> ExtractedEntity:
        return ExtractedEntity(
            text=" ".join(p for p in self.parts if p).strip(),
            type=self.type,
            confidence=self.confidence,
            start_offset=self.start,
            end_offset=self.end,
        )


class EntityGrouper:
    """Groups RawEntity tokens into ExtractedEntity spans.

    Output spans are non-overlapping, unique by lowercased text and
    ordered by start offset.
    """

    def __init__(self, max_gap: int = DEFAULT_MAX_GAP) -> None:
        self.max_gap = max_gap

    def group(self, raw: Sequence[RawEntity]) -> list[ExtractedEntity]:
        if not raw:
            return []

        spans: list[_Span] = []
        current: _Span | None = None
        for entity in sorted(raw, key=lambda e: e.start_offset):
            if current is not None and current.accepts(entity, self.max_gap):
                current.extend(entity)
            else:
                current = _Span(entity)
                spans.append(current)

        grouped = [span.to_entity() for span in spans]
        return self._finalize(grouped)

    def _finalize(self, grouped: list[ExtractedEntity]) -> list[ExtractedEntity]:
        best: dict[str, ExtractedEntity] = {}
        for entity in grouped:
            if len(entity.text) <= 1:
                continue
            key = entity.text.lower()
            existing = best.get(key)
            if existing is None or entity.confidence > existing.confidence:
                best[key] = entity

        ordered = sorted(best.values(), key=lambda e: e.start_offset)

        # Malformed tagger output (overlapping tokens) must not yield overlapping spans
        result: list[ExtractedEntity] = []
        for entity in ordered:
            if result and entity.overlaps(result[-1]):
                logger.debug(f"Dropping overlapping span: {entity.text!r}")
                continue
            result.append(entity)
        return result


def group_entities(raw: Sequence[RawEntity], max_gap: int = DEFAULT_MAX_GAP) -> list[ExtractedEntity]:
    """Functional shortcut for EntityGrouper(max_gap).group(raw)."""
    return EntityGrouper(max_gap).group(raw)


__all__ = ["DEFAULT_MAX_GAP", "EntityGrouper", "group_entities"]
