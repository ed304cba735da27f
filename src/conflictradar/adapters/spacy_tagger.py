"""spaCy-backed tagger.

Emits one RawEntity per entity token, the token-level shape the grouper
expects. Loading by name needs a downloaded pipeline, e.g.
`python -m spacy download en_core_web_sm`.
"""

import logging

import spacy

from conflictradar.models import EntityType, RawEntity

logger = logging.getLogger(__name__)

# spaCy and other NER label sets mapped onto our entity types
LABEL_TYPES: dict[str, EntityType] = {
    "PERSON": EntityType.PERSON,
    "ORG": EntityType.ORGANIZATION,
    "ORGANIZATION": EntityType.ORGANIZATION,
    "LOCATION": EntityType.LOCATION,
    "GPE": EntityType.LOCATION,
    "LOC": EntityType.LOCATION,
    "COUNTRY": EntityType.LOCATION,
    "CITY": EntityType.LOCATION,
}

# Token confidence by source label; the pipeline exposes no per-entity scores
LABEL_CONFIDENCE: dict[str, float] = {
    "PERSON": 0.9,
    "ORG": 0.8,
    "ORGANIZATION": 0.8,
    "LOCATION": 0.85,
    "COUNTRY": 0.85,
    "CITY": 0.8,
}
DEFAULT_CONFIDENCE = 0.7


def map_label(label: str) -> EntityType | None:
    """Entity type for a tagger label, or None for labels we ignore."""
    return LABEL_TYPES.get(label.upper())


def label_confidence(label: str) -> float:
    return LABEL_CONFIDENCE.get(label.upper(), DEFAULT_CONFIDENCE)


class SpacyTagger:
    """Tagger backed by a spaCy pipeline, loaded on first use.

    Pass `nlp` to use an already-built pipeline instead of loading
    `model_name`.
    """

    def __init__(
        self,
        model_name: str = "en_core_web_sm",
        nlp: spacy.Language | None = None,
    ) -> None:
        self.model_name = model_name
        self._nlp = nlp
        self._load_failed = False

    def _load(self) -> spacy.Language | None:
        if self._nlp is None and not self._load_failed:
            try:
                self._nlp = spacy.load(self.model_name)
                logger.info(f"Loaded spaCy pipeline {self.model_name}")
            except OSError as e:
                # Model package not downloaded
                self._load_failed = True
                logger.error(f"Could not load spaCy pipeline {self.model_name}: {e}")
        return self._nlp

    def is_ready(self) -> bool:
        return self._load() is not None

    def tag(self, text: str) -> list[RawEntity]:
        nlp = self._load()
        if nlp is None or not text.strip():
            return []

        doc = nlp(text)
        tags: list[RawEntity] = []
        for token in doc:
            if not token.ent_type_:
                continue
            entity_type = map_label(token.ent_type_)
            if entity_type is None:
                continue
            tags.append(
                RawEntity(
                    text=token.text,
                    type=entity_type,
                    confidence=label_confidence(token.ent_type_),
                    start_offset=token.idx,
                    end_offset=token.idx + len(token.text),
                )
            )
        return tags


__all__ = ["LABEL_TYPES", "SpacyTagger", "label_confidence", "map_label"]
