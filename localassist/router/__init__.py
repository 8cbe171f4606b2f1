"""Intent routing for LocalAssist."""

from localassist.router.core import EntityRouter, decide, score_intents
from localassist.router.entities import ExtractedEntities, extract_entities
from localassist.router.signals import Signals, extract_signals, tokenize

__all__ = [
    "EntityRouter",
    "ExtractedEntities",
    "Signals",
    "decide",
    "extract_entities",
    "extract_signals",
    "score_intents",
    "tokenize",
]
