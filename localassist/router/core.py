"""Scored, entity-aware intent router."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from localassist.router.entities import ExtractedEntities, NerTagger, extract_entities
from localassist.router.signals import Signals, extract_signals
from localassist.schemas import Intent, RoutingDecision
from localassist.similarity import cosine_similarity, mean_top

logger = logging.getLogger(__name__)

# Abstention thresholds
MIN_SCORE_SHORT = 0.55
MIN_SCORE = 0.45
MIN_MARGIN = 0.05

# Tie-break toward memory_store
TIE_BREAK_WINDOW = 0.05
TIE_BREAK_MIN_SCORE = 0.6

# Semantic storage detection
SEMANTIC_GOAL_THRESHOLD = 0.65
SEMANTIC_STORE_CUE_THRESHOLD = 0.6
MAX_CANONICAL_SENTENCES = 50
LEXICAL_PREFIX_CHARS = 20
LEXICAL_PREFIX_SAMPLE = 10
LEXICAL_PREFIX_CONFIDENCE = 0.75
LEXICAL_GOAL_CONFIDENCE = 0.6
LEXICAL_NO_MATCH_CONFIDENCE = 0.1
LEARNING_GOAL = re.compile(
    r"\b(need|want|plan|going)\s+to\s+(learn|study|start|begin|work on|practice)\b",
    re.IGNORECASE,
)

CANONICAL_STORAGE_SENTENCES = (
    "I had a meeting with John yesterday",
    "Remember I have an appointment tomorrow",
    "I went to the doctor last week",
    "Save this information for later",
    "I completed the project today",
    "I talked to the client about the proposal",
    "Keep track of my new routine starting next Monday",
    "I want to remember this recipe for later",
    "Store this email as part of my job notes",
    "Next week I have a work meeting in texas",
    "Tomorrow I have a dentist appointment",
    "I have a conference call on Friday",
    "Next month I have a vacation planned",
    "I have a job interview next Tuesday",
    "This weekend I have a family dinner",
    "I have a hair appointment coming up in a week",
    "I have a dentist appointment coming up next week",
    "I have a meeting coming up tomorrow",
    "I have a vacation coming up next month",
    "I have an interview coming up on Friday",
    "I have a doctor appointment coming up",
    "My kids go back to school next week",
    "My kids start school on Monday",
    "School starts next week for my children",
    "I have a hair appt coming up in a week, plus my kids go back to school next week",
    "I have several things coming up next week",
    "There are a few events coming up this month",
    "Log this information for later",
    "Keep track of this meeting",
    "Note down this appointment",
    "Record this call with the client",
    "I don't have anything planned",
    "Nothing is happening this week",
    "I cancelled my appointment",
    "Maybe I should remember this",
    "I might have something coming up",
    "I need to learn Python for my new job",
    "I want to start practicing guitar every evening",
    "I'm planning to study for the certification next month",
    "My favorite restaurant is the Thai place downtown",
    "I prefer morning meetings over afternoon ones",
    "I started a new workout routine this week",
    "My sister's birthday is on March 3rd",
    "I parked on level 3 of the garage",
    "I'm allergic to peanuts",
    "I moved to a new apartment last month",
)

INTENT_FLAGS: dict[Intent, dict[str, bool]] = {
    Intent.GREETING: {},
    Intent.COMMAND: {"needs_orchestration": True, "capture_context": True},
    Intent.MEMORY_STORE: {"needs_orchestration": True, "requires_memory_access": True},
    Intent.MEMORY_RETRIEVE: {"needs_semantic_search": True, "requires_memory_access": True},
    Intent.QUESTION: {"needs_orchestration": True, "needs_semantic_search": True},
}


class Embedder(Protocol):
    """Anything that turns text into a vector."""

    def embed(self, text: str) -> list[float]: ...


@dataclass
class StorageSignal:
    """Result of semantic storage-intent detection."""

    is_goal: bool
    confidence: float
    method: str


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class EntityRouter:
    """Routes utterances to an intent using lexical, entity and semantic signals.

    Collaborators are optional: without a tagger only rule-based entities are
    used, and without an embedder storage detection falls back to lexical
    matching against the canonical storage sentences.
    """

    def __init__(self, embedder: Embedder | None = None, tagger: NerTagger | None = None):
        self.embedder = embedder
        self.tagger = tagger
        self.canonical_sentences = list(CANONICAL_STORAGE_SENTENCES[:MAX_CANONICAL_SENTENCES])
        self._canonical_vectors: list[list[float]] | None = None
        self._canonical_lock = asyncio.Lock()

    async def _embed(self, text: str) -> list[float]:
        embed = self.embedder.embed
        if inspect.iscoroutinefunction(embed):
            return list(await embed(text))
        return list(await asyncio.to_thread(embed, text))

    async def _canonical_embeddings(self) -> list[list[float]]:
        """Embed the canonical storage sentences once per router."""
        if self._canonical_vectors is not None:
            return self._canonical_vectors

        async with self._canonical_lock:
            if self._canonical_vectors is None:
                vectors = []
                for sentence in self.canonical_sentences:
                    vectors.append(await self._embed(sentence))
                self._canonical_vectors = vectors
                logger.info(f"Embedded {len(vectors)} canonical storage sentences")
        return self._canonical_vectors

    async def storage_signal(self, text: str) -> StorageSignal:
        """Estimate how much an utterance reads like something to remember."""
        if self.embedder is not None:
            try:
                query = await self._embed(text)
                canonical = await self._canonical_embeddings()
                similarities = [cosine_similarity(query, vector) for vector in canonical]
                if similarities:
                    confidence = 0.7 * max(similarities) + 0.3 * mean_top(similarities, 3)
                    return StorageSignal(
                        is_goal=confidence > SEMANTIC_GOAL_THRESHOLD,
                        confidence=confidence,
                        method="semantic",
                    )
            except Exception as e:
                logger.warning(f"Semantic storage detection failed, using lexical fallback: {e}")

        return self._lexical_storage_signal(text)

    def _lexical_storage_signal(self, text: str) -> StorageSignal:
        lower = text.lower()
        for sentence in self.canonical_sentences[:LEXICAL_PREFIX_SAMPLE]:
            if sentence.lower()[:LEXICAL_PREFIX_CHARS] in lower:
                return StorageSignal(True, LEXICAL_PREFIX_CONFIDENCE, "canonical_prefix")

        if LEARNING_GOAL.search(text):
            return StorageSignal(True, LEXICAL_GOAL_CONFIDENCE, "learning_goal")
        return StorageSignal(False, LEXICAL_NO_MATCH_CONFIDENCE, "none")

    async def route(self, utterance: str) -> RoutingDecision | None:
        """Route an utterance, or abstain.

        Args:
            utterance: Raw user text

        Returns:
            RoutingDecision, or None when the evidence is too weak or too
            evenly split
        """
        try:
            return await self._route(utterance)
        except Exception as e:
            logger.error(f"Routing failed, abstaining: {e}")
            return None

    async def _route(self, utterance: str) -> RoutingDecision | None:
        signals = extract_signals(utterance or "")
        entities = await extract_entities(signals.text, self.tagger)

        semantic_boost = 0.0
        storage = await self.storage_signal(signals.text)
        if storage.is_goal:
            semantic_boost = storage.confidence

        scores = score_intents(signals, entities, semantic_boost)
        return decide(signals, entities, scores)


def score_intents(signals: Signals, entities: ExtractedEntities, semantic_boost: float = 0.0) -> dict[Intent, float]:
    """Additive per-intent scores."""
    scores = {intent: 0.0 for intent in (
        Intent.MEMORY_STORE, Intent.MEMORY_RETRIEVE, Intent.COMMAND, Intent.QUESTION, Intent.GREETING,
    )}
    s = signals
    asks = s.has_wh_word or s.question_mark
    total_entities = entities.total

    if s.greeting_start and len(s.tokens) <= 6 and not s.imperative_start and not asks and not s.action_indices:
        scores[Intent.GREETING] += 0.85
    if s.greeting_start and (s.imperative_start or s.modal_request or asks or s.action_indices):
        scores[Intent.GREETING] = min(scores[Intent.GREETING], 0.1)

    if (s.imperative_start or s.action_near_entity(entities.positions) or s.modal_request) and not s.negated:
        scores[Intent.COMMAND] += 0.75
        if total_entities:
            scores[Intent.COMMAND] += 0.05
        if entities.count("capability"):
            scores[Intent.COMMAND] += 0.10
    if s.modal_request and not s.negated:
        scores[Intent.COMMAND] += 0.15

    if s.declarative_ability:
        scores[Intent.COMMAND] -= 0.35
        scores[Intent.MEMORY_STORE] += 0.25
        scores[Intent.QUESTION] += 0.15

    has_context = s.future_cue or s.past_cue or any(
        entities.count(bucket) for bucket in ("event", "person", "location", "datetime")
    )
    store_cues = (
        (s.first_person and has_context)
        or bool(s.store_verb_indices)
        or s.declarative_ability
        or semantic_boost > SEMANTIC_STORE_CUE_THRESHOLD
    )
    question_not_storage = asks and not s.store_verb_indices

    if store_cues and not s.negated and not question_not_storage:
        scores[Intent.MEMORY_STORE] += 0.70
        if semantic_boost > 0:
            scores[Intent.MEMORY_STORE] += semantic_boost * 0.3
        if s.speculative:
            scores[Intent.MEMORY_STORE] -= 0.15
            scores[Intent.QUESTION] += 0.25
        if entities.count("datetime"):
            scores[Intent.MEMORY_STORE] += 0.08
        if entities.count("person") or entities.count("event") or entities.count("location"):
            scores[Intent.MEMORY_STORE] += 0.06

    if (s.retrieval_phrase or (s.has_wh_word and s.first_or_group)) and not s.negated:
        scores[Intent.MEMORY_RETRIEVE] += 0.75
        if entities.count("datetime"):
            scores[Intent.MEMORY_RETRIEVE] += 0.06
        if total_entities:
            scores[Intent.MEMORY_RETRIEVE] += 0.04

    if asks:
        scores[Intent.QUESTION] += 0.65
        if total_entities:
            scores[Intent.QUESTION] += 0.05

    if s.negated:
        scores[Intent.COMMAND] -= 0.25
        scores[Intent.MEMORY_STORE] -= 0.25

    return scores


def _explain(ranked: list[tuple[Intent, float]], signals: Signals, entities: ExtractedEntities, margin: float) -> str:
    top2 = ", ".join(f"{intent.value}:{score:.2f}" for intent, score in ranked[:2])
    return f"scores={top2}; negated={signals.negated}; entities={entities.total}; margin={margin:.2f}"


def decide(signals: Signals, entities: ExtractedEntities, scores: dict[Intent, float]) -> RoutingDecision | None:
    """Pick the winning intent or abstain."""
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    top_intent, top_score = ranked[0]
    second_score = ranked[1][1] if len(ranked) > 1 else 0.0
    margin = top_score - second_score
    reasoning = _explain(ranked, signals, entities, margin)

    floor = MIN_SCORE_SHORT if signals.is_short else MIN_SCORE
    if top_score < floor or margin < MIN_MARGIN:
        logger.debug(f"Abstaining: {reasoning}")
        return None

    also_run = None
    confidence = top_score
    if top_intent is not Intent.MEMORY_STORE:
        store_score = scores[Intent.MEMORY_STORE]
        if abs(store_score - top_score) <= TIE_BREAK_WINDOW and store_score > TIE_BREAK_MIN_SCORE:
            logger.info(f"Tie-break to memory_store ({store_score:.2f} vs {top_score:.2f})")
            also_run = top_intent
            top_intent = Intent.MEMORY_STORE
            confidence = store_score
            margin = abs(store_score - second_score)
            reasoning += "; tie-break to memory_store"

    flags = INTENT_FLAGS[top_intent]
    if signals.modal_request:
        flags = {**flags, "needs_orchestration": True}

    logger.info(f"Routed to {top_intent.value}: {reasoning}")
    return RoutingDecision(
        primary_intent=top_intent,
        confidence=_clamp(confidence),
        margin=_clamp(margin),
        entities=entities.non_empty(),
        needs_orchestration=flags.get("needs_orchestration", False),
        needs_semantic_search=flags.get("needs_semantic_search", False),
        requires_memory_access=flags.get("requires_memory_access", False),
        capture_context=flags.get("capture_context", False),
        also_run=also_run,
        scores={intent.value: round(score, 4) for intent, score in scores.items()},
        reasoning=reasoning,
    )
