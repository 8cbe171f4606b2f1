"""Tests for the entity-aware intent router."""

import asyncio

import pytest

from localassist.router import EntityRouter, ExtractedEntities, decide, extract_entities, extract_signals, tokenize
from localassist.router import core
from localassist.router.entities import group_ner_tokens
from localassist.schemas import Intent


def route(text, **kwargs):
    return asyncio.run(EntityRouter(**kwargs).route(text))


class TestSignals:
    """Test lexical signal extraction."""

    def test_tokenize_keeps_apostrophes(self):
        """Contractions stay single tokens."""
        assert tokenize("I don't know, what's up?") == ["i", "don't", "know", "what's", "up"]

    def test_question_signals(self):
        """WH-words and question marks are detected."""
        signals = extract_signals("Where is the meeting?")
        assert signals.has_wh_word
        assert signals.question_mark

    def test_negation_near_action_verb(self):
        """Negation within the window of an action verb marks the utterance negated."""
        assert extract_signals("Please don't open the browser").negated
        assert not extract_signals("Open the browser").negated

    def test_modal_request_needs_action_verb(self):
        """'Can you' only counts when an action verb follows."""
        assert extract_signals("Can you open the calculator").modal_request
        assert not extract_signals("Can you believe it").modal_request

    def test_short_utterance(self):
        """Fewer than three tokens is short."""
        assert extract_signals("hi there").is_short
        assert not extract_signals("hi there friend").is_short


class TestEntities:
    """Test rule-based entity extraction."""

    def test_datetime_and_event(self):
        """Dates and appointment types are extracted."""
        entities = asyncio.run(extract_entities("I have a dentist appointment tomorrow at 3pm"))
        assert "tomorrow" in [v.lower() for v in entities.buckets["datetime"]]
        assert "dentist appointment" in entities.buckets["event"]

    def test_technology_is_an_item(self):
        """Technologies land in the items bucket."""
        entities = asyncio.run(extract_entities("We migrated the app to React last week"))
        assert "React" in entities.buckets["items"]

    def test_positions_point_at_tokens(self):
        """Mention positions are token indices."""
        entities = asyncio.run(extract_entities("open the calculator"))
        assert 2 in entities.positions

    def test_tagger_spans_are_merged(self):
        """NER predictions are grouped and added before rule-based entities."""
        predictions = [
            {"entity": "B-PER", "word": "Ada", "score": 0.99},
            {"entity": "I-PER", "word": "Love", "score": 0.98},
            {"entity": "I-PER", "word": "##lace", "score": 0.97},
            {"entity": "B-LOC", "word": "Paris", "score": 0.4},
        ]
        entities = asyncio.run(extract_entities("ada lovelace went to paris", tagger=lambda text: predictions))
        assert entities.buckets["person"][0] == "Ada Lovelace"
        assert "Paris" not in entities.buckets["location"]

    def test_tagger_failure_is_tolerated(self):
        """A failing tagger leaves the rule-based pass intact."""
        def broken(text):
            raise RuntimeError("model missing")

        entities = asyncio.run(extract_entities("meeting tomorrow", tagger=broken))
        assert entities.count("event") == 1

    def test_group_ner_tokens_drops_low_scores(self):
        """Tokens below the minimum score are ignored."""
        assert group_ner_tokens([{"entity": "B-ORG", "word": "Acme", "score": 0.1}]) == []

    def test_add_dedupes_case_insensitively(self):
        """Adding the same value twice keeps one copy."""
        entities = ExtractedEntities()
        entities.add("person", "John")
        entities.add("person", "john")
        assert entities.buckets["person"] == ["John"]


class TestRouting:
    """Test end-to-end routing decisions."""

    def test_gibberish_abstains(self):
        """No entities and no trigger words means no decision."""
        assert route("xk qq zzwp") is None

    def test_empty_text_abstains(self):
        """Empty text abstains rather than raising."""
        assert route("") is None

    def test_greeting(self):
        """A bare greeting routes to greeting."""
        decision = route("Hello")
        assert decision.primary_intent == Intent.GREETING
        assert not decision.needs_orchestration

    def test_command(self):
        """An imperative with a capability routes to command and captures context."""
        decision = route("Open the calculator")
        assert decision.primary_intent == Intent.COMMAND
        assert decision.capture_context
        assert decision.needs_orchestration
        assert "calculator" in decision.entities["capability"]

    def test_memory_store(self):
        """A first-person statement with a future cue is stored."""
        decision = route("I have a dentist appointment tomorrow")
        assert decision.primary_intent == Intent.MEMORY_STORE
        assert decision.requires_memory_access
        assert decision.also_run is None

    def test_memory_retrieve(self):
        """Asking what was discussed routes to retrieval."""
        decision = route("What did we discuss about the React project?")
        assert decision.primary_intent == Intent.MEMORY_RETRIEVE
        assert decision.needs_semantic_search
        assert decision.margin >= core.MIN_MARGIN

    def test_question(self):
        """A general WH-question routes to question."""
        decision = route("How does photosynthesis work?")
        assert decision.primary_intent == Intent.QUESTION

    @pytest.mark.parametrize("text", [
        "Hello",
        "Open the calculator",
        "I have a dentist appointment tomorrow",
        "What did we discuss about the React project?",
        "Remember that I parked on level 3 and I have a meeting with Dr. Smith next Monday at 10am in the office",
        "Can you open the screenshot tool and save it to my notes folder please",
    ])
    def test_decisions_stay_in_bounds(self, text):
        """Confidence and margin are always within [0, 1]."""
        decision = route(text)
        if decision is not None:
            assert 0.0 <= decision.confidence <= 1.0
            assert 0.0 <= decision.margin <= 1.0

    def test_router_errors_abstain(self, monkeypatch):
        """Internal failures are logged and produce an abstention."""
        def explode(text):
            raise RuntimeError("boom")

        monkeypatch.setattr(core, "extract_signals", explode)
        assert route("Open the calculator") is None


class TestDecide:
    """Test the decision rule on hand-built scores."""

    def _scores(self, **values):
        scores = {intent: 0.0 for intent in Intent}
        for name, value in values.items():
            scores[Intent(name)] = value
        return scores

    def test_abstains_on_small_margin(self):
        """Two intents within the minimum margin abstain."""
        signals = extract_signals("please do the thing for me now")
        scores = self._scores(command=0.80, question=0.78)
        assert decide(signals, ExtractedEntities(), scores) is None

    def test_short_utterances_need_higher_floor(self):
        """A score acceptable for long text is too weak for a short one."""
        scores = self._scores(question=0.50)
        assert decide(extract_signals("why"), ExtractedEntities(), scores) is None
        assert decide(extract_signals("why is that so"), ExtractedEntities(), scores) is not None

    def test_tie_break_promotes_memory_store(self, monkeypatch):
        """memory_store close to the winner takes over and the winner also runs."""
        monkeypatch.setattr(core, "MIN_MARGIN", 0.0)
        signals = extract_signals("remember to open the calendar tomorrow")
        scores = self._scores(command=0.84, memory_store=0.82, question=0.1)

        decision = decide(signals, ExtractedEntities(), scores)

        assert decision.primary_intent == Intent.MEMORY_STORE
        assert decision.also_run == Intent.COMMAND
        assert decision.confidence == pytest.approx(0.82)
        assert "tie-break" in decision.reasoning

    def test_no_tie_break_below_store_floor(self, monkeypatch):
        """memory_store must itself clear its floor to take over."""
        monkeypatch.setattr(core, "MIN_MARGIN", 0.0)
        signals = extract_signals("open the calendar for the team")
        scores = self._scores(command=0.60, memory_store=0.58)

        decision = decide(signals, ExtractedEntities(), scores)

        assert decision.primary_intent == Intent.COMMAND
        assert decision.also_run is None

    def test_scores_are_clamped(self):
        """Raw scores above 1 still yield a bounded confidence."""
        signals = extract_signals("open the calculator right now")
        decision = decide(signals, ExtractedEntities(), self._scores(command=1.4))
        assert decision.confidence == 1.0
        assert decision.margin == 1.0
        assert decision.scores["command"] == pytest.approx(1.4)


class TestStorageSignal:
    """Test semantic storage detection."""

    def test_semantic_match(self, fake_embedder):
        """Identical vectors give full storage confidence."""
        router = EntityRouter(embedder=fake_embedder)
        signal = asyncio.run(router.storage_signal("anything at all"))
        assert signal.method == "semantic"
        assert signal.is_goal
        assert signal.confidence == pytest.approx(1.0)

    def test_canonical_sentences_embedded_once(self, fake_embedder):
        """Canonical sentences are embedded on first use only."""
        router = EntityRouter(embedder=fake_embedder)
        asyncio.run(router.storage_signal("first"))
        asyncio.run(router.storage_signal("second"))
        canonical_calls = [c for c in fake_embedder.calls if c in core.CANONICAL_STORAGE_SENTENCES]
        assert len(canonical_calls) == len(router.canonical_sentences)

    def test_lexical_fallback_on_embedder_failure(self):
        """A failing embedder falls back to lexical matching."""
        class BrokenEmbedder:
            def embed(self, text):
                raise RuntimeError("no model")

        router = EntityRouter(embedder=BrokenEmbedder())
        signal = asyncio.run(router.storage_signal("I need to learn Rust for work"))
        assert signal.method == "learning_goal"
        assert signal.is_goal

    def test_lexical_no_match(self):
        """Unrelated text has low lexical confidence."""
        signal = asyncio.run(EntityRouter().storage_signal("xk qq zzwp"))
        assert not signal.is_goal
        assert signal.method == "none"
