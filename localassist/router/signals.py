"""Lexical signal extraction for intent routing."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

TOKEN_PATTERN = re.compile(r"\b[\w']+\b")

WH_WORDS = frozenset({"what", "when", "where", "who", "how", "why", "which"})
WH_CONTRACTIONS = re.compile(r"\b(what's|when's|where's|who's|how's|why's|which's)\b", re.IGNORECASE)

GREETING_PREFIX = re.compile(r"^(hi|hello|hey|greetings|good (morning|afternoon|evening))\b", re.IGNORECASE)

IMPERATIVE_VERBS = (
    "save", "remember", "note", "record", "open", "search", "email", "message",
    "call", "schedule", "remind", "create", "delete", "update", "screenshot", "capture",
)
IMPERATIVE_PREFIX = re.compile(r"^(" + "|".join(IMPERATIVE_VERBS) + r")\b", re.IGNORECASE)
ACTION_VERBS = frozenset(IMPERATIVE_VERBS + ("start", "stop", "run", "execute"))

STORE_VERBS = frozenset({"save", "remember", "note", "record", "log", "track", "journal", "add"})
NEGATION_WORDS = frozenset({"don't", "dont", "do", "not", "no", "never", "stop", "cancel"})
NEGATION_WINDOW = 3

FIRST_PERSON = re.compile(r"\b(i|i'm|im|i've|i'd|i'll|me|my)\b", re.IGNORECASE)
GROUP_PRONOUNS = re.compile(r"\b(we|our|us)\b", re.IGNORECASE)
FUTURE_CUE = re.compile(
    r"\b(tonight|tomorrow|next|upcoming|later|soon|in \d+ (min|mins|minutes|hours|days|weeks))\b",
    re.IGNORECASE,
)
PAST_CUE = re.compile(r"\b(yesterday|last|earlier|ago)\b", re.IGNORECASE)

MODAL_REQUEST = re.compile(r"^(can|could|would|will)\s+you\b", re.IGNORECASE)
DECLARATIVE_ABILITY = re.compile(r"\bi can\b", re.IGNORECASE)
SPECULATIVE_STORE = re.compile(r"(should|can|could)\s+i\s+(save|log|record|remember)", re.IGNORECASE)

RETRIEVAL_PHRASES = (
    re.compile(
        r"(remind me|recall|what did (i|we) (say|tell you|plan|discuss|talk about)|what about"
        r"|show me (what|the)|pull up|find (what|when|where) (i|we))",
        re.IGNORECASE,
    ),
    re.compile(r"\b(show|find|search)\b.*\b(my|our|previous|past|last)\b", re.IGNORECASE),
    re.compile(r"what (did|have) we (plan|discuss|say|talk about|decide)", re.IGNORECASE),
    re.compile(
        r"what('s|s)?\s+(the\s+)?(first|last|earliest|latest|initial|previous)\s+(message|thing|question|ask)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(first|last|earliest|latest|initial|previous)\s+(message|thing|question|ask|conversation)",
        re.IGNORECASE,
    ),
)

# Max token distance between an action verb and an entity
ACTION_ENTITY_WINDOW = 6


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens, keeping apostrophes."""
    return TOKEN_PATTERN.findall(text.lower())


def token_indices(tokens: list[str], targets: frozenset[str]) -> list[int]:
    """Positions of tokens that appear in targets."""
    return [i for i, token in enumerate(tokens) if token in targets]


def has_negation_near(tokens: list[str], indices: list[int], window: int = NEGATION_WINDOW) -> bool:
    """Check for a negation word within window tokens of any index."""
    for i in indices:
        lo = max(0, i - window)
        hi = min(len(tokens) - 1, i + window)
        if any(tokens[j] in NEGATION_WORDS for j in range(lo, hi + 1)):
            return True
    return False


@dataclass
class Signals:
    """Lexical features of one utterance."""

    text: str
    tokens: list[str] = field(default_factory=list)
    has_wh_word: bool = False
    question_mark: bool = False
    greeting_start: bool = False
    imperative_start: bool = False
    action_indices: list[int] = field(default_factory=list)
    store_verb_indices: list[int] = field(default_factory=list)
    first_person: bool = False
    first_or_group: bool = False
    future_cue: bool = False
    past_cue: bool = False
    negated: bool = False
    modal_request: bool = False
    declarative_ability: bool = False
    speculative: bool = False
    retrieval_phrase: bool = False

    @property
    def is_short(self) -> bool:
        return len(self.tokens) < 3

    def action_near_entity(self, entity_positions: list[int]) -> bool:
        """Whether an action verb sits near an entity.

        Without entity positions any action verb counts.
        """
        if not self.action_indices:
            return False
        if not entity_positions:
            return True
        return any(
            abs(a - e) <= ACTION_ENTITY_WINDOW
            for a in self.action_indices
            for e in entity_positions
        )


def extract_signals(utterance: str) -> Signals:
    """Extract lexical signals from an utterance.

    Args:
        utterance: Raw user text

    Returns:
        Signals for scoring
    """
    text = utterance.strip()
    tokens = tokenize(text)

    action_indices = token_indices(tokens, ACTION_VERBS)
    first_person = bool(FIRST_PERSON.search(text))

    return Signals(
        text=text,
        tokens=tokens,
        has_wh_word=bool(token_indices(tokens, WH_WORDS)) or bool(WH_CONTRACTIONS.search(text)),
        question_mark=text.endswith("?"),
        greeting_start=bool(GREETING_PREFIX.search(text)),
        imperative_start=bool(IMPERATIVE_PREFIX.search(text)),
        action_indices=action_indices,
        store_verb_indices=token_indices(tokens, STORE_VERBS),
        first_person=first_person,
        first_or_group=first_person or bool(GROUP_PRONOUNS.search(text)),
        future_cue=bool(FUTURE_CUE.search(text)),
        past_cue=bool(PAST_CUE.search(text)),
        negated=has_negation_near(tokens, action_indices),
        modal_request=bool(MODAL_REQUEST.search(text)) and bool(action_indices),
        declarative_ability=bool(DECLARATIVE_ABILITY.search(text)),
        speculative=bool(SPECULATIVE_STORE.search(text)),
        retrieval_phrase=any(pattern.search(text) for pattern in RETRIEVAL_PHRASES),
    )
