"""Entity extraction: optional NER tagger pass plus rule-based extractors."""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from localassist.router.signals import tokenize

logger = logging.getLogger(__name__)

ENTITY_BUCKETS = ("datetime", "person", "location", "event", "items", "capability")

# Minimum token score kept from the NER tagger
NER_MIN_SCORE = 0.7

NER_LABELS = {
    "PER": "person",
    "PERSON": "person",
    "LOC": "location",
    "LOCATION": "location",
    "ORG": "items",
    "ORGANIZATION": "items",
    "MISC": "items",
    "DATE": "datetime",
    "TIME": "datetime",
}

NerTagger = Callable[[str], Any]

_MONTH = (
    r"(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|Aug(?:ust)?"
    r"|Sep(?:t\.?|tember)|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
_WEEKDAY = r"(Mon(?:day)?|Tue(?:sday)?|Wed(?:nesday)?|Thu(?:rsday)?|Fri(?:day)?|Sat(?:urday)?|Sun(?:day)?)"
_TIME = r"(\d{1,2}(:\d{2})?\s*(am|pm)?)"

DATETIME_PATTERNS = [
    re.compile(r"\b(20\d{2}|19\d{2})-(0?[1-9]|1[0-2])-(0?[1-9]|[12]\d|3[01])\b"),
    re.compile(r"\b(0?[1-9]|1[0-2])[/.-](0?[1-9]|[12]\d|3[01])[/.-](\d{2,4})\b"),
    re.compile(rf"\b{_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,\s*\d{{4}})?\b", re.IGNORECASE),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH}(?:,\s*\d{{4}})?\b", re.IGNORECASE),
    re.compile(rf"\b(this|next|last)\s+{_WEEKDAY}(?:\s+at\s+)?\s*{_TIME}?\b", re.IGNORECASE),
    re.compile(rf"\b{_WEEKDAY}(?:\s+at\s+)?\s*{_TIME}?\b", re.IGNORECASE),
    re.compile(
        r"\b(today|tonight|tomorrow|tmr|yesterday"
        r"|this\s+(morning|afternoon|evening|week|month|year|weekend)"
        r"|next\s+(week|month|year|quarter)|last\s+(week|month|year)"
        r"|in\s+(?:a|an|\d+)\s+(minute|hour|day|week|month|year)s?"
        r"|after\s+\d+\s+(minute|hour|day|week|month|year)s?)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b([01]?\d|2[0-3])(:\d{2})(:\d{2})?\s*(am|pm)?\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})\s*(am|pm)\b", re.IGNORECASE),
    re.compile(rf"\b{_TIME}\s*[-–]\s*{_TIME}\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2}(:\d{2})?\s*(am|pm)?)\s*(UTC|GMT|[EP]DT|[EP]ST|CET|CEST|IST|AEST)\b", re.IGNORECASE),
    re.compile(r"\b(soon|coming up|in a bit|later today|end of day|eod|cob)\b", re.IGNORECASE),
]

PERSON_PATTERNS = [
    re.compile(r"\b(Dr\.|Doctor|Prof\.|Professor|Mr\.|Mrs\.|Ms\.|Mx\.|Sir|Madam)\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b"),
    re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,3}\b"),
    re.compile(r"@[A-Za-z0-9_.]+"),
]
ROLE_WORDS = (
    "president", "vice president", "senator", "governor", "mayor", "prime minister",
    "king", "queen", "leader", "ceo", "cto", "cfo", "founder", "director", "chairman",
    "manager", "boss", "teacher", "professor", "coach", "doctor", "dentist", "therapist",
    "nurse", "client", "customer", "colleague", "coworker", "parent", "spouse", "wife",
    "husband", "partner", "friend", "child", "kid", "teen", "student",
)
CONTACT_PATTERNS = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    re.compile(r"\b(?:\+?\d{1,3}[\s.-]?)?(?:\(?\d{3}\)?[\s.-]?)?\d{3}[\s.-]?\d{4}\b"),
    re.compile(r"\bhttps?://[^\s)]+", re.IGNORECASE),
]

PLACE_WORDS = (
    "office", "work", "workspace", "home", "house", "apartment", "residence", "campus",
    "hospital", "clinic", "school", "university", "college", "library", "bank", "church",
    "museum", "restaurant", "cafe", "coffee shop", "bar", "diner", "park", "zoo", "beach",
    "gym", "pool", "stadium", "mall", "store", "supermarket", "grocery", "market",
    "airport", "hotel", "station", "terminal", "harbor", "downtown", "uptown", "midtown",
    "suburb", "neighborhood",
)
_US_STATES = (
    "AL|AK|AZ|AR|CA|CO|CT|DC|DE|FL|GA|HI|IA|ID|IL|IN|KS|KY|LA|MA|MD|ME|MI|MN|MO|MS|MT"
    "|NC|ND|NE|NH|NJ|NM|NV|NY|OH|OK|OR|PA|RI|SC|SD|TN|TX|UT|VA|VT|WA|WI|WV"
)
LOCATION_PATTERNS = [
    re.compile(
        r"\b\d{1,6}\s+[A-Za-z0-9.]+(?:\s+[A-Za-z0-9.]+){0,5}\s+"
        r"(St|Street|Ave|Avenue|Rd|Road|Blvd|Boulevard|Ln|Lane|Dr|Drive|Ct|Court|Pl|Place|Pkwy|Parkway)\b",
        re.IGNORECASE,
    ),
    re.compile(rf"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*),\s*({_US_STATES})\b"),
    re.compile(
        r"\b(United\s+States|USA|America|Canada|Mexico|United\s+Kingdom|UK|England|France"
        r"|Germany|Italy|Spain|China|Japan|India|Russia|Brazil|Australia)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{5}(?:-\d{4})?\b"),
    re.compile(r"\b([A-Z]{3})\b(?=\s+(airport|intl|terminal|flight|arrive|depart))"),
]

EVENT_WORDS = (
    "appointment", "appt", "meeting", "event", "call", "video call", "zoom", "hangout",
    "conference", "summit", "webinar", "training", "workshop", "seminar", "presentation",
    "demo", "standup", "retro", "lunch", "brunch", "dinner", "breakfast", "coffee",
    "interview", "checkup", "visit", "gathering", "party", "ceremony", "wedding",
    "birthday", "deadline", "release", "trip", "travel", "vacation", "holiday", "outing",
    "date", "game", "match",
)
EVENT_TYPES = [
    (re.compile(r"\bhair\s*(appointment|appt|cut|trim|styling)", re.IGNORECASE), "hair appointment"),
    (re.compile(r"\bdentist\b", re.IGNORECASE), "dentist appointment"),
    (re.compile(r"\bdoctor\s*(appointment|appt|checkup|visit|exam)", re.IGNORECASE), "doctor appointment"),
    (re.compile(r"\bmedical\s*(appointment|appt|checkup|exam|visit)", re.IGNORECASE), "medical appointment"),
    (re.compile(r"\bvet\s*(appointment|appt|checkup|visit)", re.IGNORECASE), "veterinary appointment"),
    (re.compile(r"\btherapy\s*(session|appointment|visit)?", re.IGNORECASE), "therapy session"),
    (re.compile(r"\bparent[-\s]*teacher\s*(meeting|conference)", re.IGNORECASE), "parent-teacher meeting"),
    (re.compile(r"\bschool\s*(event|meeting|orientation|conference)", re.IGNORECASE), "school event"),
]
SCHOOL_NOUN = re.compile(r"\b(school|classes?)\b", re.IGNORECASE)
SCHOOL_START = re.compile(r"(start|begin|go back|return|back)\b", re.IGNORECASE)
SHIPMENT = re.compile(r"\b(deliver(y|ies)?|arrival|arriving|ship(ping|s|ped)?)\b", re.IGNORECASE)

ITEM_PATTERNS = [
    re.compile(
        r"\b(shoes?|boots?|sneakers?|sandals?|shirts?|pants|jeans|dress(es)?|skirts?"
        r"|jackets?|coats?|hats?|caps?|gloves?|socks?)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(phones?|laptops?|computers?|tablets?|headphones?|earbuds?|cameras?|speakers?"
        r"|keyboards?|monitors?|routers?)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(chairs?|tables?|desks?|beds?|sofas?|couch(?:es)?|lamps?|mirrors?|curtains?|pillows?|blankets?)\b", re.IGNORECASE),
    re.compile(r"\b(food|meals?|snacks?|tea|water|juice|soda|bread|milk|eggs?|cheese|chicken|fish|pizza)\b", re.IGNORECASE),
    re.compile(r"\b(books?|magazines?|movies?|albums?)\b", re.IGNORECASE),
    re.compile(r"\b(bikes?|bicycles?|balls?|helmets?|skateboards?|treadmills?)\b", re.IGNORECASE),
    re.compile(r"\b(cats?|dogs?|puppy|puppies|kittens?|birds?|hamsters?|rabbits?|turtles?|horses?|parrots?)\b", re.IGNORECASE),
    re.compile(r"\b([A-Z]{2,}\d{1,3}|[A-Z]{2,}-\d{2,}|[A-Z]+\s?\d{2,4}\s?(Pro|Max|Ultra)?)\b"),
]
TECH_NOUNS = (
    "server", "cluster", "container", "image", "pipeline", "dashboard", "widget", "module",
    "sensor", "printer", "filter", "adapter", "charger", "cable", "battery",
)
ITEM_VERBAL_CUE = re.compile(
    r"\b(?:need|want|buy|get|use|using|learn|learning|start|upgrade)\s+(?:a|the|some|to)?\s*([A-Za-z0-9\-\s]{2,40})",
    re.IGNORECASE,
)

TECHNOLOGY_PATTERNS = [
    re.compile(r"\b(React(?:JS)?|Next\.?js|Remix|Gatsby|Vue(?:JS)?|Nuxt\.?js|Angular(?:JS)?|Svelte(?:Kit)?)\b", re.IGNORECASE),
    re.compile(r"\b(TypeScript|JavaScript|Python|Java|C\+\+|C#|Go|Rust|Swift|Kotlin|Scala|Ruby|PHP|Clojure|Elixir)\b", re.IGNORECASE),
    re.compile(r"\b(Node\.?js|Deno|Express|Fastify|NestJS|Spring|Django|Flask|FastAPI|Laravel|Rails)\b", re.IGNORECASE),
    re.compile(r"\b(Vite|Webpack|Rollup|Babel|ESLint|Prettier|Jest|Vitest|Mocha|Cypress|Playwright|Puppeteer|pytest)\b", re.IGNORECASE),
    re.compile(r"\b(PostgreSQL|MySQL|MariaDB|SQLite|DuckDB|MongoDB|Redis|Cassandra|DynamoDB|Neo4j|Elastic(?:search)?)\b", re.IGNORECASE),
    re.compile(r"\b(PGVector|Milvus|Weaviate|FAISS|Qdrant|Pinecone|LanceDB|Chroma(?:DB)?)\b", re.IGNORECASE),
    re.compile(r"\b(AWS|Azure|GCP|Vercel|Netlify|Heroku|Docker|Kubernetes|Helm|Terraform|Ansible|Jenkins)\b", re.IGNORECASE),
    re.compile(r"\b(Transformers|Hugging\s*Face|OpenAI|GPT[- ]?\d+|Llama(?:\s?\d+)?|Mistral|Phi[- ]?\d+|BERT|Whisper|RAG|LoRA)\b", re.IGNORECASE),
    re.compile(r"\b(NumPy|Pandas|Polars|PyTorch|TensorFlow|Keras|scikit-learn|XGBoost)\b", re.IGNORECASE),
    re.compile(r"\b(GraphQL|REST|WebSocket|gRPC|OAuth2|OIDC|SAML)\b", re.IGNORECASE),
]

CAPABILITY_WORDS = (
    "screenshot", "screen capture", "screen", "calculator", "browser", "terminal",
    "clipboard", "calendar", "camera", "microphone", "timer", "alarm", "reminder",
    "notes", "file", "folder", "window", "tab",
)

_EDGE_PUNCTUATION = re.compile(r"^[\s,;:.-]+|[\s,;:.-]+$")


def _clean(value: str) -> str:
    return _EDGE_PUNCTUATION.sub("", value).strip()


def _unique_ci(values: list[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping first occurrence."""
    seen: set[str] = set()
    out = []
    for value in values:
        key = value.lower()
        if value and key not in seen:
            seen.add(key)
            out.append(value)
    return out


def _find_all(patterns: list[re.Pattern], text: str) -> list[str]:
    hits = []
    for pattern in patterns:
        hits.extend(_clean(m.group(0)) for m in pattern.finditer(text) if m.group(0).strip())
    return hits


def _find_words(words: tuple[str, ...], text: str) -> list[str]:
    lower = text.lower()
    return [w for w in words if re.search(rf"\b{re.escape(w)}\b", lower)]


def extract_datetimes(text: str) -> list[str]:
    return _unique_ci(_find_all(DATETIME_PATTERNS, text))


def extract_people(text: str) -> list[str]:
    hits = _find_all(PERSON_PATTERNS, text)
    hits.extend(_find_words(ROLE_WORDS, text))
    hits.extend(_find_all(CONTACT_PATTERNS, text))
    return _unique_ci(hits)


def extract_locations(text: str) -> list[str]:
    hits = _find_words(PLACE_WORDS, text)
    hits.extend(_find_all(LOCATION_PATTERNS, text))
    return _unique_ci(hits)


def extract_events(text: str) -> list[str]:
    hits = _find_words(EVENT_WORDS, text)
    hits.extend(label for pattern, label in EVENT_TYPES if pattern.search(text))
    if SCHOOL_NOUN.search(text) and SCHOOL_START.search(text):
        hits.append("school start")
    if SHIPMENT.search(text):
        hits.append("shipment")
    return _unique_ci(hits)


def extract_items(text: str) -> list[str]:
    """Objects, technologies, SKU-like tokens and "need/want <thing>" phrases."""
    hits = _find_all(ITEM_PATTERNS, text)
    hits.extend(_find_words(TECH_NOUNS, text))
    hits.extend(_find_all(TECHNOLOGY_PATTERNS, text))
    hits.extend(
        _clean(m.group(1))
        for m in ITEM_VERBAL_CUE.finditer(text)
        if re.search(r"[a-z]", m.group(1), re.IGNORECASE)
    )
    return _unique_ci(hits)


def extract_technologies(text: str) -> list[str]:
    return _unique_ci(_find_all(TECHNOLOGY_PATTERNS, text))


def extract_capabilities(text: str) -> list[str]:
    return _unique_ci(_find_words(CAPABILITY_WORDS, text))


RULE_EXTRACTORS: dict[str, Callable[[str], list[str]]] = {
    "datetime": extract_datetimes,
    "person": extract_people,
    "location": extract_locations,
    "event": extract_events,
    "items": extract_items,
    "capability": extract_capabilities,
}


@dataclass
class ExtractedEntities:
    """Typed entity multimap plus token positions of each mention."""

    buckets: dict[str, list[str]] = field(default_factory=lambda: {b: [] for b in ENTITY_BUCKETS})
    positions: list[int] = field(default_factory=list)

    def count(self, bucket: str) -> int:
        return len(self.buckets.get(bucket, []))

    @property
    def total(self) -> int:
        return sum(len(values) for values in self.buckets.values())

    def add(self, bucket: str, value: str) -> None:
        values = self.buckets.setdefault(bucket, [])
        if value and value.lower() not in {v.lower() for v in values}:
            values.append(value)

    def non_empty(self) -> dict[str, list[str]]:
        return {bucket: list(values) for bucket, values in self.buckets.items() if values}


def group_ner_tokens(predictions: list[dict[str, Any]]) -> list[tuple[str, str]]:
    """Group token-level NER predictions into (bucket, text) spans.

    Tokens under NER_MIN_SCORE are dropped, BIO prefixes stripped and
    ``##`` subword pieces glued to the preceding token.

    Args:
        predictions: Items with ``entity``, ``word`` and ``score`` keys

    Returns:
        List of (bucket, text) pairs in order of appearance
    """
    spans: list[tuple[str, str]] = []
    label: str | None = None
    words = ""

    def flush() -> None:
        if label is not None and words.strip():
            spans.append((NER_LABELS.get(label.upper(), "items"), words.strip()))

    for prediction in predictions:
        score = float(prediction.get("score", 0.0))
        if score < NER_MIN_SCORE:
            continue

        raw_label = str(prediction.get("entity") or prediction.get("entity_group") or "")
        clean_label = re.sub(r"^[BI]-", "", raw_label)
        word = str(prediction.get("word", ""))
        piece = word[2:] if word.startswith("##") else word

        if raw_label.startswith("B-") or label is None or label != clean_label:
            flush()
            label, words = clean_label, piece
        elif word.startswith("##"):
            words += piece
        else:
            words += " " + piece

    flush()
    return spans


def _token_position(tokens: list[str], value: str) -> int | None:
    """Index of the first token of value within tokens."""
    value_tokens = tokenize(value)
    if not value_tokens:
        return None
    first = value_tokens[0]
    for i, token in enumerate(tokens):
        if token == first and tokens[i:i + len(value_tokens)] == value_tokens:
            return i
    try:
        return tokens.index(first)
    except ValueError:
        return None


async def extract_entities(text: str, tagger: NerTagger | None = None) -> ExtractedEntities:
    """Extract typed entities from an utterance.

    A tagger failure is logged and the rule-based pass still runs.

    Args:
        text: Utterance text
        tagger: Optional NER callable (sync or async) returning token predictions

    Returns:
        ExtractedEntities
    """
    entities = ExtractedEntities()

    if tagger is not None:
        try:
            predictions = tagger(text)
            if inspect.isawaitable(predictions):
                predictions = await predictions
            for bucket, value in group_ner_tokens(list(predictions or [])):
                entities.add(bucket, value)
        except Exception as e:
            logger.warning(f"NER tagger failed, using rule-based entities only: {e}")

    for bucket, extractor in RULE_EXTRACTORS.items():
        for value in extractor(text):
            entities.add(bucket, value)

    tokens = tokenize(text)
    positions = set()
    for values in entities.buckets.values():
        for value in values:
            position = _token_position(tokens, value)
            if position is not None:
                positions.add(position)
    entities.positions = sorted(positions)

    return entities
