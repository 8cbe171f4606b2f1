"""Normalization of the payload shapes accepted by Orchestrator.ask()."""

from __future__ import annotations

import json
import logging
from typing import Any

from localassist.schemas import AskRequest, Intent, IntentItem

logger = logging.getLogger(__name__)

SYSTEM_GENERATED_PREFIX = "[System Generated] "

# Key aliases accepted in pre-classified payloads
_ALIASES = {
    "primaryIntent": "primary_intent",
    "sourceText": "source_text",
    "requiresMemoryAccess": "requires_memory_access",
    "captureScreen": "capture_context",
    "captureContext": "capture_context",
    "suggestedResponse": "suggested_response",
}


def _snake_keys(payload: dict[str, Any]) -> dict[str, Any]:
    return {_ALIASES.get(key, key): value for key, value in payload.items()}


def _intent_items(raw: Any) -> list[IntentItem]:
    items = []
    for entry in raw or []:
        if isinstance(entry, str):
            items.append(IntentItem(intent=entry))
        elif isinstance(entry, dict) and entry.get("intent"):
            confidence = entry.get("confidence", 0.8)
            try:
                confidence = max(0.0, min(1.0, float(confidence)))
            except (TypeError, ValueError):
                confidence = 0.8
            items.append(IntentItem(intent=str(entry["intent"]), confidence=confidence))
    return items


def _entities(raw: Any) -> dict[str, list[str]] | list[Any]:
    """Coerce entities to buckets of strings, keeping a list form as-is."""
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, dict):
        return {}

    buckets: dict[str, list[str]] = {}
    for key, value in raw.items():
        if isinstance(value, (list, tuple, set)):
            buckets[str(key)] = [str(item) for item in value if item is not None]
        elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
            buckets[str(key)] = [str(value)]
        else:
            logger.debug(f"Dropping entity bucket {key} of type {type(value).__name__}")
    return buckets


def _suggested_response(data: dict[str, Any]) -> str | None:
    value = data.get("suggested_response") or data.get("response")
    if value is None or isinstance(value, str):
        return value or None
    return json.dumps(value, default=str) if isinstance(value, (dict, list)) else str(value)


def _from_intents(payload: dict[str, Any]) -> AskRequest:
    """Canonical request from a payload that carries an intents list."""
    data = _snake_keys(payload)
    intents = _intent_items(data.get("intents"))
    primary = data.get("primary_intent") or (intents[0].intent if intents else Intent.QUESTION.value)

    return AskRequest(
        intents=intents,
        primary_intent=str(primary),
        entities=_entities(data.get("entities")),
        source_text=str(data.get("source_text") or data.get("message") or data.get("query") or ""),
        requires_memory_access=bool(data.get("requires_memory_access", False)),
        capture_context=bool(data.get("capture_context", False)),
        suggested_response=_suggested_response(data),
    )


def _fallback(payload: dict[str, Any]) -> AskRequest:
    """Canonical request for a mapping without an intents list."""
    data = _snake_keys(payload)

    source_text = data.get("source_text")
    if not source_text:
        for key in ("message", "query", "text"):
            if isinstance(data.get(key), str):
                source_text = data[key]
                break
        else:
            source_text = SYSTEM_GENERATED_PREFIX + json.dumps(payload, default=str)
            logger.warning("Using serialized payload as source text")

    intent = str(data.get("primary_intent") or data.get("intent") or Intent.QUESTION.value)
    return AskRequest(
        intents=[IntentItem(intent=intent, confidence=0.8)],
        primary_intent=intent,
        entities=_entities(data.get("entities")),
        source_text=str(source_text),
        requires_memory_access=bool(data.get("requires_memory_access", False)),
        capture_context=bool(data.get("capture_context", False)),
        suggested_response=_suggested_response(data),
    )


def _extract(payload: dict[str, Any]) -> AskRequest:
    nested = payload.get("payload")
    if isinstance(nested, dict) and nested.get("intents"):
        return _from_intents(nested)

    message = payload.get("message")
    if isinstance(message, str):
        try:
            parsed = json.loads(message)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return _extract(parsed)

    nested = payload.get("intentPayload") or payload.get("intent_payload")
    if isinstance(nested, dict) and nested.get("intents"):
        return _from_intents(nested)

    if isinstance(payload.get("intents"), list):
        return _from_intents(payload)

    return _fallback(payload)


def normalize_payload(payload: Any) -> AskRequest:
    """Map any accepted ask() payload onto one canonical request.

    Accepted shapes: a JSON string, plain text (treated as a question), a
    mapping with an ``intents`` list, envelopes nesting one under
    ``payload``, ``intentPayload`` or a JSON-encoded ``message``, and any
    other mapping (single intent from ``primaryIntent``/``intent``).

    Args:
        payload: Raw ask() payload

    Returns:
        AskRequest

    Raises:
        TypeError: If payload is neither a string nor a mapping
    """
    if isinstance(payload, AskRequest):
        return payload

    if isinstance(payload, str):
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return _extract(parsed)
        return AskRequest(
            intents=[IntentItem(intent=Intent.QUESTION.value, confidence=0.8)],
            primary_intent=Intent.QUESTION.value,
            source_text=payload,
        )

    if isinstance(payload, dict):
        return _extract(payload)

    raise TypeError(f"Invalid ask payload: expected str or mapping, got {type(payload).__name__}")
