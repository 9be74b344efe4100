# /flowbot/services/context_store.py

"""
Conversation context codec.

Pure transformations between the loosely-typed record the caller persists
and a ConversationContext value, plus the small derived queries the engine
needs (active flow, awaiting input, timeouts).

Nothing here performs I/O. Every helper returns a new context; the input
is never mutated.
"""

import json
import logging
import re
from typing import Any, Dict, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from flowbot.models.context import ConversationContext, now_ms

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
DEFAULT_FLOW_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_IDLE_THRESHOLD_MS = 5 * 60 * 1000

_FIELD_ADAPTERS = {
    name: TypeAdapter(field.annotation)
    for name, field in ConversationContext.model_fields.items()
}
_ALIAS_TO_NAME = {
    field.alias: name
    for name, field in ConversationContext.model_fields.items()
    if field.alias
}

# Fields that are only meaningful while a flow is active; always reset together.
_FLOW_FIELDS = {
    "current_flow_id": None,
    "current_node_id": None,
    "flow_started_at": None,
    "awaiting_input": False,
    "awaiting_input_type": None,
}

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+(?:\.\w+)?)\}\}")
_VARIABLE_SCOPES = {"var", "variables", "context"}


def create_default_context() -> ConversationContext:
    return ConversationContext()


def parse_context(raw: Any) -> ConversationContext:
    """
    Build a context from persisted data.

    Never raises: a missing or malformed field falls back to its default,
    and anything that is not a mapping (or JSON text of one) yields a
    default context.
    """
    if isinstance(raw, ConversationContext):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Persisted context is not valid JSON; using defaults.")
            return create_default_context()
    if not isinstance(raw, Mapping):
        return create_default_context()

    values: Dict[str, Any] = {}
    for name, field in ConversationContext.model_fields.items():
        key = field.alias if field.alias in raw else name
        if raw.get(key) is None:
            continue
        try:
            values[name] = _FIELD_ADAPTERS[name].validate_python(raw[key])
        except ValidationError:
            logger.warning(f"Dropping malformed context field '{key}'; using its default.")

    context = ConversationContext(**values)
    if not is_in_active_flow(context):
        context = clear_flow(context)
    return context


def serialize_context(context: ConversationContext) -> Dict[str, Any]:
    """camelCase record for storage, with bounded history and a fresh lastInteractionAt."""
    trimmed = context.model_copy(update={
        "last_intents": context.last_intents[-HISTORY_LIMIT:],
        "last_responses": context.last_responses[-HISTORY_LIMIT:],
        "last_interaction_at": now_ms(),
    })
    return trimmed.model_dump(by_alias=True, mode="json")


def _normalize_keys(updates: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in updates.items():
        name = _ALIAS_TO_NAME.get(key, key)
        if name not in ConversationContext.model_fields:
            logger.debug(f"Ignoring unknown context update key '{key}'.")
            continue
        normalized[name] = value
    return normalized


def update_context(context: ConversationContext, updates: Mapping[str, Any]) -> ConversationContext:
    """Shallow merge of `updates` (snake_case or camelCase keys); `variables` is merged key by key."""
    normalized = _normalize_keys(updates)
    data = context.model_dump()
    data.update(normalized)
    data["variables"] = {**context.variables, **(normalized.get("variables") or {})}
    data["last_interaction_at"] = now_ms()
    return ConversationContext.model_validate(data)


def context_to_updates(context: ConversationContext) -> Dict[str, Any]:
    """Full field-by-field update describing `context`."""
    return context.model_dump()


# --- History ---

def add_intent_to_history(context: ConversationContext, intent: str) -> ConversationContext:
    return context.model_copy(update={
        "last_intents": [*context.last_intents[-(HISTORY_LIMIT - 1):], intent],
        "last_interaction_at": now_ms(),
    })


def add_response_to_history(context: ConversationContext, response: str) -> ConversationContext:
    return context.model_copy(update={
        "last_responses": [*context.last_responses[-(HISTORY_LIMIT - 1):], response],
    })


# --- Flow pointers ---

def start_flow(context: ConversationContext, flow_id: str, start_node_id: str, now: Optional[int] = None) -> ConversationContext:
    return context.model_copy(update={
        "current_flow_id": flow_id,
        "current_node_id": start_node_id,
        "flow_started_at": now if now is not None else now_ms(),
        "awaiting_input": False,
        "awaiting_input_type": None,
    })


def clear_flow(context: ConversationContext) -> ConversationContext:
    return context.model_copy(update=_FLOW_FIELDS)


def is_in_active_flow(context: ConversationContext) -> bool:
    return bool(context.current_flow_id) and bool(context.current_node_id)


def is_awaiting_input(context: ConversationContext) -> bool:
    return context.awaiting_input is True


def is_flow_timed_out(
    context: ConversationContext,
    timeout_ms: int = DEFAULT_FLOW_TIMEOUT_MS,
    now: Optional[int] = None,
) -> bool:
    if not context.flow_started_at:
        return False
    current = now if now is not None else now_ms()
    return current - context.flow_started_at > timeout_ms


def get_idle_time(context: ConversationContext, now: Optional[int] = None) -> int:
    current = now if now is not None else now_ms()
    return current - context.last_interaction_at


def is_conversation_idle(
    context: ConversationContext,
    idle_ms: int = DEFAULT_IDLE_THRESHOLD_MS,
    now: Optional[int] = None,
) -> bool:
    return get_idle_time(context, now) > idle_ms


# --- Variables ---

def set_variable(context: ConversationContext, name: str, value: Any) -> ConversationContext:
    return context.model_copy(update={"variables": {**context.variables, name: value}})


def get_variable(context: ConversationContext, name: str, default: Any = None) -> Any:
    value = context.variables.get(name)
    return default if value is None else value


def has_variable(context: ConversationContext, name: str) -> bool:
    return name in context.variables


def delete_variable(context: ConversationContext, name: str) -> ConversationContext:
    remaining = {key: value for key, value in context.variables.items() if key != name}
    return context.model_copy(update={"variables": remaining})


def clear_variables(context: ConversationContext) -> ConversationContext:
    return context.model_copy(update={"variables": {}})


# --- Interpolation ---

def _contact_fields(contact: Any) -> Dict[str, Any]:
    if contact is None:
        return {}
    if isinstance(contact, Mapping):
        return dict(contact)
    return contact.model_dump()


def interpolate_variables(text: str, context: ConversationContext, contact: Any = None) -> str:
    """
    Replace {{name}}, {{contact.field}} and {{var.name}} / {{variables.name}} /
    {{context.name}} placeholders. Placeholders that cannot be resolved are
    left in the output verbatim.
    """
    if not text:
        return text
    contact_fields = _contact_fields(contact)

    def _replace(match: re.Match) -> str:
        parts = match.group(1).split(".")
        if len(parts) == 2:
            scope, key = parts
            if scope == "contact":
                value = contact_fields.get(key)
            elif scope in _VARIABLE_SCOPES:
                value = context.variables.get(key)
            else:
                value = None
        else:
            value = context.variables.get(parts[0])
            if value is None:
                value = contact_fields.get(parts[0])
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, text)
