# backend/tests/unit/test_context_store.py
import json

from flowbot.models.context import ConversationContext
from flowbot.models.messages import ContactProfile
from flowbot.services import context_store


def _in_flow(**overrides):
    values = {
        "current_flow_id": "flow-1",
        "current_node_id": "n2",
        "awaiting_input": True,
        "awaiting_input_type": "text",
        "flow_started_at": 1_000,
    }
    values.update(overrides)
    return ConversationContext(**values)


def test_clear_flow_resets_every_flow_field():
    cleared = context_store.clear_flow(_in_flow(variables={"name": "Amit"}))

    assert cleared.current_flow_id is None
    assert cleared.current_node_id is None
    assert cleared.flow_started_at is None
    assert cleared.awaiting_input is False
    assert cleared.awaiting_input_type is None
    assert cleared.variables == {"name": "Amit"}


def test_parse_defaults_malformed_fields():
    raw = {
        "currentFlowId": "flow-1",
        "currentNodeId": "n1",
        "awaitingInput": "definitely",
        "variables": ["not", "a", "dict"],
        "lastIntents": ["greeting"],
        "timezone": "Europe/Berlin",
    }
    context = context_store.parse_context(raw)

    assert context.current_flow_id == "flow-1"
    assert context.awaiting_input is False
    assert context.variables == {}
    assert context.last_intents == ["greeting"]
    assert context.timezone == "Europe/Berlin"


def test_parse_never_raises_on_garbage():
    assert context_store.parse_context(None).current_flow_id is None
    assert context_store.parse_context("{not json").variables == {}
    assert context_store.parse_context(42).last_intents == []
    assert context_store.parse_context(json.dumps({"language": "hi"})).language == "hi"


def test_parse_clears_half_set_flow_pointer():
    context = context_store.parse_context({"currentNodeId": "n1", "awaitingInput": True})

    assert context.current_node_id is None
    assert context.awaiting_input is False


def test_serialize_trims_history_and_uses_camel_case():
    context = ConversationContext(
        last_intents=[f"intent-{i}" for i in range(15)],
        last_responses=[f"reply-{i}" for i in range(12)],
        last_interaction_at=1,
    )
    raw = context_store.serialize_context(context)

    assert raw["lastIntents"] == [f"intent-{i}" for i in range(5, 15)]
    assert len(raw["lastResponses"]) == 10
    assert raw["lastInteractionAt"] > 1
    assert "currentFlowId" in raw


def test_history_helpers_are_bounded():
    context = ConversationContext()
    for i in range(25):
        context = context_store.add_intent_to_history(context, f"intent-{i}")
        context = context_store.add_response_to_history(context, f"reply-{i}")

    assert len(context.last_intents) == 10
    assert context.last_intents[-1] == "intent-24"
    assert len(context.last_responses) == 10


def test_update_merges_variables_and_accepts_camel_keys():
    context = ConversationContext(variables={"name": "Amit", "city": "Pune"})
    updated = context_store.update_context(context, {
        "variables": {"city": "Mumbai"},
        "awaitingInput": True,
        "unknownField": "ignored",
    })

    assert updated.variables == {"name": "Amit", "city": "Mumbai"}
    assert updated.awaiting_input is True
    assert context.variables == {"name": "Amit", "city": "Pune"}


def test_timeout_and_idle_predicates():
    context = _in_flow(flow_started_at=1, last_interaction_at=0)

    assert context_store.is_in_active_flow(context)
    assert context_store.is_awaiting_input(context)
    assert context_store.is_flow_timed_out(context, timeout_ms=1_000, now=1_002)
    assert not context_store.is_flow_timed_out(context, timeout_ms=1_000, now=1_001)
    assert context_store.is_conversation_idle(context, idle_ms=500, now=501)
    assert not context_store.is_flow_timed_out(ConversationContext(), now=10**13)


def test_start_flow_sets_pointer_and_start_time():
    context = context_store.start_flow(ConversationContext(awaiting_input=True), "flow-9", "start", now=42)

    assert (context.current_flow_id, context.current_node_id, context.flow_started_at) == ("flow-9", "start", 42)
    assert context.awaiting_input is False


def test_variable_helpers():
    context = context_store.set_variable(ConversationContext(), "plan", "gold")

    assert context_store.get_variable(context, "plan") == "gold"
    assert context_store.get_variable(context, "missing", "n/a") == "n/a"
    assert context_store.has_variable(context, "plan")
    assert not context_store.has_variable(context_store.delete_variable(context, "plan"), "plan")
    assert context_store.clear_variables(context).variables == {}


def test_interpolation_resolves_known_placeholders():
    contact = ContactProfile(id="c1", phone="919876543210", name="Amit")
    context = ConversationContext(variables={"plan": "Gold"})

    assert context_store.interpolate_variables("Hello {{contact.name}}", context, contact) == "Hello Amit"
    assert context_store.interpolate_variables("{{var.plan}} / {{context.plan}} / {{plan}}", context) == "Gold / Gold / Gold"
    assert context_store.interpolate_variables("Hi {{name}}", context, {"name": "Riya"}) == "Hi Riya"


def test_interpolation_leaves_unresolved_placeholders_verbatim():
    context = ConversationContext()

    assert context_store.interpolate_variables("{{missing.x}}", context) == "{{missing.x}}"
    assert context_store.interpolate_variables("Hi {{contact.email}}", context, {"name": "Amit"}) == "Hi {{contact.email}}"
