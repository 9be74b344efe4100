# backend/tests/unit/test_engine.py
import pytest
from unittest.mock import AsyncMock, MagicMock

from flowbot.config import strings
from flowbot.models.context import now_ms
from flowbot.models.messages import BotIncomingMessage
from flowbot.services.flow_cache import FlowFetchError
from flowbot.workflows.engine import BotEngine, create_bot_engine


def send(node_id, text):
    return {"id": node_id, "type": "SEND_MESSAGE", "data": {"text": text}}


def end(node_id, message=None):
    return {"id": node_id, "type": "END", "data": {"message": message} if message else {}}


def chain(*node_ids):
    return [{"source": a, "target": b} for a, b in zip(node_ids, node_ids[1:])]


@pytest.fixture
def build_engine():
    def _build(flows, **kwargs):
        fetch = AsyncMock(return_value=flows)
        return BotEngine(fetch_flows=fetch, **kwargs), fetch
    return _build


@pytest.fixture
def build_message(message_factory):
    def _build(text=None, **overrides):
        return BotIncomingMessage.model_validate(message_factory(text, **overrides))
    return _build


def _texts(response):
    return [m.text if m.type == "text" else m.interactive.body for m in response.messages]


# --- Flow execution ---

@pytest.mark.asyncio
async def test_chain_runs_to_end_in_one_call(build_engine, build_message, flow_factory):
    nodes = [
        send("n1", "Hi {{contact.name}}"),
        {"id": "n2", "type": "SET_VARIABLE", "data": {"variableName": "plan", "value": "gold"}},
        send("n3", "Plan: {{plan}}"),
        end("n4"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3", "n4"), keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert _texts(response) == ["Hi Amit", "Plan: gold"]
    updates = response.context_updates
    assert updates["current_flow_id"] is None
    assert updates["current_node_id"] is None
    assert updates["awaiting_input"] is False
    assert updates["variables"] == {"plan": "gold"}
    assert updates["last_responses"] == ["Hi Amit"]
    assert response.transfer_to_human is False


@pytest.mark.asyncio
async def test_ask_question_halts_and_resumes_with_captured_input(build_engine, build_message, flow_factory):
    nodes = [
        {"id": "n1", "type": "ASK_QUESTION", "data": {"question": "What's your name?", "variableName": "name", "inputType": "text"}},
        send("n2", "Thanks {{name}}"),
        send("n3", "Anything else?"),
        end("n4"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3", "n4"), keywords=["demo"])])

    asked = await engine.process_message(build_message("demo"))

    assert _texts(asked) == ["What's your name?"]
    assert asked.context_updates["awaiting_input"] is True
    assert asked.context_updates["awaiting_input_type"] == "text"
    assert asked.context_updates["current_flow_id"] == "f1"
    assert asked.context_updates["current_node_id"] == "n1"

    stored = {**asked.context_updates, "last_interaction_at": now_ms() - 600_000}
    before = now_ms()
    answered = await engine.process_message(build_message("Riya", context=stored))

    assert _texts(answered) == ["Thanks Riya", "Anything else?"]
    assert answered.context_updates["variables"]["name"] == "Riya"
    assert answered.context_updates["current_flow_id"] is None
    assert answered.context_updates["last_interaction_at"] >= before


@pytest.mark.asyncio
async def test_set_variable_interpolates_wrapped_value(build_engine, build_message, flow_factory):
    nodes = [
        {"id": "n1", "type": "SET_VARIABLE", "data": {"variableName": "who", "value": "{{contact.name}} {{contact.phone}}"}},
        {"id": "n2", "type": "SET_VARIABLE", "data": {"variableName": "note", "value": "Hi {{contact.name}}"}},
        send("n3", "={{who}}"),
        end("n4"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3", "n4"), keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert _texts(response) == ["=Amit 919876543210"]
    assert response.context_updates["variables"] == {"who": "Amit 919876543210", "note": "Hi {{contact.name}}"}


@pytest.mark.asyncio
@pytest.mark.parametrize("reply, expected", [
    ("SALES", "Routing you to sales"),
    ("I need help", "Routing you to support"),
    ("something else", "Routing you to the front desk"),
])
async def test_conditioned_edges_branch_on_captured_input(build_engine, build_message, flow_factory, reply, expected):
    nodes = [
        {"id": "ask", "type": "ASK_QUESTION", "data": {"question": "Sales or support?", "variableName": "choice"}},
        send("sales", "Routing you to sales"),
        send("support", "Routing you to support"),
        send("desk", "Routing you to the front desk"),
    ]
    edges = [
        {"source": "ask", "target": "sales", "condition": 'choice == "sales"'},
        {"source": "ask", "target": "support", "condition": 'choice contains "help"'},
        {"source": "ask", "target": "desk"},
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, edges, start="ask", keywords=["demo"])])

    asked = await engine.process_message(build_message("demo"))
    routed = await engine.process_message(build_message(reply, context=asked.context_updates))

    assert _texts(routed) == [expected]
    assert routed.context_updates["current_flow_id"] is None


@pytest.mark.asyncio
async def test_button_reply_is_captured_by_id(build_engine, build_message, flow_factory):
    nodes = [
        {"id": "n1", "type": "SEND_BUTTONS", "data": {"body": "Pick", "buttons": [{"id": "opt_a", "title": "A"}]}},
        {"id": "n2", "type": "ASK_QUESTION", "data": {"question": "Confirm?"}},
        send("n3", "You said {{lastInput}}"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3"), keywords=["demo"])])

    asked = await engine.process_message(build_message("demo"))
    assert asked.messages[0].interactive.buttons[0].id == "opt_a"

    reply = build_message(msg_type="interactive", buttonId="opt_a", buttonTitle="A", context=asked.context_updates)
    answered = await engine.process_message(reply)
    assert _texts(answered) == ["You said opt_a"]


@pytest.mark.asyncio
async def test_delay_applies_to_next_message(build_engine, build_message, flow_factory):
    nodes = [
        send("n1", "first"),
        {"id": "n2", "type": "DELAY", "data": {"delayMs": 2500}},
        send("n3", "second"),
        end("n4"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3", "n4"), keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert [m.delay for m in response.messages] == [None, 2500]


@pytest.mark.asyncio
async def test_assign_agent_transfers_and_stops(build_engine, build_message, flow_factory):
    nodes = [
        send("n1", "one"),
        {"id": "n2", "type": "ASSIGN_AGENT", "data": {"reason": "VIP customer"}},
        send("n3", "never sent"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3"), keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert _texts(response) == ["one", strings.ASSIGN_AGENT_DEFAULT_TEXT]
    assert response.transfer_to_human is True
    assert response.transfer_reason == "VIP customer"
    assert response.context_updates["current_flow_id"] is None


@pytest.mark.asyncio
async def test_tag_nodes_emit_actions(build_engine, build_message, flow_factory):
    nodes = [
        {"id": "n1", "type": "ADD_TAG", "data": {"tag": "vip"}},
        {"id": "n2", "type": "REMOVE_TAG", "data": {"tag": "lead"}},
        end("n3", "Done, {{contact.name}}"),
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, chain("n1", "n2", "n3"), keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert [(a.type, a.payload) for a in response.actions] == [("add_tag", {"tag": "vip"}), ("remove_tag", {"tag": "lead"})]
    assert _texts(response) == ["Done, Amit"]


@pytest.mark.asyncio
async def test_condition_node_routes_to_template(build_engine, build_message, flow_factory):
    nodes = [
        {"id": "n0", "type": "SET_VARIABLE", "data": {"variableName": "tier", "value": "gold"}},
        {"id": "n1", "type": "CONDITION", "data": {"label": "Tier?"}},
        {"id": "gold", "type": "SEND_TEMPLATE", "data": {"name": "gold_welcome"}},
        {"id": "other", "type": "SEND_MEDIA", "data": {"mediaType": "image", "url": "https://cdn.example.com/x.png", "caption": "Hi {{contact.name}}"}},
    ]
    edges = chain("n0", "n1") + [
        {"source": "n1", "target": "gold", "condition": 'tier == "gold"'},
        {"source": "n1", "target": "other"},
    ]
    engine, _ = build_engine([flow_factory("f1", nodes, edges, start="n0", keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert len(response.messages) == 1
    assert response.messages[0].type == "template"
    assert response.messages[0].template.name == "gold_welcome"
    assert response.messages[0].template.language == "en"


@pytest.mark.asyncio
async def test_cyclic_graph_stops_at_hop_cap(build_engine, build_message, flow_factory):
    edges = [{"source": "n1", "target": "n2"}, {"source": "n2", "target": "n1"}]
    engine, _ = build_engine(
        [flow_factory("loop", [send("n1", "ping"), send("n2", "pong")], edges, keywords=["demo"])],
        max_node_hops=5,
    )

    response = await engine.process_message(build_message("demo"))

    assert _texts(response) == ["ping", "pong", "ping", "pong", "ping"]
    assert response.context_updates["current_flow_id"] is None


@pytest.mark.asyncio
async def test_missing_start_node_returns_flow_error_menu(build_engine, build_message, flow_factory):
    engine, _ = build_engine([flow_factory("f1", [send("n1", "hi")], start="ghost", keywords=["demo"])])

    response = await engine.process_message(build_message("demo"))

    assert _texts(response) == [strings.FLOW_ERROR_BODY]
    assert [b.id for b in response.messages[0].interactive.buttons] == ["menu_help", "menu_human"]
    assert response.context_updates["current_flow_id"] is None


# --- Trigger matching ---

@pytest.mark.asyncio
async def test_highest_priority_keyword_flow_wins(build_engine, build_message, flow_factory):
    flows = [
        flow_factory("p10", [send("n1", "from p10")], keywords=["demo"], priority=10),
        flow_factory("p20", [send("n1", "from p20")], keywords=["demo"], priority=20),
        flow_factory("p5", [send("n1", "from p5")], keywords=["demo"], priority=5),
    ]
    engine, _ = build_engine(flows)

    response = await engine.process_message(build_message("run the DEMO please"))

    assert _texts(response) == ["from p20"]


@pytest.mark.asyncio
async def test_equal_priority_uses_declaration_order(build_engine, build_message, flow_factory):
    flows = [
        flow_factory("first", [send("n1", "first")], keywords=["demo"], priority=3),
        flow_factory("second", [send("n1", "second")], keywords=["demo"], priority=3),
    ]
    engine, _ = build_engine(flows)

    assert _texts(await engine.process_message(build_message("demo"))) == ["first"]


@pytest.mark.asyncio
async def test_invalid_regex_trigger_is_skipped(build_engine, build_message, flow_factory):
    flows = [
        flow_factory("bad", [send("n1", "bad")], trigger_type="REGEX_PATTERN", keywords=(), priority=10, triggerPattern="(unclosed"),
        flow_factory("good", [send("n1", "good")], trigger_type="REGEX_PATTERN", keywords=(), triggerPattern=r"^order\s+\d+$"),
    ]
    engine, _ = build_engine(flows)

    assert _texts(await engine.process_message(build_message("ORDER 123"))) == ["good"]


@pytest.mark.asyncio
async def test_reply_triggers(build_engine, build_message, flow_factory):
    flows = [
        flow_factory("buttons", [send("n1", "button flow")], trigger_type="BUTTON_REPLY", keywords=["plan_gold"]),
        flow_factory("lists", [send("n1", "list flow")], trigger_type="LIST_REPLY", keywords=["row_7"]),
    ]
    engine, _ = build_engine(flows)

    button = await engine.process_message(build_message(msg_type="interactive", buttonId="plan_gold"))
    listed = await engine.process_message(build_message(msg_type="interactive", listId="row_7"))

    assert _texts(button) == ["button flow"]
    assert _texts(listed) == ["list flow"]


@pytest.mark.asyncio
async def test_first_message_trigger_only_fires_once(mocker, build_engine, build_message, flow_factory):
    mocker.patch("flowbot.services.intent_handlers._current_hour", return_value=10)
    engine, _ = build_engine([flow_factory("welcome", [send("n1", "Welcome aboard")], trigger_type="FIRST_MESSAGE", keywords=())])

    first = await engine.process_message(build_message("hello"))
    second = await engine.process_message(build_message("hello", context=first.context_updates))

    assert _texts(first) == ["Welcome aboard"]
    assert first.context_updates["last_intents"] == ["greeting"]
    assert _texts(second)[0].startswith("Good morning, Amit!")


@pytest.mark.asyncio
async def test_all_messages_only_catches_unknown(mocker, build_engine, build_message, flow_factory):
    mocker.patch("flowbot.services.intent_handlers._current_hour", return_value=20)
    engine, _ = build_engine([flow_factory("catch", [send("n1", "caught")], trigger_type="ALL_MESSAGES", keywords=())])

    assert _texts(await engine.process_message(build_message("xyzzy"))) == ["caught"]
    assert _texts(await engine.process_message(build_message("hello")))[0].startswith("Good evening")


@pytest.mark.asyncio
async def test_inactivity_flows_never_match_inbound(build_engine, build_message, flow_factory):
    engine, _ = build_engine([flow_factory("nudge", [send("n1", "still there?")], trigger_type="INACTIVITY", keywords=())])

    response = await engine.process_message(build_message("xyzzy"))

    assert _texts(response) == [strings.FALLBACK_BODY]


# --- Intent path and recovery ---

@pytest.mark.asyncio
async def test_intent_path_records_history(mocker, build_engine, build_message):
    mocker.patch("flowbot.services.intent_handlers._current_hour", return_value=14)
    engine, _ = build_engine([])

    response = await engine.process_message(build_message("hello"))

    assert response.context_updates["last_intents"] == ["greeting"]
    assert response.context_updates["last_responses"][0].startswith("Good afternoon, Amit!")


@pytest.mark.asyncio
async def test_third_unknown_turn_offers_human(build_engine, build_message):
    engine, _ = build_engine([])

    first = await engine.process_message(build_message("xyzzy"))
    second = await engine.process_message(build_message("plugh", context=first.context_updates))
    third = await engine.process_message(build_message("frobnicate", context=second.context_updates))

    def button_ids(response):
        return [b.id for b in response.messages[0].interactive.buttons]

    assert "menu_human" not in button_ids(first)
    assert "menu_human" not in button_ids(second)
    assert "menu_human" in button_ids(third)
    assert third.context_updates["last_intents"] == ["unknown", "unknown", "unknown"]


@pytest.mark.asyncio
async def test_timed_out_flow_falls_through_to_intents(mocker, build_engine, build_message, flow_factory):
    mocker.patch("flowbot.services.intent_handlers._current_hour", return_value=10)
    flow = flow_factory("f1", [{"id": "n1", "type": "ASK_QUESTION", "data": {"question": "?"}}], keywords=["demo"])
    engine, _ = build_engine([flow], flow_timeout_seconds=60)
    stale = {"currentFlowId": "f1", "currentNodeId": "n1", "awaitingInput": True, "flowStartedAt": now_ms() - 61_000}

    response = await engine.process_message(build_message("hello", context=stale))

    assert _texts(response)[0].startswith("Good morning")
    assert response.context_updates["current_flow_id"] is None
    assert "lastInput" not in response.context_updates["variables"]


@pytest.mark.asyncio
async def test_deleted_flow_is_cleared_and_intents_take_over(build_engine, build_message):
    engine, _ = build_engine([])
    dangling = {"currentFlowId": "gone", "currentNodeId": "n1", "flowStartedAt": now_ms()}

    response = await engine.process_message(build_message("xyzzy", context=dangling))

    assert _texts(response) == [strings.FALLBACK_BODY]
    assert response.context_updates["current_flow_id"] is None
    assert response.context_updates["current_node_id"] is None


@pytest.mark.asyncio
async def test_active_flow_advances_from_stored_node(build_engine, build_message, flow_factory):
    flow = flow_factory("f1", [send("n1", "one"), send("n2", "two")], chain("n1", "n2"))
    engine, _ = build_engine([flow])
    resumed = {"currentFlowId": "f1", "currentNodeId": "n1", "flowStartedAt": now_ms()}

    response = await engine.process_message(build_message("ok", context=resumed))

    assert _texts(response) == ["two"]
    assert response.context_updates["current_flow_id"] is None
    assert response.context_updates["last_intents"] == []


@pytest.mark.asyncio
async def test_stored_node_without_edges_ends_flow_silently(build_engine, build_message, flow_factory):
    engine, _ = build_engine([flow_factory("f1", [send("n1", "one")])])
    resumed = {"currentFlowId": "f1", "currentNodeId": "n1", "flowStartedAt": now_ms()}

    response = await engine.process_message(build_message("ok", context=resumed))

    assert response.messages == []
    assert response.context_updates["current_flow_id"] is None
    assert response.context_updates["current_node_id"] is None


@pytest.mark.asyncio
async def test_missing_stored_node_is_cleared_and_intents_take_over(build_engine, build_message, flow_factory):
    engine, _ = build_engine([flow_factory("f1", [send("n1", "one")])])
    dangling = {"currentFlowId": "f1", "currentNodeId": "ghost", "flowStartedAt": now_ms()}

    response = await engine.process_message(build_message("xyzzy", context=dangling))

    assert _texts(response) == [strings.FALLBACK_BODY]
    assert response.context_updates["current_flow_id"] is None
    assert response.context_updates["current_node_id"] is None
    assert response.context_updates["last_intents"] == ["unknown"]


@pytest.mark.asyncio
async def test_fetch_failure_propagates(build_message):
    engine = create_bot_engine(fetch_flows=AsyncMock(side_effect=ConnectionError("db down")))

    with pytest.raises(FlowFetchError):
        await engine.process_message(build_message("hello"))


@pytest.mark.asyncio
async def test_unexpected_error_returns_apology(build_engine, build_message):
    detector = MagicMock()
    detector.detect.side_effect = RuntimeError("boom")
    engine, _ = build_engine([], intent_detector=detector)

    response = await engine.process_message(build_message("hello"))

    assert _texts(response) == [strings.ENGINE_ERROR_TEXT]
    assert response.transfer_to_human is False
    assert response.context_updates == {}


@pytest.mark.asyncio
async def test_flow_cache_is_shared_across_turns(build_engine, build_message):
    engine, fetch = build_engine([])

    await engine.process_message(build_message("xyzzy"))
    await engine.process_message(build_message("xyzzy"))
    assert fetch.await_count == 1

    engine.clear_flow_cache("tenant-1")
    await engine.process_message(build_message("xyzzy"))
    assert fetch.await_count == 2

    engine.set_flow_cache_ttl(0)
    await engine.process_message(build_message("xyzzy"))
    assert fetch.await_count == 3
