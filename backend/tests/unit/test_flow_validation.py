# backend/tests/unit/test_flow_validation.py
import pytest

from flowbot.models.flow import AskQuestionNode, EdgeCondition, FlowEdge, TriggerType
from flowbot.workflows.validator import (
    FlowValidationError,
    load_flow,
    load_flows,
    validate_flow_definition,
    validate_trigger,
)

ASK = {"id": "n1", "type": "ASK_QUESTION", "data": {"question": "Your name?", "variableName": "name"}}
END = {"id": "n2", "type": "END", "data": {"message": "Bye"}}


def test_flow_parses_into_typed_nodes(flow_factory):
    flow = load_flow(flow_factory("f1", [ASK, END], [{"source": "n1", "target": "n2"}]))

    node = flow.flow_definition.get_node("n1")
    assert isinstance(node, AskQuestionNode)
    assert node.data.variable_name == "name"
    assert node.data.input_type == "any"
    assert flow.trigger_type == TriggerType.KEYWORD
    assert [edge.target for edge in flow.flow_definition.outgoing_edges("n1")] == ["n2"]


def test_unsupported_node_type_rejects_flow(flow_factory):
    http = {"id": "n1", "type": "HTTP_REQUEST", "data": {"url": "https://example.com"}}

    with pytest.raises(FlowValidationError) as exc_info:
        load_flow(flow_factory("f1", [http]))
    assert exc_info.value.reason == "unsupported_node_type"
    assert exc_info.value.flow_id == "f1"


def test_missing_node_data_rejects_flow(flow_factory):
    buttons = {"id": "n1", "type": "SEND_BUTTONS", "data": {"body": "Pick one", "buttons": []}}

    with pytest.raises(FlowValidationError) as exc_info:
        load_flow(flow_factory("f1", [buttons]))
    assert exc_info.value.reason == "invalid_definition"


def test_malformed_edge_condition_rejects_flow(flow_factory):
    edges = [{"source": "n1", "target": "n2", "condition": "name is Amit"}]

    with pytest.raises(FlowValidationError) as exc_info:
        load_flow(flow_factory("f1", [ASK, END], edges))
    assert exc_info.value.reason == "invalid_condition"


def test_load_flows_skips_bad_records(flow_factory):
    good = flow_factory("good", [END], start="n2")
    bad = flow_factory("bad", [{"id": "n1", "type": "HTTP_REQUEST", "data": {}}])

    flows = load_flows([bad, good, "not a flow"])
    assert [flow.id for flow in flows] == ["good"]


@pytest.mark.parametrize("expression, operator, value", [
    ('choice == "sales"', "==", "sales"),
    ("choice != 'support'", "!=", "support"),
    ("  choice contains refund ", "contains", "refund"),
])
def test_edge_condition_parsing(expression, operator, value):
    condition = EdgeCondition.parse(expression)
    assert (condition.variable, condition.operator, condition.value) == ("choice", operator, value)


def test_edge_condition_evaluation_is_case_insensitive():
    assert EdgeCondition.parse('choice == "Sales"').evaluate("SALES")
    assert EdgeCondition.parse('choice != "sales"').evaluate("support")
    assert EdgeCondition.parse('note contains "Refund"').evaluate("I want a REFUND please")
    assert not EdgeCondition.parse('choice == "sales"').evaluate("")


def test_edge_condition_round_trips_as_text():
    edge = FlowEdge(source="a", target="b", condition='choice == "sales"')
    assert edge.model_dump()["condition"] == 'choice == "sales"'
    assert FlowEdge(source="a", target="b", condition="  ").condition is None


def test_structural_problems_are_reported_not_raised(flow_factory):
    flow = load_flow(flow_factory("f1", [ASK], [{"source": "n1", "target": "ghost"}], start="n1"))
    result = validate_flow_definition(flow.flow_definition)
    assert result["is_valid"] is False
    assert result["error_code"] == "DANGLING_EDGE"

    missing_start = load_flow(flow_factory("f2", [ASK], start="nope"))
    assert validate_flow_definition(missing_start.flow_definition)["error_code"] == "MISSING_START_NODE"


def test_trigger_validation(flow_factory):
    regex = load_flow(flow_factory("f1", [END], start="n2", trigger_type="REGEX_PATTERN", keywords=(), triggerPattern="(unclosed"))
    assert validate_trigger(regex)["error_code"] == "INVALID_TRIGGER_PATTERN"

    keyword = load_flow(flow_factory("f2", [END], start="n2", keywords=("  ",)))
    assert validate_trigger(keyword)["error_code"] == "EMPTY_TRIGGER_KEYWORDS"

    first_message = load_flow(flow_factory("f3", [END], start="n2", trigger_type="FIRST_MESSAGE", keywords=()))
    assert validate_trigger(first_message)["is_valid"] is True
