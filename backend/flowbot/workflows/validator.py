# /flowbot/workflows/validator.py

"""
Load-time validation for tenant flow definitions.

Raw flow records are turned into ChatbotFlow models exactly once, when they
enter the flow cache. Two levels of checking happen here:

- Model validation (node payloads, edge conditions, node types). A flow
  failing it is rejected outright; this is how unsupported node types such
  as HTTP_REQUEST and malformed edge conditions are kept out of the engine.
- Structural checks (start node present, unique node ids, edges pointing at
  declared nodes, usable trigger). These only produce warnings: the engine
  degrades gracefully at runtime (fallback response or cleared flow).
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, TypedDict

from pydantic import ValidationError

from flowbot.models.flow import ChatbotFlow, FlowDefinition, TriggerType
from flowbot.utils.metrics import flows_rejected_counter

logger = logging.getLogger(__name__)


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


class FlowValidationError(ValueError):
    """Raised when a raw flow record cannot be turned into a ChatbotFlow."""

    def __init__(self, flow_id: Optional[str], reason: str, message: str):
        super().__init__(f"Flow {flow_id or '<unknown>'} rejected ({reason}): {message}")
        self.flow_id = flow_id
        self.reason = reason


_VALID: ValidationResult = {"is_valid": True, "error_code": None, "message": None}


def _invalid(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def validate_flow_definition(definition: FlowDefinition) -> ValidationResult:
    """
    Check the graph structure of a flow definition.

    Args:
        definition: The parsed flow definition

    Returns:
        ValidationResult with is_valid=True if the graph is consistent
    """
    seen = set()
    duplicates = []
    for node in definition.nodes:
        if node.id in seen:
            duplicates.append(node.id)
        seen.add(node.id)

    if duplicates:
        return _invalid("DUPLICATE_NODE_ID", f"Duplicate node ids: {', '.join(duplicates)}")

    if definition.start_node_id not in seen:
        return _invalid("MISSING_START_NODE", f"Start node '{definition.start_node_id}' is not defined")

    dangling = [
        f"{edge.source}->{edge.target}"
        for edge in definition.edges
        if edge.source not in seen or edge.target not in seen
    ]
    if dangling:
        return _invalid("DANGLING_EDGE", f"Edges reference unknown nodes: {', '.join(dangling)}")

    return _VALID


def validate_trigger(flow: ChatbotFlow) -> ValidationResult:
    """
    Check that a flow's trigger can ever fire.

    Args:
        flow: The parsed flow

    Returns:
        ValidationResult with is_valid=True if the trigger is usable
    """
    if flow.trigger_type == TriggerType.REGEX_PATTERN:
        if not flow.trigger_pattern:
            return _invalid("MISSING_TRIGGER_PATTERN", "REGEX_PATTERN trigger has no pattern")
        try:
            re.compile(flow.trigger_pattern)
        except re.error as e:
            return _invalid("INVALID_TRIGGER_PATTERN", f"Trigger pattern does not compile: {e}")

    if flow.trigger_type in (TriggerType.KEYWORD, TriggerType.BUTTON_REPLY, TriggerType.LIST_REPLY):
        if not any(keyword.strip() for keyword in flow.trigger_keywords):
            return _invalid("EMPTY_TRIGGER_KEYWORDS", f"{flow.trigger_type.value} trigger has no keywords")

    return _VALID


def _rejection_reason(error: ValidationError) -> str:
    for detail in error.errors():
        if detail.get("type") == "union_tag_invalid":
            return "unsupported_node_type"
        if "condition" in detail.get("loc", ()):
            return "invalid_condition"
    return "invalid_definition"


def load_flow(raw: Any) -> ChatbotFlow:
    """
    Parse and check one flow record.

    Raises:
        FlowValidationError: if the record is not a valid flow
    """
    if isinstance(raw, ChatbotFlow):
        flow = raw
    else:
        flow_id = raw.get("id") if isinstance(raw, Mapping) else None
        try:
            flow = ChatbotFlow.model_validate(raw)
        except ValidationError as e:
            raise FlowValidationError(flow_id, _rejection_reason(e), str(e)) from e

    for result in (validate_flow_definition(flow.flow_definition), validate_trigger(flow)):
        if not result["is_valid"]:
            logger.warning(f"Flow {flow.id} loaded with problem {result['error_code']}: {result['message']}")
    return flow


def load_flows(raws: Iterable[Any]) -> List[ChatbotFlow]:
    """Parse a batch of flow records, skipping (and counting) the ones that fail."""
    flows = []
    for raw in raws:
        try:
            flows.append(load_flow(raw))
        except FlowValidationError as e:
            flows_rejected_counter.labels(reason=e.reason).inc()
            logger.warning(str(e))
    return flows
