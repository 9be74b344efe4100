# /flowbot/models/flow.py

import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from flowbot.models.context import InputType
from flowbot.models.messages import ListSection, ReplyButton

# Declarative shape of a tenant flow: a trigger rule plus a directed graph of
# typed nodes. Node payloads are validated once, when the flow is loaded, so
# the engine never has to inspect an untyped bag at execution time.

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)

_CONDITION_RE = re.compile(r"^\s*(\w+)\s*(==|!=|contains)\s*(.+?)\s*$")
_QUOTES_RE = re.compile(r"^[\"']|[\"']$")


class TriggerType(str, Enum):
    KEYWORD = "KEYWORD"
    FIRST_MESSAGE = "FIRST_MESSAGE"
    BUTTON_REPLY = "BUTTON_REPLY"
    LIST_REPLY = "LIST_REPLY"
    REGEX_PATTERN = "REGEX_PATTERN"
    ALL_MESSAGES = "ALL_MESSAGES"
    INACTIVITY = "INACTIVITY"


class EdgeCondition(BaseModel):
    """Parsed form of an edge expression such as `choice == "sales"`."""
    variable: str
    operator: Literal["==", "!=", "contains"]
    value: str

    @classmethod
    def parse(cls, expression: str) -> "EdgeCondition":
        match = _CONDITION_RE.match(expression)
        if not match:
            raise ValueError(f"Malformed edge condition: {expression!r}")
        variable, operator, value = match.groups()
        return cls(variable=variable, operator=operator, value=_QUOTES_RE.sub("", value.strip()))

    def evaluate(self, actual: Any) -> bool:
        """Case-insensitive comparison of `actual` against the expected value."""
        actual_text = str(actual).lower()
        expected = self.value.lower()
        if self.operator == "==":
            return actual_text == expected
        if self.operator == "!=":
            return actual_text != expected
        return expected in actual_text

    def __str__(self) -> str:
        return f'{self.variable} {self.operator} "{self.value}"'


class FlowEdge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    condition: Optional[EdgeCondition] = None
    label: Optional[str] = None

    @field_validator("condition", mode="before")
    @classmethod
    def parse_condition(cls, v):
        if isinstance(v, str):
            return EdgeCondition.parse(v) if v.strip() else None
        return v

    @field_serializer("condition")
    def _serialize_condition(self, condition: Optional[EdgeCondition]):
        return str(condition) if condition else None


# --- Node payloads ---

class SendMessageData(BaseModel):
    text: str


class SendButtonsData(BaseModel):
    body: str
    header: Optional[str] = None
    footer: Optional[str] = None
    buttons: List[ReplyButton] = Field(min_length=1)


class SendListData(BaseModel):
    body: str
    header: Optional[str] = None
    footer: Optional[str] = None
    button_text: str = "Select"
    sections: List[ListSection] = Field(min_length=1)

    model_config = _CAMEL


class SendTemplateData(BaseModel):
    name: str
    language: Optional[str] = None
    components: Optional[List[Dict[str, Any]]] = None


class SendMediaData(BaseModel):
    media_type: Literal["image", "document", "video", "audio"] = "image"
    url: str
    caption: Optional[str] = None
    filename: Optional[str] = None

    model_config = _CAMEL


class AskQuestionData(BaseModel):
    question: str
    input_type: InputType = "any"
    variable_name: str = "lastInput"

    model_config = _CAMEL


class SetVariableData(BaseModel):
    variable_name: str
    value: Any = None

    model_config = _CAMEL


class AssignAgentData(BaseModel):
    message: Optional[str] = None
    reason: Optional[str] = None


class TagData(BaseModel):
    tag: str


class DelayData(BaseModel):
    delay_ms: int = Field(default=1000, ge=0)

    model_config = _CAMEL


class EndData(BaseModel):
    message: Optional[str] = None


class ConditionData(BaseModel):
    """Branch-only node; routing is carried by the outgoing edge conditions."""
    label: Optional[str] = None


# --- Nodes ---

class _NodeBase(BaseModel):
    id: str
    position: Optional[Dict[str, float]] = None


class SendMessageNode(_NodeBase):
    type: Literal["SEND_MESSAGE"]
    data: SendMessageData


class SendButtonsNode(_NodeBase):
    type: Literal["SEND_BUTTONS"]
    data: SendButtonsData


class SendListNode(_NodeBase):
    type: Literal["SEND_LIST"]
    data: SendListData


class SendTemplateNode(_NodeBase):
    type: Literal["SEND_TEMPLATE"]
    data: SendTemplateData


class SendMediaNode(_NodeBase):
    type: Literal["SEND_MEDIA"]
    data: SendMediaData


class AskQuestionNode(_NodeBase):
    type: Literal["ASK_QUESTION"]
    data: AskQuestionData


class SetVariableNode(_NodeBase):
    type: Literal["SET_VARIABLE"]
    data: SetVariableData


class AssignAgentNode(_NodeBase):
    type: Literal["ASSIGN_AGENT"]
    data: AssignAgentData = Field(default_factory=AssignAgentData)


class AddTagNode(_NodeBase):
    type: Literal["ADD_TAG"]
    data: TagData


class RemoveTagNode(_NodeBase):
    type: Literal["REMOVE_TAG"]
    data: TagData


class DelayNode(_NodeBase):
    type: Literal["DELAY"]
    data: DelayData = Field(default_factory=DelayData)


class EndNode(_NodeBase):
    type: Literal["END"]
    data: EndData = Field(default_factory=EndData)


class ConditionNode(_NodeBase):
    type: Literal["CONDITION"]
    data: ConditionData = Field(default_factory=ConditionData)


# HTTP_REQUEST is deliberately absent: flows using it fail validation on load.
FlowNode = Annotated[
    Union[
        SendMessageNode,
        SendButtonsNode,
        SendListNode,
        SendTemplateNode,
        SendMediaNode,
        AskQuestionNode,
        SetVariableNode,
        AssignAgentNode,
        AddTagNode,
        RemoveTagNode,
        DelayNode,
        EndNode,
        ConditionNode,
    ],
    Field(discriminator="type"),
]


class FlowDefinition(BaseModel):
    start_node_id: str
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    variables: List[str] = Field(default_factory=list)

    model_config = _CAMEL

    _node_index: Dict[str, Any] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        for node in self.nodes:
            # First declaration wins; duplicates are reported by the validator.
            self._node_index.setdefault(node.id, node)

    def get_node(self, node_id: Optional[str]):
        if node_id is None:
            return None
        return self._node_index.get(node_id)

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]


class ChatbotFlow(BaseModel):
    """Tenant-owned automation. Read-only to the engine."""
    id: str
    tenant_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tenantId", "organizationId", "tenant_id"),
    )
    name: str = ""
    trigger_type: TriggerType
    trigger_keywords: List[str] = Field(default_factory=list)
    trigger_pattern: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    flow_definition: FlowDefinition

    model_config = _CAMEL

    @field_validator("trigger_keywords", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v
