# /flowbot/models/messages.py

from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    FieldSerializationInfo,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from flowbot.models.context import ConversationContext
from flowbot.services.context_store import parse_context

# This file defines the shapes that cross the engine boundary: the inbound
# message handed to the engine and the response it returns to the caller.

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Interactive building blocks (shared with flow node data) ---

class ReplyButton(BaseModel):
    id: str
    title: str


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(BaseModel):
    title: Optional[str] = None
    rows: List[ListRow] = Field(default_factory=list)


class InteractiveContent(BaseModel):
    type: Literal["button", "list"]
    header: Optional[str] = None
    body: str
    footer: Optional[str] = None
    buttons: Optional[List[ReplyButton]] = None
    sections: Optional[List[ListSection]] = None
    button_text: Optional[str] = None

    model_config = _CAMEL


class TemplateContent(BaseModel):
    name: str
    language: str = "en"
    components: Optional[List[Dict[str, Any]]] = None


class MediaContent(BaseModel):
    type: Literal["image", "document", "video", "audio"]
    url: str
    caption: Optional[str] = None
    filename: Optional[str] = None


class BotResponseMessage(BaseModel):
    """One outbound message, in channel-neutral form."""
    type: Literal["text", "template", "image", "document", "video", "audio", "interactive"]
    text: Optional[str] = None
    template: Optional[TemplateContent] = None
    media: Optional[MediaContent] = None
    interactive: Optional[InteractiveContent] = None
    delay: Optional[int] = Field(default=None, description="Milliseconds to wait before sending")


ActionType = Literal[
    "add_tag",
    "remove_tag",
    "set_variable",
    "update_contact",
    "create_task",
    "send_notification",
]


class BotAction(BaseModel):
    """A side effect the caller is expected to carry out."""
    type: ActionType
    payload: Dict[str, Any] = Field(default_factory=dict)


class BotResponse(BaseModel):
    """
    Output of one engine turn. Nothing here is persisted by the engine; the
    caller sends the messages, merges context_updates into storage and runs
    the actions.
    """
    messages: List[BotResponseMessage] = Field(default_factory=list)
    context_updates: Dict[str, Any] = Field(
        default_factory=dict,
        description="ConversationContext field name -> new value",
    )
    actions: List[BotAction] = Field(default_factory=list)
    transfer_to_human: bool = False
    transfer_reason: Optional[str] = None

    model_config = _CAMEL

    @field_serializer("context_updates")
    def _serialize_context_updates(self, updates: Dict[str, Any], info: FieldSerializationInfo):
        if info.by_alias:
            return {to_camel(key): value for key, value in updates.items()}
        return updates


# --- Inbound ---

class BotMode(str, Enum):
    STANDALONE = "STANDALONE"
    INTEGRATED = "INTEGRATED"


class ContactProfile(BaseModel):
    """Contact the conversation is with. Extra profile fields are kept for interpolation."""
    id: str
    phone: str
    name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


MessageType = Literal[
    "text",
    "interactive",
    "button",
    "image",
    "document",
    "audio",
    "video",
    "location",
    "reaction",
]


class BotIncomingMessage(BaseModel):
    id: str
    wamid: str
    conversation_id: str
    contact_id: str
    tenant_id: str = Field(validation_alias=AliasChoices("tenantId", "organizationId", "tenant_id"))

    type: MessageType = "text"
    text: Optional[str] = None

    # Interactive reply
    button_id: Optional[str] = None
    button_title: Optional[str] = None
    list_id: Optional[str] = None
    list_title: Optional[str] = None

    # Media
    media_id: Optional[str] = None
    media_type: Optional[str] = None
    caption: Optional[str] = None

    # Location
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    contact: ContactProfile
    context: ConversationContext = Field(default_factory=ConversationContext)

    mode: BotMode = BotMode.STANDALONE
    external_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("externalClientId", "pmsClientId", "external_client_id"),
    )

    model_config = _CAMEL

    @field_validator("context", mode="before")
    @classmethod
    def parse_persisted_context(cls, v):
        """Persisted context is loosely typed; never reject a message because of it."""
        if isinstance(v, ConversationContext):
            return v
        return parse_context(v)

    @property
    def reply_id(self) -> Optional[str]:
        return self.button_id or self.list_id
