# /flowbot/models/context.py

import time
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowbot.config.settings import settings

InputType = Literal["text", "button", "list", "any"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ConversationContext(BaseModel):
    """
    Per-conversation state carried between turns.

    Stored by the caller as opaque JSON with camelCase keys; use the helpers
    in flowbot.services.context_store to parse, update and serialize it.
    """
    current_flow_id: Optional[str] = Field(default=None, description="Active flow, if any")
    current_node_id: Optional[str] = Field(default=None, description="Node the active flow is parked on")
    awaiting_input: bool = False
    awaiting_input_type: Optional[InputType] = None

    variables: Dict[str, Any] = Field(default_factory=dict, description="Values collected during flows")

    last_intents: List[str] = Field(default_factory=list)
    last_responses: List[str] = Field(default_factory=list)

    flow_started_at: Optional[int] = Field(default=None, description="Epoch ms when the active flow started")
    last_interaction_at: int = Field(default_factory=now_ms, description="Epoch ms of the last turn")

    language: str = Field(default_factory=lambda: settings.default_language)
    timezone: str = Field(default_factory=lambda: settings.default_timezone)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
