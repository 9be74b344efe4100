# /flowbot/models/api.py

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from flowbot.models.messages import BotResponse

# Request/response envelopes for the HTTP API.


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str


class ProcessMessageResult(BaseModel):
    response: BotResponse
    payloads: Optional[List[Dict[str, Any]]] = None
