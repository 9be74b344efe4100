# /flowbot/models/intent.py

from typing import Any, Dict, List
from pydantic import BaseModel, Field


class IntentPatternConfig(BaseModel):
    """Keyword/pattern rule for one free-text intent."""
    keywords: List[str] = Field(default_factory=list)
    patterns: List[str] = Field(default_factory=list, description="Regex sources, matched case-insensitively")
    priority: int = 0


class DetectedIntent(BaseModel):
    """Classification of a single inbound message. Never persisted."""
    name: str
    confidence: float = Field(ge=0.0, le=1.0)
    entities: Dict[str, Any] = Field(default_factory=dict)
    raw_input: str = ""
