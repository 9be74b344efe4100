# /flowbot/services/intent_detector.py

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

from flowbot.config import rules as default_rules
from flowbot.models.intent import DetectedIntent, IntentPatternConfig
from flowbot.models.messages import BotIncomingMessage

# Keyword and pattern based intent classification. Pure: the same message
# always yields the same intent for a given configuration.

logger = logging.getLogger(__name__)

EXACT_KEYWORD_CONFIDENCE = 1.0
SUBSTRING_KEYWORD_CONFIDENCE = 0.8
PATTERN_CONFIDENCE = 0.9
SYNTHETIC_CONFIDENCE = 0.9
UNKNOWN_CONFIDENCE = 0.1

_REPLY_ID_SPLIT_RE = re.compile(default_rules.REPLY_ID_SEPARATORS)
_PREFIXED_AMOUNT_RE = re.compile(r"(?:₹|\brs\.?|\binr)\s*(\d[\d,]*(?:\.\d{1,2})?)", re.IGNORECASE)
_SUFFIXED_AMOUNT_RE = re.compile(r"(\d[\d,]*(?:\.\d{1,2})?)\s*(?:₹|rs\b|inr\b|rupees\b)", re.IGNORECASE)
_BARE_AMOUNT_RE = re.compile(r"(\d[\d,]*(?:\.\d{1,2})?)")


def _compile_patterns(intent_name: str, sources: List[str]) -> List[Pattern]:
    compiled = []
    for source in sources:
        try:
            compiled.append(re.compile(source, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Skipping invalid pattern {source!r} for intent '{intent_name}': {e}")
    return compiled


class IntentDetector:
    """
    Classifies an inbound message into a named intent.

    The keyword/pattern table is explicit configuration: pass `patterns` and
    `button_intents` to override the defaults from flowbot.config.rules.
    """

    def __init__(
        self,
        patterns: Optional[Mapping[str, IntentPatternConfig]] = None,
        button_intents: Optional[Mapping[str, str]] = None,
    ):
        source = default_rules.INTENT_PATTERNS if patterns is None else patterns
        self._patterns: Dict[str, IntentPatternConfig] = {
            name: config.model_copy(deep=True) for name, config in source.items()
        }
        self._compiled: Dict[str, List[Pattern]] = {
            name: _compile_patterns(name, config.patterns) for name, config in self._patterns.items()
        }
        self.button_intents: Dict[str, str] = dict(
            default_rules.BUTTON_INTENT_MAP if button_intents is None else button_intents
        )

    # --- Configuration ---

    def register_intent_pattern(self, intent_name: str, config: IntentPatternConfig) -> None:
        """Add or replace one intent rule on this detector."""
        self._patterns[intent_name] = config.model_copy(deep=True)
        self._compiled[intent_name] = _compile_patterns(intent_name, config.patterns)

    def get_intent_patterns(self) -> Dict[str, IntentPatternConfig]:
        return {name: config.model_copy(deep=True) for name, config in self._patterns.items()}

    def with_overrides(self, overrides: Mapping[str, IntentPatternConfig]) -> "IntentDetector":
        """A new detector with `overrides` layered over this one's rules (e.g. per tenant)."""
        return IntentDetector(patterns={**self._patterns, **overrides}, button_intents=self.button_intents)

    # --- Detection ---

    def detect(self, message: BotIncomingMessage) -> DetectedIntent:
        if message.type in ("interactive", "button"):
            return self._detect_from_reply(message)

        if message.text:
            return self._detect_from_text(message.text)

        if message.type in ("image", "document"):
            return DetectedIntent(
                name="document_upload",
                confidence=SYNTHETIC_CONFIDENCE,
                entities={"mediaType": message.type, "mediaId": message.media_id},
                raw_input=message.caption or "",
            )

        if message.type == "location":
            return DetectedIntent(
                name="location_shared",
                confidence=SYNTHETIC_CONFIDENCE,
                entities={"latitude": message.latitude, "longitude": message.longitude},
                raw_input="",
            )

        return DetectedIntent(name="unknown", confidence=UNKNOWN_CONFIDENCE, raw_input=message.text or "")

    def _detect_from_reply(self, message: BotIncomingMessage) -> DetectedIntent:
        reply_id = message.button_id or message.list_id or ""
        title = message.button_title or message.list_title or ""
        entities = {"buttonId": reply_id, "buttonTitle": title}

        for segment in _REPLY_ID_SPLIT_RE.split(reply_id.lower()):
            intent_name = self.button_intents.get(segment)
            if intent_name:
                return DetectedIntent(name=intent_name, confidence=1.0, entities=entities, raw_input=title)

        return DetectedIntent(name="button_response", confidence=1.0, entities=entities, raw_input=title)

    def _detect_from_text(self, text: str) -> DetectedIntent:
        normalized = text.lower().strip()
        best: Optional[Tuple[str, float, int]] = None

        def _consider(name: str, confidence: float, priority: int) -> None:
            nonlocal best
            if (
                best is None
                or confidence > best[1]
                or (confidence == best[1] and priority > best[2])
            ):
                best = (name, confidence, priority)

        for intent_name, config in self._patterns.items():
            for keyword in config.keywords:
                keyword = keyword.lower().strip()
                if not keyword:
                    continue
                if normalized == keyword:
                    _consider(intent_name, EXACT_KEYWORD_CONFIDENCE, config.priority)
                elif keyword in normalized:
                    _consider(intent_name, SUBSTRING_KEYWORD_CONFIDENCE, config.priority)

            for pattern in self._compiled.get(intent_name, []):
                if pattern.search(normalized):
                    _consider(intent_name, PATTERN_CONFIDENCE, config.priority)

        if best is None:
            return DetectedIntent(name="unknown", confidence=UNKNOWN_CONFIDENCE, raw_input=text)

        name, confidence, _ = best
        return DetectedIntent(
            name=name,
            confidence=confidence,
            entities=extract_entities(normalized, name),
            raw_input=text,
        )


def _parse_amount(text: str) -> Optional[float]:
    for pattern in (_PREFIXED_AMOUNT_RE, _SUFFIXED_AMOUNT_RE, _BARE_AMOUNT_RE):
        match = pattern.search(text)
        if match:
            return float(match.group(1).replace(",", ""))
    return None


def extract_entities(text: str, intent_name: str) -> Dict[str, Any]:
    """Intent-specific entities pulled from normalized text."""
    entities: Dict[str, Any] = {}

    if intent_name == "status":
        for keyword, category in default_rules.STATUS_CATEGORY_KEYWORDS:
            if keyword in text:
                entities["statusType"] = category

    elif intent_name == "payment":
        amount = _parse_amount(text)
        if amount is not None:
            entities["amount"] = amount

    return entities


# Globally accessible instance with the default rule tables
intent_detector = IntentDetector()


def detect_intent(message: BotIncomingMessage) -> DetectedIntent:
    return intent_detector.detect(message)
