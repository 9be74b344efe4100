# /flowbot/config/rules.py

from flowbot.models.intent import IntentPatternConfig

# This file contains the default "rules engine" tables for understanding
# inbound messages. The intent detector copies them at construction, so
# tenants can be given overrides without mutating these defaults.

# Free-text intents. Exact keyword match scores 1.0, substring 0.8, pattern 0.9.
# Priority only breaks ties between equal confidences.
INTENT_PATTERNS = {
    "greeting": IntentPatternConfig(
        keywords=["hi", "hello", "hey", "hola", "namaste", "good morning", "good afternoon", "good evening"],
        patterns=[r"^(hi|hello|hey)\b"],
        priority=10,
    ),
    "help": IntentPatternConfig(
        keywords=["help", "menu", "options", "what can you do", "commands", "start", "main menu"],
        patterns=[r"^/?(help|menu|start)$"],
        priority=20,
    ),
    "human": IntentPatternConfig(
        keywords=["human", "agent", "talk to someone", "real person", "support", "customer service", "speak to agent"],
        patterns=[r"\b(human|agent|person)\b"],
        priority=30,
    ),
    "status": IntentPatternConfig(
        keywords=["status", "my status", "check status", "filing status", "itr status", "gst status", "application status"],
        patterns=[r"\b(status|check|track)\b.*\b(itr|gst|filing|return|application)\b"],
        priority=25,
    ),
    "payment": IntentPatternConfig(
        keywords=["pay", "payment", "invoice", "bill", "dues", "pending", "how much", "amount"],
        patterns=[r"\b(pay|payment|invoice|bill|dues|amount|pending)\b"],
        priority=25,
    ),
    "document": IntentPatternConfig(
        keywords=["document", "documents", "upload", "send document", "file", "pan", "aadhaar", "form 16"],
        patterns=[r"\b(document|upload|send|pan|aadhaar|form.?16)\b"],
        priority=20,
    ),
    "thanks": IntentPatternConfig(
        keywords=["thank", "thanks", "thank you", "thx", "appreciate"],
        patterns=[r"\b(thank|thanks|thx)\b"],
        priority=5,
    ),
    "bye": IntentPatternConfig(
        keywords=["bye", "goodbye", "see you", "later", "exit", "quit"],
        patterns=[r"\b(bye|goodbye|exit|quit)\b"],
        priority=5,
    ),
    "yes": IntentPatternConfig(
        keywords=["yes", "yeah", "yep", "sure", "ok", "okay", "correct", "right", "confirm"],
        patterns=[r"^(yes|yeah|yep|sure|ok|okay|y)$"],
        priority=15,
    ),
    "no": IntentPatternConfig(
        keywords=["no", "nope", "nah", "cancel", "wrong", "incorrect"],
        patterns=[r"^(no|nope|nah|n|cancel)$"],
        priority=15,
    ),
}

# Segments of a button/list reply id mapped to intents.
# e.g. "menu_help" -> help, "action_pay" -> payment, "confirm_yes" -> yes
BUTTON_INTENT_MAP = {
    "help": "help",
    "menu": "help",
    "pay": "payment",
    "status": "status",
    "human": "human",
    "agent": "human",
    "yes": "yes",
    "no": "no",
    "confirm": "yes",
    "cancel": "no",
    "back": "help",
    "document": "document",
    "service": "help",
}

# Checked in order; the last category found in the text wins.
STATUS_CATEGORY_KEYWORDS = [
    ("itr", "ITR"),
    ("gst", "GST"),
    ("tds", "TDS"),
]

# Separators used to split reply ids into segments
REPLY_ID_SEPARATORS = r"[_\-\s.:]+"
