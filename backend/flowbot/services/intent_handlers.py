# /flowbot/services/intent_handlers.py

import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flowbot.config import strings
from flowbot.models.context import ConversationContext
from flowbot.models.messages import (
    BotAction,
    BotIncomingMessage,
    BotMode,
    BotResponse,
    ListRow,
    ListSection,
    ReplyButton,
)
from flowbot.services.context_store import clear_flow, context_to_updates
from flowbot.services.response_builder import button_response, list_response, text_response

# Stateless responders for intents that no tenant flow picked up. Each takes
# the inbound message and the current context and returns a BotResponse;
# none of them touch intent history, which the engine records.

IntentHandler = Callable[[BotIncomingMessage, ConversationContext], Awaitable[BotResponse]]

MAIN_MENU = ReplyButton(id="menu_help", title=strings.BUTTON_MAIN_MENU)
SHOW_MENU = ReplyButton(id="menu_help", title=strings.BUTTON_SHOW_MENU)
CHECK_STATUS = ReplyButton(id="menu_status", title=strings.BUTTON_CHECK_STATUS)
TALK_TO_AGENT = ReplyButton(id="menu_human", title=strings.BUTTON_TALK_TO_AGENT)

UNKNOWN_INTENT = "unknown"
ESCALATE_AFTER_UNKNOWNS = 2


def _flow_cleared_updates(context: ConversationContext) -> Dict:
    cleared = context_to_updates(clear_flow(context))
    return {
        key: cleared[key]
        for key in ("current_flow_id", "current_node_id", "flow_started_at", "awaiting_input", "awaiting_input_type")
    }


def _current_hour(tz_name: str) -> int:
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    return datetime.now(tz).hour


def salutation_for_hour(hour: int) -> str:
    if hour < 12:
        return strings.SALUTATION_MORNING
    if hour < 17:
        return strings.SALUTATION_AFTERNOON
    return strings.SALUTATION_EVENING


async def greeting_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    """Time-of-day greeting (in the conversation's timezone) with the main menu."""
    name = message.contact.name or strings.GREETING_DEFAULT_NAME
    salutation = salutation_for_hour(_current_hour(context.timezone))
    body = strings.GREETING_TEMPLATE.format(salutation=salutation, name=name)
    return BotResponse(messages=[button_response(body, [MAIN_MENU, CHECK_STATUS, TALK_TO_AGENT])])


async def help_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    """List menu; integrated deployments also get the back-office services section."""
    sections: List[ListSection] = []
    if message.mode == BotMode.INTEGRATED:
        sections.append(ListSection(title="Services", rows=[
            ListRow(id="service_itr", title="ITR Filing Status", description="Check your ITR filing status"),
            ListRow(id="service_gst", title="GST Filing Status", description="Check your GST returns"),
            ListRow(id="service_payment", title="Pay Dues", description="View and pay pending invoices"),
            ListRow(id="service_documents", title="Send Documents", description="Upload documents securely"),
        ]))
    sections.append(ListSection(title="Support", rows=[
        ListRow(id="help_faq", title="FAQ", description="Frequently asked questions"),
        ListRow(id="help_contact", title="Contact Us", description="Get our contact details"),
        ListRow(id="help_human", title=strings.BUTTON_TALK_TO_AGENT, description="Connect with our team"),
    ]))
    menu = list_response(
        strings.HELP_MENU_BODY,
        sections,
        footer=strings.HELP_MENU_FOOTER,
        button_text=strings.HELP_MENU_BUTTON,
    )
    return BotResponse(messages=[menu])


async def human_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    """Hand the conversation to a person: clears any active flow and notifies the team."""
    notification = BotAction(type="send_notification", payload={
        "type": "human_requested",
        "conversationId": message.conversation_id,
        "contactId": message.contact_id,
        "contactName": message.contact.name,
        "contactPhone": message.contact.phone,
    })
    return BotResponse(
        messages=[text_response(strings.HUMAN_HANDOFF_TEXT)],
        context_updates=_flow_cleared_updates(context),
        actions=[notification],
        transfer_to_human=True,
        transfer_reason=strings.HUMAN_HANDOFF_REASON,
    )


async def status_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    if message.mode == BotMode.INTEGRATED and message.external_client_id:
        options = button_response(strings.STATUS_INTEGRATED_BODY, [
            ReplyButton(id="status_itr", title="ITR Status"),
            ReplyButton(id="status_gst", title="GST Status"),
            ReplyButton(id="status_all", title="All Filings"),
        ])
        return BotResponse(messages=[options], context_updates={"variables": {"awaitingStatusType": True}})

    offer = button_response(strings.STATUS_STANDALONE_BODY, [
        ReplyButton(id="human_yes", title=strings.BUTTON_CONNECT_ME),
        ReplyButton(id="menu_help", title=strings.BUTTON_BACK_TO_MENU),
    ])
    return BotResponse(messages=[offer])


async def thanks_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    body = random.choice(strings.THANKS_RESPONSES)
    return BotResponse(messages=[button_response(body, [MAIN_MENU, TALK_TO_AGENT])])


async def bye_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    name = message.contact.name or strings.GREETING_DEFAULT_NAME
    return BotResponse(
        messages=[text_response(strings.BYE_TEMPLATE.format(name=name))],
        context_updates=_flow_cleared_updates(context),
    )


async def fallback_handler(message: BotIncomingMessage, context: ConversationContext) -> BotResponse:
    """
    Generic "didn't understand" menu. When the two most recent intents were
    both unknown the customer is going in circles, so offer a human instead.
    """
    recent = context.last_intents[-ESCALATE_AFTER_UNKNOWNS:]
    if len(recent) == ESCALATE_AFTER_UNKNOWNS and all(intent == UNKNOWN_INTENT for intent in recent):
        escalation = button_response(strings.FALLBACK_ESCALATION_BODY, [SHOW_MENU, TALK_TO_AGENT])
        return BotResponse(messages=[escalation])

    return BotResponse(messages=[button_response(strings.FALLBACK_BODY, [MAIN_MENU, CHECK_STATUS])])


DEFAULT_HANDLERS: Dict[str, IntentHandler] = {
    "greeting": greeting_handler,
    "help": help_handler,
    "human": human_handler,
    "status": status_handler,
    "thanks": thanks_handler,
    "bye": bye_handler,
    "payment": help_handler,
    "document": help_handler,
    "yes": help_handler,
    "no": help_handler,
    "button_response": help_handler,
    "document_upload": fallback_handler,
    "location_shared": fallback_handler,
    UNKNOWN_INTENT: fallback_handler,
}


class IntentHandlerRegistry:
    """Intent name -> handler lookup; anything unregistered goes to the unknown handler."""

    def __init__(self, handlers: Optional[Dict[str, IntentHandler]] = None):
        self._handlers: Dict[str, IntentHandler] = dict(DEFAULT_HANDLERS if handlers is None else handlers)
        self._handlers.setdefault(UNKNOWN_INTENT, fallback_handler)

    def get_handler(self, intent_name: str) -> IntentHandler:
        return self._handlers.get(intent_name) or self._handlers[UNKNOWN_INTENT]

    def register(self, intent_name: str, handler: IntentHandler) -> None:
        self._handlers[intent_name] = handler

    def has_handler(self, intent_name: str) -> bool:
        return intent_name in self._handlers

    def registered_intents(self) -> List[str]:
        return list(self._handlers)
