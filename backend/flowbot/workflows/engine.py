# /flowbot/workflows/engine.py

"""
Conversation engine.

One call to `process_message` is one turn of a conversation:
- Resumes an active flow (capturing input if the flow is waiting for it)
- Otherwise classifies the message and starts the highest-priority flow
  whose trigger matches
- Otherwise answers with the stateless handler for the detected intent

The engine never sends messages or persists anything. Everything it wants
to happen is returned in the BotResponse: outbound messages, the full
post-turn context for the caller to store, and side-effect actions.
"""

import re
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, List, Optional, Pattern, Sequence, Tuple

import structlog

from flowbot.config import strings
from flowbot.config.settings import settings
from flowbot.models.context import ConversationContext, now_ms
from flowbot.models.flow import (
    AddTagNode,
    AskQuestionNode,
    AssignAgentNode,
    ChatbotFlow,
    ConditionNode,
    DelayNode,
    EndNode,
    RemoveTagNode,
    SendButtonsNode,
    SendListNode,
    SendMediaNode,
    SendMessageNode,
    SendTemplateNode,
    SetVariableNode,
    TriggerType,
)
from flowbot.models.intent import DetectedIntent
from flowbot.models.messages import (
    BotAction,
    BotIncomingMessage,
    BotResponse,
    BotResponseMessage,
    ReplyButton,
)
from flowbot.services import context_store
from flowbot.services.flow_cache import FetchFlows, FlowCache, FlowFetchError
from flowbot.services.flow_store import flow_store
from flowbot.services.intent_detector import IntentDetector, intent_detector as default_intent_detector
from flowbot.services.intent_handlers import IntentHandlerRegistry
from flowbot.services.response_builder import (
    button_response,
    list_response,
    media_response,
    template_response,
    text_response,
    with_delay,
)
from flowbot.utils.metrics import (
    bot_messages_counter,
    bot_processing_histogram,
    handoff_counter,
    intents_counter,
)

logger = structlog.get_logger(__name__)

GetExternalData = Callable[[str, str], Any]

DEFAULT_INPUT_VARIABLE = "lastInput"


@lru_cache(maxsize=256)
def _compile_trigger(pattern: str) -> Optional[Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("invalid_trigger_pattern", pattern=pattern, error=str(e))
        return None


def _first_text(messages: Sequence[BotResponseMessage]) -> Optional[str]:
    for message in messages:
        if message.text:
            return message.text
        if message.interactive:
            return message.interactive.body
    return None


@dataclass
class NodeResult:
    """What a single node contributed to the turn."""
    context: ConversationContext
    messages: List[BotResponseMessage] = field(default_factory=list)
    actions: List[BotAction] = field(default_factory=list)
    delay_ms: Optional[int] = None
    halt: bool = False
    transfer_reason: Optional[str] = None


class BotEngine:
    def __init__(
        self,
        fetch_flows: FetchFlows,
        get_external_data: Optional[GetExternalData] = None,
        intent_detector: Optional[IntentDetector] = None,
        handlers: Optional[IntentHandlerRegistry] = None,
        flow_timeout_seconds: Optional[int] = None,
        flow_cache_ttl_seconds: Optional[float] = None,
        max_node_hops: Optional[int] = None,
    ):
        # Reserved for nodes that look up business records; no executor uses it yet.
        self.get_external_data = get_external_data
        self.intent_detector = intent_detector or default_intent_detector
        self.handlers = handlers or IntentHandlerRegistry()
        self.flow_timeout_ms = (flow_timeout_seconds or settings.flow_timeout_seconds) * 1000
        self.idle_threshold_ms = settings.conversation_idle_seconds * 1000
        self.max_node_hops = max_node_hops or settings.max_node_hops
        self._flow_cache = FlowCache(
            fetch_flows,
            ttl_seconds=flow_cache_ttl_seconds or settings.flow_cache_ttl_seconds,
        )

    # ---------------- Public API ---------------- #

    async def process_message(self, message: BotIncomingMessage) -> BotResponse:
        """
        Run one conversation turn.

        Raises:
            FlowFetchError: if the flow-definition collaborator fails. Every
                other error is logged and answered with a fixed apology.
        """
        log = logger.bind(
            message_id=message.id,
            conversation_id=message.conversation_id,
            tenant_id=message.tenant_id,
        )
        start_time = time.perf_counter()
        try:
            response, outcome = await self._process(message, log)
            bot_messages_counter.labels(outcome=outcome).inc()
            if response.transfer_to_human:
                handoff_counter.labels(source=outcome).inc()
            log.debug("message_processed", outcome=outcome, messages=len(response.messages))
            return response
        except FlowFetchError:
            bot_messages_counter.labels(outcome="fetch_error").inc()
            raise
        except Exception:
            bot_messages_counter.labels(outcome="error").inc()
            log.exception("message_processing_failed")
            return self._error_response()
        finally:
            bot_processing_histogram.observe(time.perf_counter() - start_time)

    def clear_flow_cache(self, tenant_id: Optional[str] = None) -> None:
        self._flow_cache.clear(tenant_id)

    def set_flow_cache_ttl(self, ttl_seconds: float) -> None:
        self._flow_cache.set_ttl(ttl_seconds)

    # ---------------- Turn orchestration ---------------- #

    async def _process(self, message: BotIncomingMessage, log) -> Tuple[BotResponse, str]:
        context = message.context
        if context_store.is_conversation_idle(context, self.idle_threshold_ms):
            log.info("conversation_resumed", idle_ms=context_store.get_idle_time(context))

        # 1. Resume the active flow, unless it has timed out
        if context_store.is_in_active_flow(context):
            if context_store.is_flow_timed_out(context, self.flow_timeout_ms):
                log.info("flow_timed_out", flow_id=context.current_flow_id)
                context = context_store.clear_flow(context)
            else:
                response, context = await self._continue_flow(message, context, log)
                if response is not None:
                    return response, "flow"

        # 2. Classify
        intent = self.intent_detector.detect(message)
        intents_counter.labels(intent=intent.name).inc()
        log.debug("intent_detected", intent=intent.name, confidence=intent.confidence)

        # 3. Start a triggered flow
        flows = await self._flow_cache.get_active_flows(message.tenant_id)
        flow = self._find_matching_flow(flows, message, intent, context)
        if flow is not None:
            log.info("flow_triggered", flow_id=flow.id, trigger_type=flow.trigger_type.value)
            context = context_store.add_intent_to_history(context, intent.name)
            return self._start_flow(flow, message, context, log), "flow"

        # 4. Stateless intent handler
        handler = self.handlers.get_handler(intent.name)
        response = await handler(message, context)
        context = context_store.update_context(context, response.context_updates)
        context = context_store.add_intent_to_history(context, intent.name)
        return self._finalize(response, context), "intent"

    async def _continue_flow(
        self,
        message: BotIncomingMessage,
        context: ConversationContext,
        log,
    ) -> Tuple[Optional[BotResponse], ConversationContext]:
        """
        Resume the flow the context points at.

        Returns (None, cleared context) when the flow or node has disappeared
        so the caller can fall through to intent handling.
        """
        flows = await self._flow_cache.get_active_flows(message.tenant_id)
        flow = next((f for f in flows if f.id == context.current_flow_id), None)
        if flow is None:
            log.warning("active_flow_missing", flow_id=context.current_flow_id)
            return None, context_store.clear_flow(context)

        node = flow.flow_definition.get_node(context.current_node_id)
        if node is None:
            log.warning("active_node_missing", flow_id=flow.id, node_id=context.current_node_id)
            return None, context_store.clear_flow(context)

        if context_store.is_awaiting_input(context):
            context = self._capture_input(node, message, context)

        next_node_id = self._next_node_id(flow, node.id, message, context)
        if next_node_id is None:
            return self._finalize(BotResponse(), context_store.clear_flow(context)), context

        next_node = flow.flow_definition.get_node(next_node_id)
        if next_node is None:
            log.warning("next_node_missing", flow_id=flow.id, node_id=next_node_id)
            return None, context_store.clear_flow(context)

        return self._execute_chain(flow, next_node, message, context, log), context

    def _capture_input(self, node, message: BotIncomingMessage, context: ConversationContext) -> ConversationContext:
        variable_name = DEFAULT_INPUT_VARIABLE
        if isinstance(node, AskQuestionNode):
            variable_name = node.data.variable_name or DEFAULT_INPUT_VARIABLE
        value = message.text or message.button_id or message.list_id or ""
        context = context_store.set_variable(context, variable_name, value)
        return context.model_copy(update={"awaiting_input": False, "awaiting_input_type": None})

    def _start_flow(
        self,
        flow: ChatbotFlow,
        message: BotIncomingMessage,
        context: ConversationContext,
        log,
    ) -> BotResponse:
        start_node_id = flow.flow_definition.start_node_id
        start_node = flow.flow_definition.get_node(start_node_id)
        if start_node is None:
            log.error("flow_start_node_missing", flow_id=flow.id, node_id=start_node_id)
            return self._fallback_response(context)

        context = context_store.start_flow(context, flow.id, start_node_id)
        return self._execute_chain(flow, start_node, message, context, log)

    # ---------------- Node execution ---------------- #

    def _execute_chain(
        self,
        flow: ChatbotFlow,
        node,
        message: BotIncomingMessage,
        context: ConversationContext,
        log,
    ) -> BotResponse:
        """
        Execute nodes from `node` onwards until one halts the chain, the graph
        runs out of edges, or the hop cap is reached. All messages and actions
        of the chain are returned as one response.
        """
        messages: List[BotResponseMessage] = []
        actions: List[BotAction] = []
        transfer_reason: Optional[str] = None
        pending_delay: Optional[int] = None
        hops = 0

        while node is not None:
            hops += 1
            if hops > self.max_node_hops:
                log.warning("flow_hop_limit_exceeded", flow_id=flow.id, node_id=node.id, max_node_hops=self.max_node_hops)
                context = context_store.clear_flow(context)
                break

            context = context.model_copy(update={"current_node_id": node.id})
            result = self._execute_node(node, message, context)
            context = result.context

            for outbound in result.messages:
                if pending_delay is not None:
                    outbound = with_delay(outbound, pending_delay)
                    pending_delay = None
                messages.append(outbound)
            if result.delay_ms is not None:
                pending_delay = result.delay_ms
            actions.extend(result.actions)

            if result.transfer_reason:
                transfer_reason = result.transfer_reason
            if result.halt:
                break

            next_node_id = self._next_node_id(flow, node.id, message, context)
            if next_node_id is None:
                context = context_store.clear_flow(context)
                break
            node = flow.flow_definition.get_node(next_node_id)
            if node is None:
                log.warning("next_node_missing", flow_id=flow.id, node_id=next_node_id)
                context = context_store.clear_flow(context)

        response = BotResponse(
            messages=messages,
            actions=actions,
            transfer_to_human=transfer_reason is not None,
            transfer_reason=transfer_reason,
        )
        return self._finalize(response, context)

    def _execute_node(self, node, message: BotIncomingMessage, context: ConversationContext) -> NodeResult:
        def interpolate(text: Optional[str]) -> Optional[str]:
            if text is None:
                return None
            return context_store.interpolate_variables(text, context, message.contact)

        if isinstance(node, SendMessageNode):
            return NodeResult(context=context, messages=[text_response(interpolate(node.data.text))])

        if isinstance(node, SendButtonsNode):
            data = node.data
            outbound = button_response(
                interpolate(data.body),
                [ReplyButton(id=b.id, title=interpolate(b.title)) for b in data.buttons],
                header=interpolate(data.header),
                footer=interpolate(data.footer),
            )
            return NodeResult(context=context, messages=[outbound])

        if isinstance(node, SendListNode):
            data = node.data
            outbound = list_response(
                interpolate(data.body),
                data.sections,
                header=interpolate(data.header),
                footer=interpolate(data.footer),
                button_text=data.button_text or strings.LIST_DEFAULT_BUTTON,
            )
            return NodeResult(context=context, messages=[outbound])

        if isinstance(node, SendTemplateNode):
            data = node.data
            outbound = template_response(data.name, data.language or context.language, data.components)
            return NodeResult(context=context, messages=[outbound])

        if isinstance(node, SendMediaNode):
            data = node.data
            outbound = media_response(data.media_type, data.url, caption=interpolate(data.caption), filename=data.filename)
            return NodeResult(context=context, messages=[outbound])

        if isinstance(node, AskQuestionNode):
            data = node.data
            waiting = context.model_copy(update={
                "awaiting_input": True,
                "awaiting_input_type": data.input_type,
            })
            return NodeResult(context=waiting, messages=[text_response(interpolate(data.question))], halt=True)

        if isinstance(node, SetVariableNode):
            value = node.data.value
            if isinstance(value, str) and value.startswith("{{") and value.endswith("}}"):
                value = interpolate(value)
            return NodeResult(context=context_store.set_variable(context, node.data.variable_name, value))

        if isinstance(node, AssignAgentNode):
            data = node.data
            return NodeResult(
                context=context_store.clear_flow(context),
                messages=[text_response(interpolate(data.message) or strings.ASSIGN_AGENT_DEFAULT_TEXT)],
                halt=True,
                transfer_reason=data.reason or strings.ASSIGN_AGENT_DEFAULT_REASON,
            )

        if isinstance(node, AddTagNode):
            return NodeResult(context=context, actions=[BotAction(type="add_tag", payload={"tag": node.data.tag})])

        if isinstance(node, RemoveTagNode):
            return NodeResult(context=context, actions=[BotAction(type="remove_tag", payload={"tag": node.data.tag})])

        if isinstance(node, DelayNode):
            return NodeResult(context=context, delay_ms=node.data.delay_ms)

        if isinstance(node, EndNode):
            farewell = interpolate(node.data.message)
            return NodeResult(
                context=context_store.clear_flow(context),
                messages=[text_response(farewell)] if farewell else [],
                halt=True,
            )

        if isinstance(node, ConditionNode):
            return NodeResult(context=context)

        raise TypeError(f"No executor for node type {getattr(node, 'type', type(node).__name__)}")

    def _next_node_id(
        self,
        flow: ChatbotFlow,
        node_id: str,
        message: BotIncomingMessage,
        context: ConversationContext,
    ) -> Optional[str]:
        """
        Pick the outgoing edge to follow: a lone edge is always taken; among
        several, the first satisfied condition wins, then the first
        unconditioned edge. None ends the flow.
        """
        edges = flow.flow_definition.outgoing_edges(node_id)
        if not edges:
            return None
        if len(edges) == 1:
            return edges[0].target

        for edge in edges:
            if edge.condition is None:
                continue
            actual = context.variables.get(edge.condition.variable)
            if actual is None or actual == "":
                actual = message.text or ""
            if edge.condition.evaluate(actual):
                return edge.target

        default_edge = next((edge for edge in edges if edge.condition is None), None)
        return default_edge.target if default_edge else None

    # ---------------- Trigger matching ---------------- #

    def _find_matching_flow(
        self,
        flows: Sequence[ChatbotFlow],
        message: BotIncomingMessage,
        intent: DetectedIntent,
        context: ConversationContext,
    ) -> Optional[ChatbotFlow]:
        # sorted() is stable, so declaration order breaks priority ties
        for flow in sorted(flows, key=lambda f: -f.priority):
            if flow.is_active and self._matches_trigger(flow, message, intent, context):
                return flow
        return None

    @staticmethod
    def _matches_trigger(
        flow: ChatbotFlow,
        message: BotIncomingMessage,
        intent: DetectedIntent,
        context: ConversationContext,
    ) -> bool:
        trigger = flow.trigger_type

        if trigger == TriggerType.KEYWORD:
            if not message.text:
                return False
            text = message.text.lower().strip()
            keywords = [k.lower().strip() for k in flow.trigger_keywords if k and k.strip()]
            return any(text == keyword or keyword in text for keyword in keywords)

        if trigger == TriggerType.FIRST_MESSAGE:
            return not context.last_intents

        if trigger == TriggerType.BUTTON_REPLY:
            return bool(message.button_id) and message.button_id in flow.trigger_keywords

        if trigger == TriggerType.LIST_REPLY:
            return bool(message.list_id) and message.list_id in flow.trigger_keywords

        if trigger == TriggerType.REGEX_PATTERN:
            if not message.text or not flow.trigger_pattern:
                return False
            pattern = _compile_trigger(flow.trigger_pattern)
            return bool(pattern and pattern.search(message.text))

        if trigger == TriggerType.ALL_MESSAGES:
            return intent.name == "unknown"

        # INACTIVITY flows are started by schedulers, never by an inbound message
        return False

    # ---------------- Responses ---------------- #

    def _finalize(self, response: BotResponse, context: ConversationContext) -> BotResponse:
        """Record the first outbound text and attach the full post-turn context."""
        context = context.model_copy(update={"last_interaction_at": now_ms()})
        first = _first_text(response.messages)
        if first:
            context = context_store.add_response_to_history(context, first)
        return response.model_copy(update={"context_updates": context_store.context_to_updates(context)})

    def _fallback_response(self, context: ConversationContext) -> BotResponse:
        menu = button_response(strings.FLOW_ERROR_BODY, [
            ReplyButton(id="menu_help", title=strings.BUTTON_MAIN_MENU),
            ReplyButton(id="menu_human", title=strings.BUTTON_TALK_TO_AGENT),
        ])
        return self._finalize(BotResponse(messages=[menu]), context_store.clear_flow(context))

    @staticmethod
    def _error_response() -> BotResponse:
        return BotResponse(messages=[text_response(strings.ENGINE_ERROR_TEXT)])


def create_bot_engine(**kwargs) -> BotEngine:
    return BotEngine(**kwargs)


# Globally accessible instance
bot_engine = create_bot_engine(fetch_flows=flow_store.fetch_flows)
