# /flowbot/services/response_builder.py

from typing import Any, Dict, List, Optional, Sequence

from flowbot.models.messages import (
    BotResponseMessage,
    InteractiveContent,
    ListSection,
    MediaContent,
    ReplyButton,
    TemplateContent,
)

# Maps the engine's channel-neutral messages onto WhatsApp Cloud API payloads.
# Channel limits are enforced here by silent truncation; nothing upstream
# validates lengths.

MAX_TEXT_BODY = 4096
MAX_CAPTION = 1024
MAX_HEADER = 60
MAX_FOOTER = 60
MAX_BUTTON_TITLE = 20
MAX_BUTTONS = 3
MAX_LIST_BUTTON_TEXT = 20
MAX_SECTIONS = 10
MAX_SECTION_TITLE = 24
MAX_ROWS_PER_SECTION = 10
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    return value[:limit] if value is not None else None


def _base_payload(to: str) -> Dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
    }


def build_message_payload(to: str, message: BotResponseMessage) -> Dict[str, Any]:
    """Build the Cloud API request body for one outbound message."""
    payload = _base_payload(to)

    if message.type == "text":
        payload["type"] = "text"
        payload["text"] = {"body": _truncate(message.text or "", MAX_TEXT_BODY), "preview_url": False}
        return payload

    if message.type == "template":
        if message.template is None:
            raise ValueError("Template message is missing its template")
        payload["type"] = "template"
        payload["template"] = {
            "name": message.template.name,
            "language": {"code": message.template.language},
        }
        if message.template.components:
            payload["template"]["components"] = message.template.components
        return payload

    if message.type == "interactive":
        if message.interactive is None:
            raise ValueError("Interactive message is missing its content")
        payload["type"] = "interactive"
        payload["interactive"] = _build_interactive(message.interactive)
        return payload

    if message.type in ("image", "document", "video", "audio"):
        if message.media is None:
            raise ValueError(f"{message.type} message is missing its media")
        media: Dict[str, Any] = {"link": message.media.url}
        if message.media.caption and message.type != "audio":
            media["caption"] = _truncate(message.media.caption, MAX_CAPTION)
        if message.media.filename and message.type == "document":
            media["filename"] = message.media.filename
        payload["type"] = message.type
        payload[message.type] = media
        return payload

    raise ValueError(f"Unsupported response type: {message.type}")


def _build_interactive(interactive: InteractiveContent) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "type": interactive.type,
        "body": {"text": _truncate(interactive.body, MAX_TEXT_BODY)},
        "action": {},
    }
    if interactive.header:
        body["header"] = {"type": "text", "text": _truncate(interactive.header, MAX_HEADER)}
    if interactive.footer:
        body["footer"] = {"text": _truncate(interactive.footer, MAX_FOOTER)}

    if interactive.type == "button" and interactive.buttons:
        body["action"] = {
            "buttons": [
                {"type": "reply", "reply": {"id": button.id, "title": _truncate(button.title, MAX_BUTTON_TITLE)}}
                for button in interactive.buttons[:MAX_BUTTONS]
            ]
        }
    elif interactive.type == "list" and interactive.sections:
        sections = []
        for section in interactive.sections[:MAX_SECTIONS]:
            rows = []
            for row in section.rows[:MAX_ROWS_PER_SECTION]:
                wire_row = {"id": row.id, "title": _truncate(row.title, MAX_ROW_TITLE)}
                if row.description:
                    wire_row["description"] = _truncate(row.description, MAX_ROW_DESCRIPTION)
                rows.append(wire_row)
            wire_section: Dict[str, Any] = {"rows": rows}
            if section.title:
                wire_section["title"] = _truncate(section.title, MAX_SECTION_TITLE)
            sections.append(wire_section)
        body["action"] = {
            "button": _truncate(interactive.button_text or "Select", MAX_LIST_BUTTON_TEXT),
            "sections": sections,
        }
    return body


# --- Message constructors ---

def text_response(text: str) -> BotResponseMessage:
    return BotResponseMessage(type="text", text=text)


def button_response(
    body: str,
    buttons: Sequence[ReplyButton],
    header: Optional[str] = None,
    footer: Optional[str] = None,
) -> BotResponseMessage:
    return BotResponseMessage(
        type="interactive",
        interactive=InteractiveContent(
            type="button",
            header=header,
            body=body,
            footer=footer,
            buttons=list(buttons)[:MAX_BUTTONS],
        ),
    )


def list_response(
    body: str,
    sections: List[ListSection],
    header: Optional[str] = None,
    footer: Optional[str] = None,
    button_text: str = "Select Option",
) -> BotResponseMessage:
    return BotResponseMessage(
        type="interactive",
        interactive=InteractiveContent(
            type="list",
            header=header,
            body=body,
            footer=footer,
            button_text=button_text,
            sections=sections,
        ),
    )


def template_response(name: str, language: str = "en", components: Optional[List[Dict[str, Any]]] = None) -> BotResponseMessage:
    return BotResponseMessage(
        type="template",
        template=TemplateContent(name=name, language=language, components=components),
    )


def media_response(media_type: str, url: str, caption: Optional[str] = None, filename: Optional[str] = None) -> BotResponseMessage:
    return BotResponseMessage(
        type=media_type,
        media=MediaContent(type=media_type, url=url, caption=caption, filename=filename),
    )


def image_response(url: str, caption: Optional[str] = None) -> BotResponseMessage:
    return media_response("image", url, caption=caption)


def document_response(url: str, filename: str, caption: Optional[str] = None) -> BotResponseMessage:
    return media_response("document", url, caption=caption, filename=filename)


def with_delay(message: BotResponseMessage, delay_ms: int) -> BotResponseMessage:
    return message.model_copy(update={"delay": delay_ms})


def quick_replies(body: str, options: Sequence[str]) -> BotResponseMessage:
    """Buttons with generated ids (quick_0, quick_1, ...) for up to three options."""
    buttons = [
        ReplyButton(id=f"quick_{index}", title=option[:MAX_BUTTON_TITLE])
        for index, option in enumerate(list(options)[:MAX_BUTTONS])
    ]
    return button_response(body, buttons)


def build_payloads(to: str, messages: Sequence[BotResponseMessage]) -> List[Dict[str, Any]]:
    return [build_message_payload(to, message) for message in messages]
