from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict

from chatcommerce.schemas.inbound import InboundMessage, InteractiveReply, Location


class WebhookMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class WebhookValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    metadata: Optional[WebhookMetadata] = None
    contacts: List[dict] = []
    messages: List[dict] = []
    statuses: List[dict] = []


class WebhookChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: Optional[str] = None
    value: WebhookValue = WebhookValue()


class WebhookEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    changes: List[WebhookChange] = []


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: Optional[str] = None
    entry: List[WebhookEntry] = []


class WebhookResponse(BaseModel):
    success: bool
    processed: int = 0
    message: str = "ok"


def extract_message_content(raw: dict[str, Any]) -> dict[str, Any]:
    """Text, interactive reply, media id and location of one channel message."""
    kind = raw.get("type") or "text"
    content: dict[str, Any] = {"type": kind, "text": "", "interactive_data": None, "media_id": None, "location": None}

    if kind == "text":
        content["text"] = (raw.get("text") or {}).get("body", "")
    elif kind in ("image", "document", "audio", "video", "sticker"):
        media = raw.get(kind) or {}
        content["media_id"] = media.get("id")
        content["text"] = media.get("caption") or ""
    elif kind == "interactive":
        interactive = raw.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply")
        if reply:
            content["interactive_data"] = InteractiveReply(id=reply.get("id", ""), title=reply.get("title", ""))
            content["text"] = reply.get("title", "")
    elif kind == "button":
        button = raw.get("button") or {}
        content["type"] = "interactive"
        content["interactive_data"] = InteractiveReply(id=button.get("payload", ""), title=button.get("text", ""))
        content["text"] = button.get("text", "")
    elif kind == "location":
        location = raw.get("location") or {}
        if "latitude" in location and "longitude" in location:
            content["location"] = Location(**location)
    elif kind == "order":
        items = (raw.get("order") or {}).get("product_items") or []
        content["text"] = ", ".join(
            f"{item.get('product_retailer_id')} x{item.get('quantity', 1)}" for item in items
        )
    else:
        content["text"] = f"[{kind}]"

    return content


def extract_inbound_messages(payload: WebhookPayload) -> List[InboundMessage]:
    messages = []
    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            phone_id = value.metadata.phone_number_id if value.metadata else None
            names = {
                contact.get("wa_id"): (contact.get("profile") or {}).get("name")
                for contact in value.contacts
            }
            for raw in value.messages:
                sender = raw.get("from")
                if not sender:
                    continue
                content = extract_message_content(raw)
                messages.append(
                    InboundMessage(
                        from_=sender,
                        text=content["text"],
                        type=content["type"],
                        interactive_data=content["interactive_data"],
                        media_id=content["media_id"],
                        location=content["location"],
                        message_id=raw.get("id"),
                        phone_id=phone_id,
                        profile_name=names.get(sender),
                    )
                )
    return messages
