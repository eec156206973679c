from chatcommerce.schemas.inbound import InboundMessage, InteractiveReply, Location
from chatcommerce.schemas.webhook import WebhookPayload, WebhookResponse, extract_inbound_messages

__all__ = [
    "InboundMessage",
    "InteractiveReply",
    "Location",
    "WebhookPayload",
    "WebhookResponse",
    "extract_inbound_messages",
]
