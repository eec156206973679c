from typing import List, Optional

import httpx

from chatcommerce.logging_config import get_logger
from chatcommerce.services.outbound import BUTTON_TITLE_LIMIT, MAX_BUTTONS, Button, ListRow, OutboundChannel

logger = get_logger("whatsapp_service")

LIST_ROW_TITLE_LIMIT = 24
LIST_ROW_DESCRIPTION_LIMIT = 72
LIST_MAX_ROWS = 10


class WhatsAppService(OutboundChannel):
    """Service for sending messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        phone_id: str,
        access_token: str,
        api_url: str = "https://graph.facebook.com",
        api_version: str = "v21.0",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.phone_id = phone_id
        self.access_token = access_token
        self.base_url = f"{api_url.rstrip('/')}/{api_version}/{phone_id}/messages"
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _make_request(self, payload: dict) -> dict:
        """Make request to the Graph API."""
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(
                    self.base_url,
                    headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
                    json={"messaging_product": "whatsapp", **payload},
                )
            if response.status_code >= 400:
                logger.error(f"WhatsApp API error: {response.status_code} - {response.text}")
                return {"ok": False, "error": response.text, "status": response.status_code}
            return {"ok": True, **response.json()}
        except Exception as e:
            logger.error(f"WhatsApp API error: {e}")
            return {"ok": False, "error": str(e)}

    @staticmethod
    def _button_payload(buttons: List[Button]) -> list:
        return [
            {"type": "reply", "reply": {"id": button.id, "title": button.title[:BUTTON_TITLE_LIMIT]}}
            for button in buttons[:MAX_BUTTONS]
        ]

    def send_text(self, to: str, text: str) -> dict:
        return self._make_request(
            {
                "recipient_type": "individual",
                "to": to,
                "type": "text",
                "text": {"preview_url": False, "body": text},
            }
        )

    def send_buttons(self, to: str, body: str, buttons: List[Button]) -> dict:
        return self._make_request(
            {
                "recipient_type": "individual",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "body": {"text": body},
                    "action": {"buttons": self._button_payload(buttons)},
                },
            }
        )

    def send_list(self, to: str, body: str, rows: List[ListRow], label: str = "Ver opciones", section_title: str = "Opciones") -> dict:
        return self._make_request(
            {
                "recipient_type": "individual",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "list",
                    "body": {"text": body},
                    "action": {
                        "button": label[:BUTTON_TITLE_LIMIT],
                        "sections": [
                            {
                                "title": section_title[:LIST_ROW_TITLE_LIMIT],
                                "rows": [
                                    {
                                        "id": row.id,
                                        "title": row.title[:LIST_ROW_TITLE_LIMIT],
                                        "description": row.description[:LIST_ROW_DESCRIPTION_LIMIT],
                                    }
                                    for row in rows[:LIST_MAX_ROWS]
                                ],
                            }
                        ],
                    },
                },
            }
        )

    def send_image(self, to: str, image_url: str, caption: str = "") -> dict:
        image = {"link": image_url}
        if caption:
            image["caption"] = caption
        return self._make_request({"recipient_type": "individual", "to": to, "type": "image", "image": image})

    def send_image_with_buttons(self, to: str, image_url: str, body: str, buttons: List[Button]) -> dict:
        return self._make_request(
            {
                "recipient_type": "individual",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "header": {"type": "image", "image": {"link": image_url}},
                    "body": {"text": body},
                    "action": {"buttons": self._button_payload(buttons)},
                },
            }
        )

    def mark_as_read(self, message_id: str) -> dict:
        return self._make_request({"status": "read", "message_id": message_id})
