from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

MAX_BUTTONS = 3
BUTTON_TITLE_LIMIT = 20


class ReplyKind(str, Enum):
    TEXT = "text"
    BUTTONS = "buttons"
    LIST = "list"
    IMAGE = "image"
    IMAGE_BUTTONS = "image_buttons"


@dataclass
class Button:
    id: str
    title: str


@dataclass
class ListRow:
    id: str
    title: str
    description: str = ""


@dataclass
class Reply:
    kind: ReplyKind
    body: str = ""
    buttons: List[Button] = field(default_factory=list)
    rows: List[ListRow] = field(default_factory=list)
    list_label: str = "Ver opciones"
    section_title: str = "Opciones"
    image_url: Optional[str] = None


def text_reply(body: str) -> Reply:
    return Reply(ReplyKind.TEXT, body=body)


def buttons_reply(body: str, buttons: List[Button]) -> Reply:
    return Reply(ReplyKind.BUTTONS, body=body, buttons=buttons[:MAX_BUTTONS])


def list_reply(body: str, rows: List[ListRow], label: str = "Ver opciones", section_title: str = "Opciones") -> Reply:
    return Reply(ReplyKind.LIST, body=body, rows=rows, list_label=label, section_title=section_title)


def image_reply(image_url: str, caption: str = "") -> Reply:
    return Reply(ReplyKind.IMAGE, body=caption, image_url=image_url)


def image_buttons_reply(image_url: str, body: str, buttons: List[Button]) -> Reply:
    return Reply(ReplyKind.IMAGE_BUTTONS, body=body, buttons=buttons[:MAX_BUTTONS], image_url=image_url)


class OutboundChannel(ABC):
    """Delivery to the customer. Failures are reported in the result, never raised."""

    @abstractmethod
    def send_text(self, to: str, text: str) -> dict:
        pass

    @abstractmethod
    def send_buttons(self, to: str, body: str, buttons: List[Button]) -> dict:
        pass

    @abstractmethod
    def send_list(self, to: str, body: str, rows: List[ListRow], label: str, section_title: str) -> dict:
        pass

    @abstractmethod
    def send_image(self, to: str, image_url: str, caption: str = "") -> dict:
        pass

    @abstractmethod
    def send_image_with_buttons(self, to: str, image_url: str, body: str, buttons: List[Button]) -> dict:
        pass

    def mark_as_read(self, message_id: str) -> dict:
        return {"ok": True}

    def deliver(self, to: str, reply: Reply) -> dict:
        if reply.kind == ReplyKind.BUTTONS:
            return self.send_buttons(to, reply.body, reply.buttons)
        if reply.kind == ReplyKind.LIST:
            return self.send_list(to, reply.body, reply.rows, reply.list_label, reply.section_title)
        if reply.kind == ReplyKind.IMAGE:
            return self.send_image(to, reply.image_url, reply.body)
        if reply.kind == ReplyKind.IMAGE_BUTTONS:
            return self.send_image_with_buttons(to, reply.image_url, reply.body, reply.buttons)
        return self.send_text(to, reply.body)
