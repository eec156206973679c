from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

TEXT = "text"
IMAGE = "image"
INTERACTIVE = "interactive"
LOCATION = "location"
DOCUMENT = "document"
AUDIO = "audio"


class InteractiveReply(BaseModel):
    id: str
    title: str = ""


class Location(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None

    def describe(self) -> str:
        label = self.address or self.name
        coordinates = f"{self.latitude:.6f},{self.longitude:.6f}"
        return f"{label} ({coordinates})" if label else f"Ubicación {coordinates}"


class InboundMessage(BaseModel):
    """Channel-independent message the orchestration consumes."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    text: str = ""
    type: str = TEXT
    interactive_data: Optional[InteractiveReply] = Field(default=None, alias="interactiveData")
    media_id: Optional[str] = Field(default=None, alias="mediaId")
    location: Optional[Location] = None
    message_id: Optional[str] = None
    phone_id: Optional[str] = None
    profile_name: Optional[str] = None

    @property
    def reply_id(self) -> Optional[str]:
        return self.interactive_data.id if self.interactive_data else None

    @property
    def command(self) -> str:
        """Button id when present, otherwise the text, lowercased."""
        return (self.reply_id or self.text or "").strip().lower()

    @property
    def is_text(self) -> bool:
        return self.type in (TEXT, INTERACTIVE)

    def transcript(self) -> str:
        return self.text or f"[{self.type}]"
