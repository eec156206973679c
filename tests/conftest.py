import json
from typing import List, Optional

import pytest

from chatcommerce.config import Settings
from chatcommerce.schemas.inbound import InboundMessage
from chatcommerce.services import tables
from chatcommerce.services.engine import build_engine
from chatcommerce.services.outbound import Button, ListRow, OutboundChannel
from chatcommerce.services.storage import InMemoryBooks

CUSTOMER = "51987654321"

TENANT_ROWS = [
    [
        "T-CAFE",
        "Café Central",
        "DEDICATED",
        "111",
        "tok-cafe",
        "",
        "",
        "STANDARD",
        "human_advisor,catalog_web,free_samples",
        "CAFE",
        "ACTIVE",
        json.dumps({"unit": "unidad", "min_quantity": 1, "payment_flow": "voucher"}),
    ],
    [
        "T-FLOR",
        "Florería Lila",
        "DEDICATED",
        "222",
        "tok-flor",
        "",
        "",
        "ASSISTED",
        "human_advisor",
        "FLOR",
        "ACTIVE",
        json.dumps({"unit": "ramo", "payment_flow": "contraentrega"}),
    ],
    ["T-PAN", "Panadería Sol", "SHARED", "", "", "", "", "STANDARD", "", "PAN", "ACTIVE", "{}"],
    ["T-DUL", "Dulcería Luna", "SHARED", "", "", "", "", "STANDARD", "", "DUL", "ACTIVE", "{}"],
    ["T-OFF", "Tienda Cerrada", "DEDICATED", "333", "", "", "", "STANDARD", "", "OFF", "INACTIVE", "{}"],
]

INVENTORY_ROWS = {
    "T-CAFE": [
        ["CAF01", "Café molido 250g", "Tostado medio", 25.0, 10, 0, "", "ACTIVO", "cafe"],
        ["CAF02", "Café en grano 1kg", "", 80.0, 5, 0, "https://img.example/cafe.jpg", "ACTIVO", "cafe"],
        ["CAF03", "Taza de cerámica", "", 15.0, 0, 0, "", "ACTIVO", "accesorios"],
        ["CAF04", "Prensa francesa", "", 120.0, 3, 0, "", "INACTIVO", "accesorios"],
    ],
    "T-FLOR": [
        ["ROS12", "Ramo de rosas", "12 rosas rojas", 60.0, 4, 0, "", "ACTIVO", "ramos"],
        ["GIR01", "Girasoles", "", 45.0, 2, 0, "", "ACTIVO", "ramos"],
    ],
    "T-PAN": [["PAN01", "Pan francés", "", 0.5, 100, 0, "", "ACTIVO", ""]],
    "T-DUL": [["DUL01", "Alfajor", "", 3.0, 20, 0, "", "ACTIVO", ""]],
}


class RecordingChannel(OutboundChannel):
    """Outbound channel that keeps every delivery in memory."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent: List[dict] = []

    def _record(self, **entry) -> dict:
        self.sent.append(entry)
        return {"ok": True} if self.ok else {"ok": False, "error": "channel down"}

    def send_text(self, to: str, text: str) -> dict:
        return self._record(to=to, kind="text", body=text)

    def send_buttons(self, to: str, body: str, buttons: List[Button]) -> dict:
        return self._record(to=to, kind="buttons", body=body, buttons=[b.id for b in buttons])

    def send_list(self, to: str, body: str, rows: List[ListRow], label: str, section_title: str) -> dict:
        return self._record(to=to, kind="list", body=body, rows=[r.id for r in rows])

    def send_image(self, to: str, image_url: str, caption: str = "") -> dict:
        return self._record(to=to, kind="image", body=caption, image_url=image_url)

    def send_image_with_buttons(self, to: str, image_url: str, body: str, buttons: List[Button]) -> dict:
        return self._record(to=to, kind="image_buttons", body=body, image_url=image_url, buttons=[b.id for b in buttons])

    @property
    def bodies(self) -> List[str]:
        return [entry["body"] for entry in self.sent]

    @property
    def last(self) -> Optional[dict]:
        return self.sent[-1] if self.sent else None


def seed_books(books: InMemoryBooks) -> InMemoryBooks:
    master = books("master")
    for row in TENANT_ROWS:
        master.append_row(tables.TENANTS, row)
    for book_id, rows in INVENTORY_ROWS.items():
        for row in rows:
            books(book_id).append_row(tables.INVENTORY, row)
    books("T-CAFE").append_row(tables.SETTINGS, ["yape", "999888777"])
    books("T-CAFE").append_row(tables.SETTINGS, ["account_holder", "Café Central SAC"])
    return books


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("ADMIN_TOKEN", "secret")
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        master_book_id="master",
        default_tenant_id=None,
        local_tenants_file=None,
        admin_token="secret",
        whatsapp_verify_token="verify-me",
        groq_api_key=None,
        gemini_api_key=None,
    )


@pytest.fixture
def books():
    return seed_books(InMemoryBooks())


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def engine(settings, books, channel):
    engine = build_engine(settings, books, channel_for=lambda tenant: channel, use_configured_provider=False)
    engine.init()
    yield engine
    engine.teardown()


@pytest.fixture
def send(engine):
    """Dispatch one inbound message; `button` makes it an interactive reply."""

    def _send(text: str = "", user: str = CUSTOMER, path: Optional[str] = None, button: Optional[str] = None, **fields):
        if button is not None:
            fields["type"] = "interactive"
            fields["interactive_data"] = {"id": button, "title": text or button}
        message = InboundMessage(from_=user, text=text, **fields)
        return engine.dispatcher.dispatch(message, routing_path=path)

    return _send
