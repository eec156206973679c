import pytest
from fastapi.testclient import TestClient

from chatcommerce.dependencies import get_engine
from chatcommerce.main import app
from chatcommerce.schemas.webhook import WebhookPayload, extract_inbound_messages
from chatcommerce.services import tables
from chatcommerce.services.steps import Step

USER = "51987654321"


def payload_for(*messages, phone_number_id="111", name="Ana"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": phone_number_id, "display_phone_number": "51100000000"},
                            "contacts": [{"wa_id": USER, "profile": {"name": name}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


def text_message(body, message_id="wamid.1"):
    return {"from": USER, "id": message_id, "type": "text", "text": {"body": body}}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestExtraction:
    def test_message_kinds(self):
        payload = WebhookPayload.model_validate(
            payload_for(
                text_message("hola"),
                {
                    "from": USER,
                    "id": "wamid.2",
                    "type": "interactive",
                    "interactive": {"type": "button_reply", "button_reply": {"id": "pedir", "title": "Hacer pedido"}},
                },
                {"from": USER, "id": "wamid.3", "type": "image", "image": {"id": "MEDIA-1", "caption": "pago"}},
                {"from": USER, "id": "wamid.4", "type": "location", "location": {"latitude": -12.1, "longitude": -77.0}},
                {"from": USER, "id": "wamid.5", "type": "sticker", "sticker": {"id": "S1"}},
            )
        )

        messages = extract_inbound_messages(payload)

        assert [m.type for m in messages] == ["text", "interactive", "image", "location", "sticker"]
        assert messages[0].text == "hola"
        assert messages[0].phone_id == "111"
        assert messages[0].profile_name == "Ana"
        assert messages[1].reply_id == "pedir"
        assert messages[1].command == "pedir"
        assert messages[2].media_id == "MEDIA-1"
        assert messages[2].text == "pago"
        assert messages[3].location.latitude == -12.1
        assert messages[4].transcript() == "[sticker]"

    def test_catalog_cart_becomes_text(self):
        payload = WebhookPayload.model_validate(
            payload_for(
                {
                    "from": USER,
                    "id": "wamid.6",
                    "type": "order",
                    "order": {"product_items": [{"product_retailer_id": "CAF01", "quantity": 2}]},
                }
            )
        )

        message = extract_inbound_messages(payload)[0]

        assert message.type == "order"
        assert message.text == "CAF01 x2"
        assert message.transcript() == "CAF01 x2"

    def test_status_updates_have_no_messages(self):
        payload = WebhookPayload.model_validate(
            {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "read"}]}}]}]}
        )
        assert extract_inbound_messages(payload) == []


class TestVerification:
    def test_valid_token_echoes_challenge(self, client):
        response = client.get(
            "/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "42"}
        )
        assert response.status_code == 200
        assert response.text == "42"

    def test_wrong_token(self, client):
        response = client.get(
            "/webhook/T-CAFE", params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "42"}
        )
        assert response.status_code == 403


class TestReceive:
    def test_dedicated_path(self, client, engine, channel):
        response = client.post("/webhook/T-CAFE", json=payload_for(text_message("hola")))

        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 1, "message": "ok"}
        assert engine.sessions.get_state(USER, "T-CAFE").step == Step.MENU
        assert channel.last["to"] == USER

    def test_shared_endpoint_uses_channel_id(self, client, engine):
        client.post("/webhook", json=payload_for(text_message("hola"), phone_number_id="222"))
        assert engine.sessions.get_state(USER, "T-FLOR").step == Step.MENU

    def test_no_messages(self, client):
        response = client.post("/webhook", json={"object": "whatsapp_business_account", "entry": []})
        assert response.json()["processed"] == 0

    def test_dispatch_error_is_reported_not_raised(self, client, engine, monkeypatch):
        def boom(message, routing_path=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine.dispatcher, "dispatch", boom)
        response = client.post("/webhook/T-CAFE", json=payload_for(text_message("hola")))
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestAdmin:
    headers = {"X-Admin-Token": "secret"}

    def test_requires_token(self, client):
        assert client.get("/admin/stats").status_code == 401
        assert client.get("/admin/stats", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_stats(self, client, send):
        send("hola", path="/webhook/T-CAFE")
        body = client.get("/admin/stats", headers=self.headers).json()
        assert body["tenants"] == 4
        assert body["sessions"] == 1

    def test_reload(self, client):
        response = client.post("/admin/tenants/reload", headers=self.headers)
        assert response.json() == {"status": "ok", "tenants": 4}

    def test_advisor_reply_requires_active_conversation(self, client):
        response = client.post(f"/admin/advisor/T-CAFE/{USER}/reply", json={"text": "Hola"}, headers=self.headers)
        assert response.status_code == 409

    def test_advisor_reply_and_release(self, client, send, channel, books):
        send("hola", path="/webhook/T-CAFE")
        send("3", path="/webhook/T-CAFE")

        conversations = client.get(
            "/admin/advisor/T-CAFE/conversations", params={"state": "ACTIVA"}, headers=self.headers
        ).json()
        assert [c["user"] for c in conversations] == [USER]

        response = client.post(
            f"/admin/advisor/T-CAFE/{USER}/reply", json={"text": "Hola, soy Carla"}, headers=self.headers
        )
        assert response.json() == {"ok": True, "logged": True}
        assert channel.last["body"] == "Hola, soy Carla"
        assert ("ADVISOR", "Hola, soy Carla") in [
            (row[3], row[4]) for row in books("T-CAFE").get_rows(tables.MESSAGES)
        ]

        response = client.post(f"/admin/advisor/T-CAFE/{USER}/release", headers=self.headers)
        assert response.json() == {"status": "ok", "state": "LISTENING"}

        messages = client.get(
            f"/admin/advisor/T-CAFE/conversations/{conversations[0]['id']}/messages", headers=self.headers
        ).json()["messages"]
        assert any(m["kind"] == "ADVISOR" for m in messages)

    def test_blank_reply_rejected(self, client):
        response = client.post(f"/admin/advisor/T-CAFE/{USER}/reply", json={"text": "  "}, headers=self.headers)
        assert response.status_code == 422

    def test_unknown_tenant(self, client):
        assert client.delete(f"/admin/sessions/NOPE/{USER}", headers=self.headers).status_code == 404

    def test_reset_session(self, client, engine, send):
        send("hola", path="/webhook/T-CAFE")
        client.delete(f"/admin/sessions/T-CAFE/{USER}", headers=self.headers)
        assert engine.sessions.get_state(USER, "T-CAFE").step == Step.INICIO

    def test_order_status(self, client, send, books):
        books("T-CAFE").append_row(tables.ORDERS, ["CAFE-1", "", "", USER, "", "", "", "[]", 10, "PENDIENTE_VALIDACION"])
        response = client.post("/admin/orders/T-CAFE/CAFE-1/status", json={"status": "confirmado"}, headers=self.headers)
        assert response.json()["order_status"] == "CONFIRMADO"
        assert books("T-CAFE").get_rows(tables.ORDERS)[0][9] == "CONFIRMADO"

        response = client.post("/admin/orders/T-CAFE/CAFE-1/status", json={"status": "PERDIDO"}, headers=self.headers)
        assert response.status_code == 422


class TestCatalog:
    def test_public_catalog(self, client):
        response = client.get("/api/T-CAFE/catalog")
        assert response.status_code == 200
        body = response.json()
        assert body["tenant_name"] == "Café Central"
        assert [p["code"] for p in body["products"]] == ["CAF01", "CAF02", "CAF03"]
        assert body["products"][2]["available"] == 0

    def test_tenant_without_catalog(self, client):
        assert client.get("/api/T-FLOR/catalog").status_code == 404
        assert client.get("/api/NOPE/catalog").status_code == 404
