from unittest.mock import Mock

import httpx
import pytest

from chatcommerce.schemas.inbound import InboundMessage, Location
from chatcommerce.services.intent_service import (
    AUDIO_REPLY,
    CLARIFYING_REPLY,
    IMAGE_REPLY,
    THANKS_REPLY,
    Action,
    IntentResolver,
    MalformedModelOutputError,
    ResolutionContext,
    build_system_prompt,
    fallback_decision,
    normalize_for_matching,
    parse_model_output,
)
from chatcommerce.services.llm import LLMResponse, ProviderUnavailableError
from chatcommerce.services.records_service import Product
from chatcommerce.services.steps import Step
from chatcommerce.services.tenant_registry import Tenant

USER = "51987654321"


@pytest.fixture
def context():
    tenant = Tenant(id="T-FLOR", name="Florería Lila", config={"tone": "cercano", "hours": "9am-6pm"})
    products = [Product(code=f"P{i}", name=f"Ramo {i}", price=10.0 + i, stock=5) for i in range(15)]
    return ResolutionContext(tenant=tenant, step=Step.INICIO, products=products, customer_name="Ana")


def text(body):
    return InboundMessage(from_=USER, text=body)


def provider_returning(content):
    provider = Mock()
    provider.generate.return_value = LLMResponse(content=content, model="test-model")
    return provider


class TestNormalize:
    def test_accents_case_and_punctuation(self):
        assert normalize_for_matching("  ¿Cuánto   CUESTA? ") == "cuanto cuesta"

    def test_empty(self):
        assert normalize_for_matching("") == ""


class TestFallbackRules:
    @pytest.mark.parametrize("body", ["hola", "Hola!", "buenas tardes", "Buenos días"])
    def test_greeting_goes_to_menu(self, body):
        assert fallback_decision(body).action == Action.MENU

    def test_greeting_names_the_tenant(self, context):
        assert "Florería Lila" in fallback_decision("hola", context).reply

    def test_numeric_selection(self):
        decision = fallback_decision("3")
        assert decision.action == Action.SELECCION_NUMERO
        assert decision.data == {"numero": 3}

    def test_orders_keyword_wins_over_catalog(self):
        assert fallback_decision("quiero ver mis pedidos").action == Action.VER_PEDIDOS

    def test_human(self):
        assert fallback_decision("necesito hablar con un asesor").action == Action.CONTACTAR

    def test_search_term(self):
        decision = fallback_decision("¿Tienen las rosas rojas?")
        assert decision.action == Action.BUSCAR_PRODUCTO
        assert decision.data == {"buscar": "rosas rojas"}

    def test_catalog_keywords(self):
        assert fallback_decision("cuánto cuesta").action == Action.VER_CATALOGO

    def test_thanks(self):
        decision = fallback_decision("muchas gracias")
        assert decision.action == Action.CONTINUAR
        assert decision.reply == THANKS_REPLY

    def test_clarifying_question_last(self):
        decision = fallback_decision("xyz")
        assert decision.action == Action.CONTINUAR
        assert decision.reply == CLARIFYING_REPLY
        assert decision.source == "fallback"


class TestParseModelOutput:
    def test_valid_object(self):
        decision = parse_model_output('{"action": "ver_catalogo", "reply": "Aquí tienes", "data": {}}')
        assert decision.action == Action.VER_CATALOGO
        assert decision.reply == "Aquí tienes"

    def test_code_fence_is_tolerated(self):
        assert parse_model_output('```json\n{"action": "menu"}\n```').action == Action.MENU

    @pytest.mark.parametrize(
        "content",
        [
            "",
            "Claro, te muestro el menú",
            'Respuesta: {"action": "menu"}',
            "[1, 2]",
            '{"action": "menu",}',
            '{"action": "bailar"}',
            '{"action": "menu", "extra": 1}',
            '{"action": "procesar_voucher"}',
            '{"action": "seleccion_numero", "data": {"numero": "2"}}',
            '{"action": "buscar_producto", "data": {}}',
            '{"action": "registrar_pedido", "data": {"quantity": 0}}',
        ],
    )
    def test_rejects_anything_off_schema(self, content):
        with pytest.raises(MalformedModelOutputError):
            parse_model_output(content)

    def test_order_totals_are_dropped(self):
        decision = parse_model_output(
            '{"action": "registrar_pedido", "data": {"product_code": "ROS12", "quantity": 2, "total": 5}}'
        )
        assert decision.data == {"product_code": "ROS12", "quantity": 2, "complete": False}


class TestSystemPrompt:
    def test_prompt_is_bounded(self, context):
        prompt = build_system_prompt(context)
        assert "Florería Lila" in prompt
        assert "Tono: cercano" in prompt
        assert "Ramo 9 " in prompt
        assert "Ramo 10 " not in prompt
        assert "CLIENTE: Ana" in prompt
        assert "procesar_voucher" not in prompt
        assert "registrar_pedido" in prompt


class TestResolver:
    def test_without_provider_uses_rules(self, context):
        decision = IntentResolver(None).resolve(text("hola"), context)
        assert decision.action == Action.MENU

    def test_model_decision(self, context):
        provider = provider_returning('{"action": "buscar_producto", "reply": "Busco", "data": {"buscar": "rosas"}}')
        decision = IntentResolver(provider, timeout_seconds=3).resolve(text("quiero rosas"), context)

        assert decision.action == Action.BUSCAR_PRODUCTO
        assert decision.data == {"buscar": "rosas"}
        assert decision.source == "model"
        kwargs = provider.generate.call_args.kwargs
        assert kwargs["timeout_seconds"] == 3
        messages = provider.generate.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert messages[1] == {"role": "user", "content": "quiero rosas"}

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ReadTimeout("slow"),
            httpx.ConnectError("refused"),
            ProviderUnavailableError("500"),
            RuntimeError("unexpected"),
        ],
    )
    def test_provider_failure_falls_back_without_retry(self, context, error):
        provider = Mock()
        provider.generate.side_effect = error
        decision = IntentResolver(provider).resolve(text("3"), context)

        assert decision.action == Action.SELECCION_NUMERO
        assert decision.source == "fallback"
        provider.generate.assert_called_once()

    def test_malformed_output_falls_back(self, context):
        provider = provider_returning("Hola! Te muestro el catálogo")
        decision = IntentResolver(provider).resolve(text("quiero ver mis pedidos"), context)
        assert decision.action == Action.VER_PEDIDOS
        provider.generate.assert_called_once()


class TestMediaMessages:
    def test_image_while_waiting_for_proof(self, context):
        provider = Mock()
        context.step = Step.ESPERANDO_VOUCHER
        message = InboundMessage(from_=USER, type="image", media_id="MEDIA-1")

        decision = IntentResolver(provider).resolve(message, context)

        assert decision.action == Action.PROCESAR_VOUCHER
        assert decision.data == {"media_id": "MEDIA-1"}
        provider.generate.assert_not_called()

    def test_image_elsewhere_asks(self, context):
        message = InboundMessage(from_=USER, type="image", media_id="MEDIA-1")
        decision = IntentResolver(Mock()).resolve(message, context)
        assert decision.action == Action.CONTINUAR
        assert decision.reply == IMAGE_REPLY

    def test_audio(self, context):
        decision = IntentResolver(None).resolve(InboundMessage(from_=USER, type="audio"), context)
        assert decision.reply == AUDIO_REPLY

    def test_location(self, context):
        message = InboundMessage(
            from_=USER, type="location", location=Location(latitude=-12.1, longitude=-77.03, address="Av. Larco 123")
        )
        decision = IntentResolver(None).resolve(message, context)
        assert decision.action == Action.UBICACION
        assert decision.data["text"].startswith("Av. Larco 123")
