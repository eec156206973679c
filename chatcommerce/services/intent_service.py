"""Free-text intent resolution: one model call, strict parse, rule-based fallback."""

import json
import os
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from chatcommerce.logging_config import get_logger
from chatcommerce.schemas import inbound
from chatcommerce.schemas.inbound import InboundMessage
from chatcommerce.services.formatting import format_price, greeting, truncate
from chatcommerce.services.llm.base import LLMProvider, ProviderUnavailableError
from chatcommerce.services.steps import Step
from chatcommerce.services.tenant_registry import Tenant

logger = get_logger("intent_service")

MAX_PROMPT_PRODUCTS = int(os.environ.get("MAX_PROMPT_PRODUCTS", "10"))
LLM_TEMPERATURE = float(os.environ.get("LLM_TEMPERATURE", "0.7"))
LLM_MAX_TOKENS = int(os.environ.get("LLM_MAX_TOKENS", "300"))
MAX_REPLY_CHARS = 1000
MAX_STATE_SUMMARY_CHARS = 600


class Action(str, Enum):
    MENU = "menu"
    VER_CATALOGO = "ver_catalogo"
    BUSCAR_PRODUCTO = "buscar_producto"
    VER_PEDIDOS = "ver_pedidos"
    CONTACTAR = "contactar"
    SELECCION_NUMERO = "seleccion_numero"
    REGISTRAR_PEDIDO = "registrar_pedido"
    CONTINUAR = "continuar"
    PROCESAR_VOUCHER = "procesar_voucher"
    UBICACION = "ubicacion"


MODEL_ACTIONS = (
    Action.MENU,
    Action.VER_CATALOGO,
    Action.BUSCAR_PRODUCTO,
    Action.VER_PEDIDOS,
    Action.CONTACTAR,
    Action.SELECCION_NUMERO,
    Action.REGISTRAR_PEDIDO,
    Action.CONTINUAR,
)

ACTION_DESCRIPTIONS = {
    Action.MENU: "mostrar el menú principal (saludos, volver al inicio)",
    Action.VER_CATALOGO: "mostrar la lista de productos",
    Action.BUSCAR_PRODUCTO: 'buscar un producto, data: {"buscar": "<texto>"}',
    Action.VER_PEDIDOS: "mostrar los pedidos del cliente",
    Action.CONTACTAR: "el cliente quiere hablar con una persona",
    Action.SELECCION_NUMERO: 'el cliente eligió una opción numerada, data: {"numero": <entero>}',
    Action.REGISTRAR_PEDIDO: (
        'el cliente pide productos, data: {"product_code": "<código>", "quantity": <entero>, '
        '"customer_name": "...", "address": "...", "phone": "...", "complete": <bool>}'
    ),
    Action.CONTINUAR: "responder o hacer una pregunta sin cambiar de paso",
}

CLARIFYING_REPLY = (
    "🤔 No estoy seguro de haberte entendido.\n"
    "¿Quieres ver el *catálogo*, revisar *mis pedidos* o hablar con un *asesor*?"
)
THANKS_REPLY = "😊 ¡Con gusto! Si necesitas algo más, escribe *menu*."
IMAGE_REPLY = "📷 Recibí tu imagen. ¿En qué puedo ayudarte? Escribe *menu* para ver las opciones."
AUDIO_REPLY = "🎧 Por ahora no puedo escuchar audios. ¿Podrías escribirme tu mensaje?"
LOCATION_REPLY = "📍 Recibí tu ubicación."

GREETING_PATTERN = re.compile(
    r"^(hola+|holi|buenas|buenos dias|buen dia|buenas tardes|buenas noches|hey|hi|hello|alo|saludos)\b"
)
NUMERIC_PATTERN = re.compile(r"^\d+$")
ORDERS_PATTERN = re.compile(r"\b(mis pedidos|mi pedido|ver pedidos|mis ordenes|mi orden|estado de mi)\b|^pedidos$")
HUMAN_PATTERN = re.compile(r"\b(asesor\w*|humano|persona|agente|hablar con)\b")
SEARCH_PATTERN = re.compile(r"\b(tienen|tienes|hay|venden|vendes|busco|tendran)\b\s+(.+)")
CATALOG_PATTERN = re.compile(r"\b(catalogo|productos|precio|precios|cuanto|cuesta|comprar|quiero|pedir|ordenar)\b")
THANKS_PATTERN = re.compile(r"\b(gracias|thank\w*)\b")
_LEADING_ARTICLES = re.compile(r"^(un|una|unos|unas|el|la|los|las)\s+")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class MalformedModelOutputError(Exception):
    """Model output is not a single JSON object matching the decision schema."""


class OrderExtraction(BaseModel):
    """Order fields the model may extract. Totals are ignored on purpose."""

    model_config = ConfigDict(extra="ignore")

    product_code: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    customer_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    complete: bool = False


class ModelDecision(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Action
    reply: Optional[str] = Field(default=None, max_length=MAX_REPLY_CHARS)
    data: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_action_payload(self) -> "ModelDecision":
        if self.action not in MODEL_ACTIONS:
            raise ValueError(f"action {self.action.value} is not available to the model")
        if self.action == Action.SELECCION_NUMERO:
            numero = self.data.get("numero")
            if not isinstance(numero, int) or isinstance(numero, bool):
                raise ValueError("seleccion_numero requires an integer numero")
        if self.action == Action.BUSCAR_PRODUCTO:
            term = self.data.get("buscar")
            if not isinstance(term, str) or not term.strip():
                raise ValueError("buscar_producto requires buscar")
        if self.action == Action.REGISTRAR_PEDIDO:
            self.data = OrderExtraction.model_validate(self.data).model_dump(exclude_none=True)
        return self


@dataclass
class IntentDecision:
    action: Action
    reply: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    source: str = "fallback"


@dataclass
class ResolutionContext:
    tenant: Tenant
    step: Step = Step.INICIO
    session_data: Dict[str, Any] = field(default_factory=dict)
    cart: List[Any] = field(default_factory=list)
    products: List[Any] = field(default_factory=list)
    customer_name: Optional[str] = None


def normalize_for_matching(text: str) -> str:
    """Lowercase, drop accents, collapse whitespace, trim edge punctuation."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.strip().casefold())
    normalized = "".join(char for char in decomposed if not unicodedata.combining(char))
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip(" \t\n\r.,;:!?¡¿\"'()[]{}")


def parse_model_output(content: str) -> ModelDecision:
    """The single parse boundary for model output; anything off-schema is rejected."""
    if not content or not content.strip():
        raise MalformedModelOutputError("empty model output")

    text = _CODE_FENCE.sub("", content.strip()).strip()
    if not (text.startswith("{") and text.endswith("}")):
        raise MalformedModelOutputError("model output is not a bare JSON object")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedModelOutputError(f"invalid json: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedModelOutputError("model output is not an object")

    try:
        return ModelDecision.model_validate(payload)
    except ValidationError as e:
        raise MalformedModelOutputError(f"schema mismatch: {e.error_count()} errors") from e


def fallback_decision(text: str, context: Optional[ResolutionContext] = None) -> IntentDecision:
    normalized = normalize_for_matching(text)

    if GREETING_PATTERN.match(normalized):
        name = context.tenant.name if context else ""
        reply = f"{greeting()} 👋 Bienvenido a *{name}*." if name else f"{greeting()} 👋"
        return IntentDecision(Action.MENU, reply=reply)

    if NUMERIC_PATTERN.match(normalized):
        return IntentDecision(Action.SELECCION_NUMERO, data={"numero": int(normalized)})

    if ORDERS_PATTERN.search(normalized):
        return IntentDecision(Action.VER_PEDIDOS)

    if HUMAN_PATTERN.search(normalized):
        return IntentDecision(Action.CONTACTAR)

    search = SEARCH_PATTERN.search(normalized)
    if search:
        term = _LEADING_ARTICLES.sub("", search.group(2)).strip()
        if term:
            return IntentDecision(Action.BUSCAR_PRODUCTO, data={"buscar": term})

    if CATALOG_PATTERN.search(normalized):
        return IntentDecision(Action.VER_CATALOGO)

    if THANKS_PATTERN.search(normalized):
        return IntentDecision(Action.CONTINUAR, reply=THANKS_REPLY)

    return IntentDecision(Action.CONTINUAR, reply=CLARIFYING_REPLY)


def media_decision(message: InboundMessage, step: Step) -> IntentDecision:
    """Fixed handling for non-text messages, keyed on the current step."""
    awaiting_proof = step == Step.ESPERANDO_VOUCHER

    if message.type in (inbound.IMAGE, inbound.DOCUMENT) and awaiting_proof:
        return IntentDecision(Action.PROCESAR_VOUCHER, data={"media_id": message.media_id}, source="media")
    if message.type == inbound.IMAGE:
        return IntentDecision(Action.CONTINUAR, reply=IMAGE_REPLY, source="media")
    if message.type == inbound.LOCATION and message.location is not None:
        data = message.location.model_dump(exclude_none=True)
        data["text"] = message.location.describe()
        return IntentDecision(Action.UBICACION, reply=LOCATION_REPLY, data=data, source="media")
    if message.type == inbound.AUDIO:
        return IntentDecision(Action.CONTINUAR, reply=AUDIO_REPLY, source="media")
    return IntentDecision(Action.CONTINUAR, reply=CLARIFYING_REPLY, source="media")


def summarize_state(context: ResolutionContext) -> str:
    parts = [f"paso={context.step.value}"]
    data = context.session_data
    product = data.get("product")
    if isinstance(product, dict) and product.get("name"):
        parts.append(f"producto={product['name']}")
    if data.get("quantity"):
        parts.append(f"cantidad={data['quantity']}")
    for key in ("customer_name", "address", "phone"):
        if data.get(key):
            parts.append(f"{key}={data[key]}")
    if context.cart:
        lines = ", ".join(f"{line.code} x{line.quantity}" for line in context.cart)
        parts.append(f"carrito=[{lines}]")
    return truncate("; ".join(parts), MAX_STATE_SUMMARY_CHARS)


def build_system_prompt(context: ResolutionContext, max_products: int = MAX_PROMPT_PRODUCTS) -> str:
    tenant = context.tenant
    lines = [f'Eres el asistente de ventas de "{tenant.name}" por WhatsApp. Responde en español, breve y amable.']
    for label, key in (
        ("Sobre el negocio", "business_prompt"),
        ("Tono", "tone"),
        ("Reglas de venta", "sales_rules"),
        ("Horario", "hours"),
        ("Información adicional", "extra_info"),
    ):
        value = tenant.option(key)
        if value:
            lines.append(f"{label}: {value}")

    lines.append("")
    lines.append("PRODUCTOS DISPONIBLES:")
    products = context.products[:max_products]
    if products:
        for product in products:
            lines.append(f"- {product.name} (código {product.code}): {format_price(product.price)} (stock: {product.available})")
    else:
        lines.append("- (sin productos cargados)")

    lines.append("")
    lines.append(f"CLIENTE: {context.customer_name or 'desconocido'}")
    lines.append(f"ESTADO ACTUAL: {summarize_state(context)}")
    lines.append("")
    lines.append("ACCIONES PERMITIDAS:")
    for action in MODEL_ACTIONS:
        lines.append(f"- {action.value}: {ACTION_DESCRIPTIONS[action]}")
    lines.append("")
    lines.append("REGLAS:")
    lines.append("- Usa solo productos de la lista. No inventes precios ni calcules totales.")
    lines.append("- Si no entiendes, usa la acción continuar con una pregunta corta.")
    lines.append("")
    lines.append("Responde SOLO con un objeto JSON, sin texto adicional:")
    lines.append('{"action": "<acción>", "reply": "<respuesta corta>", "data": {}}')
    return "\n".join(lines)


class IntentResolver:
    """Resolves a customer message to an action for the active flow."""

    def __init__(self, provider: Optional[LLMProvider] = None, timeout_seconds: float = 8.0):
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    def resolve(self, message: InboundMessage, context: ResolutionContext) -> IntentDecision:
        if not message.is_text:
            return media_decision(message, context.step)

        text = message.reply_id or message.text
        if self.provider is None:
            return fallback_decision(text, context)

        try:
            return self._resolve_with_model(text, context)
        except httpx.TimeoutException:
            logger.warning(
                "Intent model timed out",
                extra={"context": {"tenant_id": context.tenant.id, "timeout": self.timeout_seconds}},
            )
        except (httpx.HTTPError, ProviderUnavailableError) as e:
            logger.warning(f"Intent model unavailable: {e}")
        except MalformedModelOutputError as e:
            logger.warning(f"Intent model output rejected: {e}")
        except Exception as e:
            logger.error(f"Intent model call failed: {e}", exc_info=True)
        return fallback_decision(text, context)

    def _resolve_with_model(self, text: str, context: ResolutionContext) -> IntentDecision:
        messages = [
            {"role": "system", "content": build_system_prompt(context)},
            {"role": "user", "content": text},
        ]
        response = self.provider.generate(
            messages,
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
            timeout_seconds=self.timeout_seconds,
        )
        decision = parse_model_output(response.content)
        logger.info(
            "Intent resolved",
            extra={"context": {"tenant_id": context.tenant.id, "action": decision.action.value, "model": response.model}},
        )
        return IntentDecision(decision.action, reply=decision.reply, data=decision.data, source="model")
