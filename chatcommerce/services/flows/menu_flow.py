from typing import Callable, Dict, List

from chatcommerce.services.advisor_service import MessageKind
from chatcommerce.services.flows.base import MIN_ADDRESS_LENGTH, MIN_PHONE_DIGITS, OrderFlow, Turn
from chatcommerce.services.phone import count_digits
from chatcommerce.services.steps import MENU_FLOW_TRANSITIONS, Step
from chatcommerce.services.tenant_registry import FREE_SAMPLES, FlowType

ORDER_OPTIONS = {"pedir", "1", "hacer pedido", "catalogo"}
ORDERS_OPTIONS = {"ver_pedidos", "2", "mis pedidos", "pedidos"}
CONTACT_OPTIONS = {"3"}
SAMPLE_OPTIONS = {"muestra", "muestras", "muestra gratis"}


class MenuFlow(OrderFlow):
    """Deterministic, button-driven flow."""

    flow_type = FlowType.STANDARD
    transitions = MENU_FLOW_TRANSITIONS

    def step_handlers(self) -> Dict[Step, Callable[[Turn], None]]:
        return {
            Step.INICIO: self.on_start,
            Step.MENU: self.on_menu,
            Step.MUESTRA_EMPRESA: self.on_sample_company,
            Step.MUESTRA_NOMBRE: self.on_sample_name,
            Step.MUESTRA_DIRECCION: self.on_sample_address,
            Step.MUESTRA_TELEFONO: self.on_sample_phone,
            **self.order_step_handlers(),
        }

    def menu_extra_lines(self, turn: Turn) -> List[str]:
        if turn.tenant.has_capability(FREE_SAMPLES):
            return ["", "🎁 Escribe *muestra* para solicitar una muestra gratis."]
        return []

    def on_start(self, turn: Turn) -> None:
        self.show_menu(turn)

    def on_menu(self, turn: Turn) -> None:
        option = turn.normalized
        if option in ORDER_OPTIONS:
            self.show_catalog(turn)
        elif option in ORDERS_OPTIONS:
            self.show_orders(turn)
        elif option in CONTACT_OPTIONS:
            self.contact(turn)
        elif option in SAMPLE_OPTIONS and turn.tenant.has_capability(FREE_SAMPLES):
            turn.say("🎁 ¡Genial! ¿Cuál es el nombre de tu empresa o negocio?")
            self.move(turn, Step.MUESTRA_EMPRESA)
        else:
            self.show_menu(turn, intro="👇 Elige una opción del menú.")

    # === FREE SAMPLES ===

    def on_sample_company(self, turn: Turn) -> None:
        company = (turn.message.text or "").strip()
        if len(company) < 2:
            turn.say("✏️ Escribe el nombre de tu empresa.")
            return
        self.remember(turn, sample_company=company)
        turn.say("👤 ¿Cuál es tu nombre?")
        self.move(turn, Step.MUESTRA_NOMBRE)

    def on_sample_name(self, turn: Turn) -> None:
        name = (turn.message.text or "").strip()
        if len(name) < 3:
            turn.say("✏️ Escribe un nombre válido (mínimo 3 letras).")
            return
        self.remember(turn, sample_name=name)
        turn.say("📍 ¿A qué dirección enviamos la muestra?")
        self.move(turn, Step.MUESTRA_DIRECCION)

    def on_sample_address(self, turn: Turn) -> None:
        if turn.message.location is not None:
            address = turn.message.location.describe()
        else:
            address = (turn.message.text or "").strip()
        if len(address) < MIN_ADDRESS_LENGTH:
            turn.say("✏️ Escribe una dirección más completa.")
            return
        self.remember(turn, sample_address=address)
        turn.say("📞 ¿A qué número te contactamos?")
        self.move(turn, Step.MUESTRA_TELEFONO)

    def on_sample_phone(self, turn: Turn) -> None:
        phone = (turn.message.text or "").strip()
        if count_digits(phone) < MIN_PHONE_DIGITS:
            turn.say("✏️ Escribe un número de teléfono válido (9 dígitos).")
            return
        request = "\n".join(
            [
                "🎁 SOLICITUD DE MUESTRA",
                f"Empresa: {turn.data.get('sample_company', '')}",
                f"Nombre: {turn.data.get('sample_name', '')}",
                f"Dirección: {turn.data.get('sample_address', '')}",
                f"Teléfono: {phone}",
            ]
        )
        result = turn.context.advisor.record_auto(
            turn.user, turn.tenant, request, MessageKind.SYSTEM, customer_name=turn.data.get("sample_name")
        )
        if not result.ok:
            turn.say("⚠️ No pudimos registrar tu solicitud. Intenta nuevamente en unos minutos.")
            return
        turn.say("🎁 ¡Listo! Registramos tu solicitud de muestra. Te contactaremos pronto.")
        self.reset(turn)
