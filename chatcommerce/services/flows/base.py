"""Flow interface and the order sub-flow every concrete flow shares."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from chatcommerce.logging_config import conversation_logger
from chatcommerce.schemas.inbound import InboundMessage
from chatcommerce.services.advisor_service import AdvisorHandoffService
from chatcommerce.services.formatting import format_order_status, format_price, generate_id, greeting, now_iso
from chatcommerce.services.intent_service import (
    Action,
    IntentResolver,
    ResolutionContext,
    normalize_for_matching,
)
from chatcommerce.services.outbound import Button, ListRow, Reply, buttons_reply, image_reply, list_reply, text_reply
from chatcommerce.services.phone import count_digits
from chatcommerce.services.records_service import BusinessRecords, Order, Product
from chatcommerce.services.regions import detect_region
from chatcommerce.services.session_store import SessionStore
from chatcommerce.services.steps import Step, TransitionTable, transition
from chatcommerce.services.tenant_registry import HUMAN_ADVISOR, FlowType, Tenant

MENU_COMMANDS = {"menu", "inicio", "volver"}
CANCEL_COMMANDS = {"cancelar", "cancel"}
CONTACT_COMMANDS = {"contactar", "asesor", "hablar con asesor"}
YES_ANSWERS = {"si", "confirmar_si", "confirmar", "ok", "dale"}
NO_ANSWERS = {"no", "confirmar_no"}
ADD_MORE_ANSWERS = {"agregar_mas", "agregar", "agregar mas"}

MIN_NAME_LENGTH = 3
MIN_ADDRESS_LENGTH = 10
MIN_PHONE_DIGITS = 9
MIN_CITY_LENGTH = 3
MAX_ORDERS_LISTED = 5

MENU_BUTTONS = [
    Button("pedir", "🛒 Hacer pedido"),
    Button("ver_pedidos", "📦 Mis pedidos"),
    Button("contactar", "💬 Contactar"),
]
CONFIRM_BUTTONS = [
    Button("confirmar_si", "✅ Confirmar"),
    Button("agregar_mas", "➕ Agregar más"),
    Button("confirmar_no", "❌ Cancelar"),
]

_FIRST_INTEGER = re.compile(r"\d+")


@dataclass
class FlowContext:
    tenant: Tenant
    sessions: SessionStore
    records: BusinessRecords
    advisor: AdvisorHandoffService
    resolver: IntentResolver


@dataclass
class FlowOutcome:
    replies: List[Reply] = field(default_factory=list)
    step: Step = Step.INICIO


@dataclass
class Turn:
    """One message being handled: what the flow has read and what it will say."""

    user: str
    message: InboundMessage
    context: FlowContext
    step: Step
    data: Dict[str, Any]
    replies: List[Reply] = field(default_factory=list)

    @property
    def tenant(self) -> Tenant:
        return self.context.tenant

    @property
    def normalized(self) -> str:
        return normalize_for_matching(self.message.command)

    def say(self, reply: Reply | str) -> None:
        self.replies.append(text_reply(reply) if isinstance(reply, str) else reply)


class Flow(ABC):
    flow_type: FlowType

    @abstractmethod
    def handle(self, user: str, message: InboundMessage, context: FlowContext) -> FlowOutcome:
        """Produce the replies for one inbound message and persist the new step."""


class OrderFlow(Flow):
    """Global commands, menu, catalog and the order sub-flow up to payment."""

    transitions: TransitionTable = {}

    def handle(self, user: str, message: InboundMessage, context: FlowContext) -> FlowOutcome:
        state = context.sessions.get_state(user, context.tenant.id)
        turn = Turn(user=user, message=message, context=context, step=state.step, data=state.data)
        log = conversation_logger("flow", user, context.tenant.id)

        if not self.handle_global_command(turn):
            handler = self.step_handlers().get(turn.step)
            if handler is None:
                log.warning(f"No handler for step {turn.step.value}, resetting")
                self.show_menu(turn)
            else:
                handler(turn)

        log.info("Flow step", extra={"context": {"step": turn.step.value, "replies": len(turn.replies)}})
        return FlowOutcome(replies=turn.replies, step=turn.step)

    @abstractmethod
    def step_handlers(self) -> Dict[Step, Callable[[Turn], None]]:
        pass

    def order_step_handlers(self) -> Dict[Step, Callable[[Turn], None]]:
        return {
            Step.SELECCION_PRODUCTO: self.on_product_selection,
            Step.CANTIDAD: self.on_quantity,
            Step.CONFIRMAR_PEDIDO: self.on_confirmation,
            Step.DATOS_NOMBRE: self.on_name,
            Step.DATOS_DIRECCION: self.on_address,
            Step.DATOS_TELEFONO: self.on_phone,
            Step.DATOS_CIUDAD: self.on_city,
            Step.ESPERANDO_VOUCHER: self.on_payment_proof,
        }

    # === SESSION HELPERS ===

    def move(self, turn: Turn, target: Step) -> None:
        if target == turn.step:
            return
        turn.step = transition(self.transitions, turn.step, target)
        turn.context.sessions.set_step(turn.user, turn.tenant.id, target)

    def reset(self, turn: Turn) -> None:
        turn.context.sessions.reset_state(turn.user, turn.tenant.id)
        turn.step = Step.INICIO
        turn.data = {}

    def remember(self, turn: Turn, **values: Any) -> None:
        turn.context.sessions.update_data(turn.user, turn.tenant.id, values)
        turn.data.update(values)

    def option(self, turn: Turn, key: str, default: Any) -> Any:
        return turn.tenant.option(key, default)

    def min_quantity(self, turn: Turn) -> int:
        try:
            return max(int(self.option(turn, "min_quantity", 1)), 1)
        except (TypeError, ValueError):
            return 1

    # === GLOBAL COMMANDS ===

    def handle_global_command(self, turn: Turn) -> bool:
        command = turn.normalized
        if command in MENU_COMMANDS:
            self.show_menu(turn)
            return True
        if command in CANCEL_COMMANDS:
            self.reset(turn)
            turn.say("❌ Operación cancelada.")
            self.show_menu(turn)
            return True
        if command in CONTACT_COMMANDS:
            self.contact(turn)
            return True
        return False

    # === MENU ===

    def show_menu(self, turn: Turn, intro: Optional[str] = None) -> None:
        self.reset(turn)
        lines = [intro or f"{greeting()} 👋 Bienvenido a *{turn.tenant.name}*"]
        open_orders = turn.context.records.get_open_orders(turn.user)
        if open_orders:
            lines.append(f"📦 Tienes {len(open_orders)} pedido(s) en curso.")
        lines.append("")
        lines.append("¿Qué deseas hacer?")
        lines.extend(self.menu_extra_lines(turn))
        turn.say(buttons_reply("\n".join(lines), MENU_BUTTONS))
        self.move(turn, Step.MENU)

    def menu_extra_lines(self, turn: Turn) -> List[str]:
        return []

    def show_orders(self, turn: Turn) -> None:
        orders = turn.context.records.get_open_orders(turn.user)
        if not orders:
            turn.say("📭 No tienes pedidos en curso.\n\nEscribe *menu* para ver las opciones.")
            return
        lines = ["📦 *Tus pedidos*", ""]
        for order in orders[-MAX_ORDERS_LISTED:]:
            lines.append(f"• {order.id} - {format_price(order.total)} - {format_order_status(order.status)}")
        turn.say("\n".join(lines))

    def contact(self, turn: Turn) -> None:
        if not turn.tenant.has_capability(HUMAN_ADVISOR):
            phone = self.option(turn, "contact_phone", None)
            if phone:
                turn.say(f"📞 Puedes comunicarte con nosotros al {phone}.")
            else:
                turn.say("📞 Escríbenos tu consulta y te responderemos a la brevedad.")
            return
        result = turn.context.advisor.activate(turn.user, turn.tenant)
        turn.say(result.value.message if result.ok else result.error)

    # === CATALOG ===

    def show_catalog(self, turn: Turn, products: Optional[List[Product]] = None, intro: Optional[str] = None) -> None:
        if products is None:
            products = turn.context.records.get_products()
        products = [p for p in products if p.available > 0]
        if not products:
            turn.say("😕 No hay productos disponibles por ahora.\n\nEscribe *menu* para volver.")
            return

        self.remember(turn, catalog=[p.code for p in products])
        unit = self.option(turn, "unit", "unidad")
        body = intro or f"🛍️ *Catálogo de {turn.tenant.name}*\n\nElige un producto o escribe su número."
        if len(products) <= 10:
            rows = [
                ListRow(str(i), product.name, f"{format_price(product.price)} por {unit}")
                for i, product in enumerate(products, start=1)
            ]
            turn.say(list_reply(body, rows, label="Ver productos", section_title="Productos"))
        else:
            lines = [body, ""]
            lines.extend(f"{i}. {p.name} - {format_price(p.price)}" for i, p in enumerate(products, start=1))
            turn.say("\n".join(lines))
        self.move(turn, Step.SELECCION_PRODUCTO)

    def pick_from_catalog(self, turn: Turn, command: str) -> Optional[Product]:
        catalog = turn.data.get("catalog") or []
        code = None
        if command.isdigit():
            index = int(command)
            if 1 <= index <= len(catalog):
                code = catalog[index - 1]
        elif command.upper() in {c.upper() for c in catalog}:
            code = command
        return turn.context.records.get_product(code) if code else None

    def select_product(self, turn: Turn, product: Product) -> None:
        if product.available <= 0:
            turn.say(f"😕 *{product.name}* está agotado. Elige otro producto.")
            return
        unit = self.option(turn, "unit", "unidad")
        minimum = self.min_quantity(turn)
        self.remember(
            turn,
            product={"code": product.code, "name": product.name, "price": product.price},
        )
        caption = (
            f"*{product.name}*\n"
            f"{format_price(product.price)} por {unit}\n"
            f"Disponible: {product.available}\n\n"
            f"¿Cuántas {unit}s deseas? (mínimo {minimum})"
        )
        if product.image_url and self.option(turn, "show_photos", True):
            turn.say(image_reply(product.image_url, caption))
        else:
            turn.say(caption)
        self.move(turn, Step.CANTIDAD)

    # === ORDER STEPS ===

    def on_product_selection(self, turn: Turn) -> None:
        command = (turn.message.reply_id or turn.message.text or "").strip()
        product = self.pick_from_catalog(turn, command)
        if product is None:
            size = len(turn.data.get("catalog") or [])
            turn.say(f"❌ Opción no válida. Escribe un número del 1 al {size}." if size else "❌ Opción no válida.")
            return
        self.select_product(turn, product)

    def on_quantity(self, turn: Turn) -> None:
        match = _FIRST_INTEGER.search(turn.message.text or "")
        product = turn.data.get("product") or {}
        if not match or not product:
            turn.say("🔢 Escribe la cantidad en números, por ejemplo: 2")
            return
        self.add_quantity(turn, product, int(match.group()))

    def add_quantity(self, turn: Turn, product: Dict[str, Any], quantity: int) -> bool:
        unit = self.option(turn, "unit", "unidad")
        minimum = self.min_quantity(turn)
        if quantity < minimum:
            turn.say(f"⚠️ La compra mínima es {minimum} {unit}(s).")
            return False
        current = turn.context.records.get_product(product["code"])
        if current is None:
            turn.say("😕 Ese producto ya no está disponible.")
            return False
        in_cart = sum(line.quantity for line in self._cart(turn) if line.code == current.code)
        if quantity + in_cart > current.available:
            turn.say(f"⚠️ Solo tenemos {current.available} {unit}(s) disponibles.")
            return False

        turn.context.sessions.add_to_cart(turn.user, turn.tenant.id, current.code, current.name, quantity, current.price)
        self.show_confirmation(turn)
        return True

    def show_confirmation(self, turn: Turn) -> None:
        lines, total = self.priced_cart(turn)
        body = ["🧾 *Resumen de tu pedido*", ""]
        body.extend(f"• {line['quantity']} x {line['name']} - {format_price(line['subtotal'])}" for line in lines)
        body.append("")
        body.append(f"*Total: {format_price(total)}*")
        body.append("")
        body.append("¿Confirmas tu pedido?")
        turn.say(buttons_reply("\n".join(body), CONFIRM_BUTTONS))
        self.move(turn, Step.CONFIRMAR_PEDIDO)

    def on_confirmation(self, turn: Turn) -> None:
        answer = turn.normalized
        if answer in YES_ANSWERS:
            self.fill_known_customer_data(turn)
            self.ask_next_field_or_commit(turn)
        elif answer in ADD_MORE_ANSWERS:
            self.show_catalog(turn)
        elif answer in NO_ANSWERS:
            self.reset(turn)
            turn.say("🗑️ Pedido cancelado.")
            self.show_menu(turn)
        else:
            self.show_confirmation(turn)

    def fill_known_customer_data(self, turn: Turn) -> None:
        customer = turn.context.records.find_customer(turn.user)
        if customer is None:
            return
        known = {}
        if customer.name and not turn.data.get("customer_name"):
            known["customer_name"] = customer.name
        if customer.address and not turn.data.get("address"):
            known["address"] = customer.address
        if customer.phone and count_digits(customer.phone) >= MIN_PHONE_DIGITS and not turn.data.get("phone"):
            known["phone"] = customer.phone
        if customer.city and not turn.data.get("city"):
            known["city"] = customer.city
            known["region"] = customer.region or detect_region(customer.city) or ""
        if known:
            self.remember(turn, **known)

    def ask_next_field_or_commit(self, turn: Turn) -> None:
        if not turn.data.get("customer_name"):
            turn.say("👤 ¿A nombre de quién registramos el pedido?")
            self.move(turn, Step.DATOS_NOMBRE)
        elif not turn.data.get("address"):
            turn.say("📍 ¿Cuál es la dirección de entrega? También puedes compartir tu ubicación.")
            self.move(turn, Step.DATOS_DIRECCION)
        elif not turn.data.get("phone"):
            turn.say("📞 ¿A qué número de teléfono te contactamos?")
            self.move(turn, Step.DATOS_TELEFONO)
        elif not turn.data.get("city"):
            turn.say("🏙️ ¡Último dato! ¿En qué *ciudad o distrito* te encuentras?")
            self.move(turn, Step.DATOS_CIUDAD)
        else:
            self.commit_order(turn)

    def on_name(self, turn: Turn) -> None:
        name = (turn.message.text or "").strip()
        if len(name) < MIN_NAME_LENGTH:
            turn.say("✏️ Escribe un nombre válido (mínimo 3 letras).")
            return
        self.remember(turn, customer_name=name)
        self.ask_next_field_or_commit(turn)

    def on_address(self, turn: Turn) -> None:
        if turn.message.location is not None:
            address = turn.message.location.describe()
        else:
            address = (turn.message.text or "").strip()
            if len(address) < MIN_ADDRESS_LENGTH:
                turn.say("✏️ Escribe una dirección más completa (calle, número y referencia).")
                return
        self.remember(turn, address=address)
        self.ask_next_field_or_commit(turn)

    def on_phone(self, turn: Turn) -> None:
        phone = (turn.message.text or "").strip()
        if count_digits(phone) < MIN_PHONE_DIGITS:
            turn.say("✏️ Escribe un número de teléfono válido (9 dígitos).")
            return
        self.remember(turn, phone=phone)
        self.ask_next_field_or_commit(turn)

    def on_city(self, turn: Turn) -> None:
        city = (turn.message.text or "").strip()
        if len(city) < MIN_CITY_LENGTH:
            turn.say("✏️ Escribe el nombre de tu ciudad o distrito.")
            return
        self.remember(turn, city=city, region=detect_region(city) or "")
        self.ask_next_field_or_commit(turn)

    # === COMMIT ===

    def _cart(self, turn: Turn):
        return turn.context.sessions.get_cart(turn.user, turn.tenant.id)

    def priced_cart(self, turn: Turn) -> tuple[List[Dict[str, Any]], float]:
        """Cart lines priced from the catalog; cart prices are only a fallback."""
        lines = []
        for line in self._cart(turn):
            product = turn.context.records.get_product(line.code)
            unit_price = product.price if product else line.unit_price
            lines.append(
                {
                    "code": line.code,
                    "name": product.name if product else line.name,
                    "quantity": line.quantity,
                    "unit_price": unit_price,
                    "subtotal": round(unit_price * line.quantity, 2),
                }
            )
        return lines, round(sum(line["subtotal"] for line in lines), 2)

    def commit_order(self, turn: Turn) -> None:
        records = turn.context.records
        lines, total = self.priced_cart(turn)
        if not lines:
            self.show_menu(turn, intro="🛒 Tu carrito está vacío.")
            return

        reserved = []
        for line in lines:
            result = records.reserve_stock(line["code"], line["quantity"])
            if not result.ok:
                self._release(records, reserved)
                turn.say(f"⚠️ {result.error}. Escribe *menu* para empezar de nuevo.")
                self.move(turn, Step.CONFIRMAR_PEDIDO)
                return
            reserved.append(line)

        customer = records.upsert_customer(
            turn.user,
            name=turn.data.get("customer_name", ""),
            phone=turn.data.get("phone", ""),
            address=turn.data.get("address", ""),
            region=turn.data.get("region", ""),
            city=turn.data.get("city", ""),
        )
        payment_flow = self.option(turn, "payment_flow", "voucher")
        status = "PENDIENTE_PAGO" if payment_flow == "voucher" else "EN_PREPARACION"
        order = Order(
            id=generate_id(turn.tenant.order_prefix or "PED"),
            date=now_iso(),
            customer_id=customer.value.id if customer.ok else "",
            user=turn.user,
            customer_name=turn.data.get("customer_name", ""),
            phone=turn.data.get("phone", ""),
            address=turn.data.get("address", ""),
            lines=lines,
            total=total,
            status=status,
            region=turn.data.get("region", ""),
            city=turn.data.get("city", ""),
        )
        created = records.create_order(order) if customer.ok else customer
        if not created.ok:
            self._release(records, reserved)
            turn.say("⚠️ No pudimos registrar tu pedido. Intenta nuevamente en unos minutos respondiendo *si*.")
            self.move(turn, Step.CONFIRMAR_PEDIDO)
            return

        turn.context.sessions.clear_cart(turn.user, turn.tenant.id)
        summary = f"✅ Pedido *{order.id}* registrado.\nTotal: *{format_price(total)}*"
        if payment_flow == "voucher":
            turn.say(f"{summary}\n\n{self.payment_instructions(turn)}")
            self.remember(turn, order_id=order.id)
            self.move(turn, Step.ESPERANDO_VOUCHER)
        else:
            turn.say(f"{summary}\n\n👨‍🍳 Ya estamos preparándolo. Te contactaremos para coordinar el pago y la entrega.")
            self.reset(turn)

    def _release(self, records: BusinessRecords, lines: List[Dict[str, Any]]) -> None:
        for line in lines:
            records.release_stock(line["code"], line["quantity"])

    def payment_instructions(self, turn: Turn) -> str:
        methods = turn.context.records.get_payment_methods()
        if not methods:
            return "💳 Te enviaremos los datos de pago en breve. Luego envía la foto de tu comprobante."
        lines = ["💳 *Métodos de pago*"]
        if methods.get("yape"):
            lines.append(f"• Yape: {methods['yape']}")
        if methods.get("plin"):
            lines.append(f"• Plin: {methods['plin']}")
        if methods.get("bank_account"):
            lines.append(f"• {methods.get('bank_name', 'Cuenta')}: {methods['bank_account']}")
        if methods.get("account_holder"):
            lines.append(f"  Titular: {methods['account_holder']}")
        lines.append("")
        lines.append("📸 Envía la foto de tu comprobante para validar tu pago.")
        return "\n".join(lines)

    def on_payment_proof(self, turn: Turn) -> None:
        decision = None
        if not turn.message.is_text:
            decision = turn.context.resolver.resolve(turn.message, self.resolution_context(turn))
        if decision is None or decision.action != Action.PROCESAR_VOUCHER:
            turn.say("📸 Envía la foto de tu comprobante de pago o escribe *menu* para volver.")
            return

        order_id = turn.data.get("order_id")
        media_id = decision.data.get("media_id") or ""
        result = turn.context.records.update_order_status(
            order_id, "PENDIENTE_VALIDACION", voucher_url=f"media:{media_id}" if media_id else None
        )
        if not result.ok:
            turn.say("⚠️ No pudimos registrar tu comprobante. Envíalo nuevamente, por favor.")
            return
        turn.say(f"✅ Recibimos tu comprobante del pedido *{order_id}*.\nTe avisaremos cuando validemos el pago. ¡Gracias!")
        self.reset(turn)

    def resolution_context(self, turn: Turn, products: Optional[List[Product]] = None) -> ResolutionContext:
        return ResolutionContext(
            tenant=turn.tenant,
            step=turn.step,
            session_data=turn.data,
            cart=self._cart(turn),
            products=products or [],
            customer_name=turn.data.get("customer_name") or turn.message.profile_name,
        )
