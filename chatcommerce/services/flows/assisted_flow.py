from typing import Callable, Dict

from chatcommerce.services.flows.base import OrderFlow, Turn
from chatcommerce.services.intent_service import CLARIFYING_REPLY, Action, IntentDecision
from chatcommerce.services.steps import ASSISTED_FLOW_TRANSITIONS, Step
from chatcommerce.services.tenant_registry import FlowType


class AssistedFlow(OrderFlow):
    """Free-text flow: the intent resolver decides the next transition."""

    flow_type = FlowType.ASSISTED
    transitions = ASSISTED_FLOW_TRANSITIONS

    def step_handlers(self) -> Dict[Step, Callable[[Turn], None]]:
        return {
            Step.INICIO: self.resolve_and_apply,
            Step.PEDIDO_CONVERSACIONAL: self.resolve_and_apply,
            Step.MENU: self.on_menu,
            **self.order_step_handlers(),
            Step.SELECCION_PRODUCTO: self.on_product_selection,
        }

    def on_menu(self, turn: Turn) -> None:
        option = turn.normalized
        if option == "pedir":
            self.show_catalog(turn)
        elif option == "ver_pedidos":
            self.show_orders(turn)
        else:
            self.resolve_and_apply(turn)

    def on_product_selection(self, turn: Turn) -> None:
        command = (turn.message.reply_id or turn.message.text or "").strip()
        product = self.pick_from_catalog(turn, command)
        if product is not None:
            self.select_product(turn, product)
        else:
            self.resolve_and_apply(turn)

    def resolve_and_apply(self, turn: Turn) -> None:
        products = turn.context.records.get_products()
        decision = turn.context.resolver.resolve(turn.message, self.resolution_context(turn, products))
        self.apply(turn, decision)

    def apply(self, turn: Turn, decision: IntentDecision) -> None:
        action = decision.action

        if action == Action.MENU:
            self.show_menu(turn)
        elif action == Action.VER_CATALOGO:
            self.show_catalog(turn, intro=decision.reply if decision.source == "model" else None)
        elif action == Action.BUSCAR_PRODUCTO:
            self.search(turn, decision.data.get("buscar", ""))
        elif action == Action.VER_PEDIDOS:
            self.show_orders(turn)
        elif action == Action.CONTACTAR:
            self.contact(turn)
        elif action == Action.SELECCION_NUMERO:
            product = self.pick_from_catalog(turn, str(decision.data.get("numero")))
            if product is not None:
                self.select_product(turn, product)
            else:
                self.show_catalog(turn)
        elif action == Action.REGISTRAR_PEDIDO:
            self.register_order_data(turn, decision.data)
        elif action == Action.UBICACION:
            self.remember(turn, address=decision.data.get("text", ""))
            turn.say(decision.reply or "📍 Recibí tu ubicación.")
        else:
            turn.say(decision.reply or CLARIFYING_REPLY)

    def search(self, turn: Turn, term: str) -> None:
        matches = turn.context.records.search_products(term)
        if len(matches) == 1:
            self.select_product(turn, matches[0])
        elif matches:
            self.show_catalog(turn, products=matches, intro=f"🔎 Encontré estas opciones para *{term}*:")
        else:
            self.show_catalog(turn, intro=f"😕 No encontré *{term}*. Estos son nuestros productos:")

    def register_order_data(self, turn: Turn, data: dict) -> None:
        """Merge what the model extracted; prices and totals always come from the catalog."""
        known = {key: data[key] for key in ("customer_name", "address", "phone") if data.get(key)}
        if known:
            self.remember(turn, **known)

        product = None
        if data.get("product_code"):
            product = turn.context.records.get_product(data["product_code"])
        if product is not None:
            self.remember(turn, product={"code": product.code, "name": product.name, "price": product.price})

        if turn.step != Step.PEDIDO_CONVERSACIONAL:
            self.move(turn, Step.PEDIDO_CONVERSACIONAL)

        selected = turn.data.get("product")
        quantity = data.get("quantity")
        if not selected:
            self.show_catalog(turn, intro="🛍️ ¿Qué producto deseas? Elige una opción:")
        elif not quantity:
            unit = self.option(turn, "unit", "unidad")
            turn.say(f"🔢 ¿Cuántas {unit}s de *{selected['name']}* deseas?")
        elif not self.add_quantity(turn, selected, int(quantity)):
            turn.say("Indícame otra cantidad, por favor.")
