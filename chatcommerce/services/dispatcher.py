"""Per-message policy: tenant resolution, advisor gate, flow selection, delivery."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from chatcommerce.logging_config import conversation_logger, get_logger
from chatcommerce.schemas.inbound import InboundMessage
from chatcommerce.services.advisor_service import AdvisorHandoffService
from chatcommerce.services.advisor_state_machine import AdvisorState
from chatcommerce.services.flows import FlowContext, FlowRegistry
from chatcommerce.services.intent_service import IntentResolver, normalize_for_matching
from chatcommerce.services.locks import KeyedLocks
from chatcommerce.services.message_logger import MessageLogger
from chatcommerce.services.outbound import BUTTON_TITLE_LIMIT, Button, OutboundChannel, Reply, buttons_reply, text_reply
from chatcommerce.services.phone import normalize_phone
from chatcommerce.services.records_service import BusinessRecords
from chatcommerce.services.session_store import SessionStore
from chatcommerce.services.shared_channel import SharedChannelBinder
from chatcommerce.services.steps import Step
from chatcommerce.services.tenant_registry import Tenant, TenantRegistry

logger = get_logger("dispatcher")

ADVISOR_EXIT_COMMANDS = {"menu", "salir"}
SWITCH_TENANT_COMMANDS = {"cambiar tienda", "otra tienda"}
SELECT_PREFIX = "select_"
MAX_SELECTOR_OPTIONS = 3

ERROR_REPLY = "Ocurrió un error. Intenta nuevamente."
ADVISOR_EXIT_REPLY = "👋 Saliste del chat con el asesor. Volviste al asistente automático."
SELECTOR_REPLY = "👋 ¡Hola! ¿Con qué tienda deseas comunicarte?"
NO_TENANTS_REPLY = "😕 No hay tiendas disponibles en este momento. Intenta más tarde."


@dataclass
class DispatchResult:
    tenant_id: Optional[str]
    replies: List[Reply] = field(default_factory=list)
    blocked: bool = False
    step: Optional[Step] = None


class ConversationDispatcher:
    def __init__(
        self,
        registry: TenantRegistry,
        sessions: SessionStore,
        binder: SharedChannelBinder,
        advisor: AdvisorHandoffService,
        message_logger: MessageLogger,
        resolver: IntentResolver,
        flows: FlowRegistry,
        channel_for: Callable[[Optional[Tenant]], OutboundChannel],
        records_for: Callable[[Tenant], BusinessRecords],
        locks: Optional[KeyedLocks] = None,
        default_tenant_id: Optional[str] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.binder = binder
        self.advisor = advisor
        self.message_logger = message_logger
        self.resolver = resolver
        self.flows = flows
        self.channel_for = channel_for
        self.records_for = records_for
        self.locks = locks or KeyedLocks()
        self.default_tenant_id = default_tenant_id

    def dispatch(self, message: InboundMessage, routing_path: Optional[str] = None) -> DispatchResult:
        tenant = self.registry.get_by_routing_path(routing_path) if routing_path else None
        if tenant is None and message.phone_id:
            tenant = self.registry.get_by_channel_id(message.phone_id)
        if tenant is not None and not tenant.is_shared:
            return self.process(message, tenant)
        return self.dispatch_shared(message)

    # === SHARED CHANNEL ===

    def dispatch_shared(self, message: InboundMessage) -> DispatchResult:
        user = normalize_phone(message.from_)

        if normalize_for_matching(message.command) in SWITCH_TENANT_COMMANDS:
            self.binder.clear_active_tenant(user)
            return self._send_selector(user)

        tenant, message = self.identify_tenant(user, message)
        if tenant is None:
            logger.info("Unrecognized tenant, sending selector", extra={"context": {"user": user}})
            return self._send_selector(user)
        return self.process(message, tenant)

    def identify_tenant(self, user: str, message: InboundMessage) -> Tuple[Optional[Tenant], InboundMessage]:
        """Tenant for a shared-channel message; an explicit choice is turned into a menu request."""
        reply_id = message.reply_id or ""
        if reply_id.startswith(SELECT_PREFIX):
            tenant = self.registry.get_by_id(reply_id[len(SELECT_PREFIX):])
            if tenant is not None:
                self.binder.set_active_tenant(user, tenant.id)
                return tenant, self._as_menu_request(message)

        by_prefix = self.registry.find_by_prefix(message.text)
        if by_prefix is not None:
            self.binder.set_active_tenant(user, by_prefix.id)
            remainder = message.text.strip()[len(by_prefix.order_prefix):].strip()
            if remainder:
                return by_prefix, message.model_copy(update={"text": remainder})
            return by_prefix, self._as_menu_request(message)

        tenant = self.registry.get_by_id(self.binder.get_active_tenant(user))
        if tenant is not None:
            return tenant, message

        shared = self.registry.shared()
        if len(shared) == 1:
            return shared[0], message

        tenant = self.registry.get_by_id(self.default_tenant_id)
        return tenant, message

    @staticmethod
    def _as_menu_request(message: InboundMessage) -> InboundMessage:
        return message.model_copy(update={"text": "menu", "type": "text", "interactive_data": None})

    def selector_reply(self) -> Reply:
        options = self.registry.shared()[:MAX_SELECTOR_OPTIONS]
        if not options:
            return text_reply(NO_TENANTS_REPLY)
        buttons = [Button(f"{SELECT_PREFIX}{tenant.id}", tenant.name[:BUTTON_TITLE_LIMIT]) for tenant in options]
        return buttons_reply(SELECTOR_REPLY, buttons)

    def _send_selector(self, user: str) -> DispatchResult:
        reply = self.selector_reply()
        self.channel_for(None).deliver(user, reply)
        return DispatchResult(tenant_id=None, replies=[reply])

    # === PER (USER, TENANT) PROCESSING ===

    def process(self, message: InboundMessage, tenant: Tenant) -> DispatchResult:
        user = normalize_phone(message.from_)
        log = conversation_logger("dispatcher", user, tenant.id)
        channel = self.channel_for(tenant)
        if message.message_id:
            channel.mark_as_read(message.message_id)

        with self.locks.lock((user, tenant.id)):
            replies: List[Reply] = []
            if self.advisor.verify_state(user, tenant) == AdvisorState.ACTIVE:
                if normalize_for_matching(message.command) not in ADVISOR_EXIT_COMMANDS:
                    self.message_logger.log_customer(user, tenant, message.transcript(), message.profile_name)
                    log.info("Advisor active, message transcribed without reply")
                    return DispatchResult(tenant_id=tenant.id, blocked=True)
                self.advisor.deactivate(user, tenant)
                self.sessions.reset_state(user, tenant.id)
                replies.append(text_reply(ADVISOR_EXIT_REPLY))

            self.message_logger.log_customer(user, tenant, message.transcript(), message.profile_name)
            if tenant.is_shared:
                self.binder.set_active_tenant(user, tenant.id)

            step = None
            flow = self.flows.for_tenant(tenant)
            context = FlowContext(
                tenant=tenant,
                sessions=self.sessions,
                records=self.records_for(tenant),
                advisor=self.advisor,
                resolver=self.resolver,
            )
            try:
                outcome = flow.handle(user, message, context)
                replies.extend(outcome.replies)
                step = outcome.step
            except Exception as e:
                log.error(f"Flow {flow.flow_type.value} failed: {e}", exc_info=True)
                replies.append(text_reply(ERROR_REPLY))

            self._deliver(channel, user, tenant, replies)
            return DispatchResult(tenant_id=tenant.id, replies=replies, step=step)

    def _deliver(self, channel: OutboundChannel, user: str, tenant: Tenant, replies: List[Reply]) -> None:
        for reply in replies:
            result = channel.deliver(user, reply)
            if not result.get("ok", False):
                logger.warning(
                    "Reply delivery failed",
                    extra={"context": {"user": user, "tenant_id": tenant.id, "error": result.get("error")}},
                )
            if reply.body:
                self.message_logger.log_bot(user, tenant, reply.body)
