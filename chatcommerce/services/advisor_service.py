"""Human advisor handoff: state per (user, tenant) persisted in the tenant book."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from chatcommerce.logging_config import get_logger
from chatcommerce.services import tables
from chatcommerce.services.advisor_state_machine import (
    AdvisorState,
    InvalidAdvisorTransition,
    parse_state,
    release,
    start_listening,
    take_over,
)
from chatcommerce.services.formatting import epoch_ms, format_price, now_iso, random_token
from chatcommerce.services.phone import normalize_phone
from chatcommerce.services.records_service import BusinessRecords
from chatcommerce.services.result import Result
from chatcommerce.services.storage import StorageError, TableStore, cell
from chatcommerce.services.tenant_registry import Tenant

logger = get_logger("advisor_service")

RECENT_ORDERS_IN_SUMMARY = 3

ACTIVATION_ERROR_MESSAGE = "Error conectando con asesor. Intenta más tarde."
RECONNECTED_MESSAGE = "🔄 Reconectado con tu asesor. Escribe tu mensaje y te responderemos pronto."
CONNECTED_MESSAGE = (
    "👤 Te estamos conectando con un asesor.\n\n"
    "Un miembro de nuestro equipo te responderá en breve.\n"
    "Escribe *menu* para volver al asistente automático."
)


class MessageKind(str, Enum):
    CUSTOMER = "CUSTOMER"
    BOT = "BOT"
    ADVISOR = "ADVISOR"
    SYSTEM = "SYSTEM"


@dataclass
class AdvisorConversation:
    id: str
    created_at: str
    customer_name: str
    user: str
    state: AdvisorState
    last_activity: str
    handoff_count: int
    last_closed_at: str
    tenant_id: str
    row_index: int

    @classmethod
    def from_row(cls, row: list, row_index: int) -> "AdvisorConversation":
        padded = [str(value).strip() if value is not None else "" for value in row] + [""] * 9
        try:
            handoff_count = int(float(padded[6] or 0))
        except ValueError:
            handoff_count = 0
        return cls(
            id=padded[0],
            created_at=padded[1],
            customer_name=padded[2],
            user=normalize_phone(padded[3]),
            state=parse_state(padded[4]),
            last_activity=padded[5],
            handoff_count=handoff_count,
            last_closed_at=padded[7],
            tenant_id=padded[8],
            row_index=row_index,
        )


@dataclass
class Activation:
    conversation_id: str
    exists: bool
    message: str


class AdvisorHandoffService:
    """Gate between automated replies and a human operator."""

    def __init__(self, store_for: Callable[[str], TableStore]):
        self.store_for = store_for

    def _store(self, tenant: Tenant) -> TableStore:
        return self.store_for(tenant.book_id)

    def _find(self, user: str, tenant: Tenant) -> Optional[AdvisorConversation]:
        user = normalize_phone(user)
        for index, row in enumerate(self._store(tenant).get_rows(tables.ADVISOR_CONVERSATIONS)):
            if not row or len(row) < 4:
                continue
            conversation = AdvisorConversation.from_row(row, index)
            if conversation.user != user:
                continue
            if conversation.tenant_id and conversation.tenant_id != tenant.id:
                continue
            return conversation
        return None

    def find_conversation(self, user: str, tenant: Tenant) -> Optional[AdvisorConversation]:
        try:
            return self._find(user, tenant)
        except StorageError as e:
            logger.warning(f"Advisor lookup failed for {user}: {e}")
            return None

    def verify_state(self, user: str, tenant: Tenant) -> AdvisorState:
        conversation = self.find_conversation(user, tenant)
        return conversation.state if conversation else AdvisorState.NONE

    def should_block_bot(self, user: str, tenant: Tenant) -> bool:
        return self.verify_state(user, tenant) == AdvisorState.ACTIVE

    def get_conversation_id(self, user: str, tenant: Tenant) -> Optional[str]:
        conversation = self.find_conversation(user, tenant)
        return conversation.id if conversation else None

    def list_conversations(self, tenant: Tenant, state: Optional[AdvisorState] = None) -> List[AdvisorConversation]:
        try:
            rows = self._store(tenant).get_rows(tables.ADVISOR_CONVERSATIONS)
        except StorageError as e:
            logger.warning(f"Advisor list failed for {tenant.id}: {e}")
            return []
        conversations = [AdvisorConversation.from_row(row, index) for index, row in enumerate(rows) if row]
        conversations = [c for c in conversations if not c.tenant_id or c.tenant_id == tenant.id]
        if state is not None:
            conversations = [c for c in conversations if c.state == state]
        return conversations

    def activate(self, user: str, tenant: Tenant) -> Result[Activation]:
        """Hand the conversation to a human. Calling it again while active is a no-op."""
        user = normalize_phone(user)
        store = self._store(tenant)
        now = now_iso()
        try:
            conversation = self._find(user, tenant)

            if conversation and conversation.state == AdvisorState.ACTIVE:
                logger.info("Advisor already active", extra={"context": {"user": user, "tenant_id": tenant.id}})
                return Result.success(Activation(conversation.id, exists=True, message=RECONNECTED_MESSAGE))

            if conversation:
                new_state = take_over(conversation.state)
                store.batch_update(
                    tables.ADVISOR_CONVERSATIONS,
                    [
                        (cell(tables.ADVISOR_STATE_COL, conversation.row_index), new_state.value),
                        (cell(tables.ADVISOR_ACTIVITY_COL, conversation.row_index), now),
                        (cell(tables.ADVISOR_COUNTER_COL, conversation.row_index), conversation.handoff_count + 1),
                    ],
                )
                conversation_id = conversation.id
            else:
                new_state = take_over(AdvisorState.NONE)
                conversation_id = f"CONV-{epoch_ms()}-{random_token(5)}"
                store.append_row(
                    tables.ADVISOR_CONVERSATIONS,
                    [
                        conversation_id,
                        now,
                        self._customer_name(user, tenant),
                        user,
                        new_state.value,
                        now,
                        1,
                        "",
                        tenant.id,
                    ],
                )
                summary = self.build_context_summary(user, tenant)
                self._append_message(store, conversation_id, user, summary, MessageKind.SYSTEM)
        except (StorageError, InvalidAdvisorTransition) as e:
            logger.error(f"Advisor activation failed for {user}: {e}")
            return Result.failure(ACTIVATION_ERROR_MESSAGE, "activation_failed")

        logger.info(
            "Advisor activated",
            extra={"context": {"user": user, "tenant_id": tenant.id, "conversation_id": conversation_id}},
        )
        return Result.success(Activation(conversation_id, exists=False, message=CONNECTED_MESSAGE))

    def deactivate(self, user: str, tenant: Tenant) -> Result[AdvisorState]:
        """Return the conversation to the bot. The conversation id is kept."""
        user = normalize_phone(user)
        try:
            conversation = self._find(user, tenant)
            if conversation is None:
                return Result.failure("No advisor conversation", "not_found")
            if conversation.state == AdvisorState.LISTENING:
                return Result.success(AdvisorState.LISTENING)

            new_state = release(conversation.state)
            now = now_iso()
            self._store(tenant).batch_update(
                tables.ADVISOR_CONVERSATIONS,
                [
                    (cell(tables.ADVISOR_STATE_COL, conversation.row_index), new_state.value),
                    (cell(tables.ADVISOR_ACTIVITY_COL, conversation.row_index), now),
                    (cell(tables.ADVISOR_CLOSED_COL, conversation.row_index), now),
                ],
            )
        except StorageError as e:
            logger.error(f"Advisor deactivation failed for {user}: {e}")
            return Result.failure(str(e), "storage_error")

        logger.info("Advisor released", extra={"context": {"user": user, "tenant_id": tenant.id}})
        return Result.success(new_state)

    def record_message(
        self, tenant: Tenant, conversation_id: str, user: str, body: str, kind: MessageKind
    ) -> Result[str]:
        """Append to the audit trail and bump the conversation's last activity."""
        store = self._store(tenant)
        try:
            message_id = self._append_message(store, conversation_id, normalize_phone(user), body, kind)
            self._touch(store, conversation_id)
        except StorageError as e:
            logger.error(f"Failed to record {kind.value} message for {conversation_id}: {e}")
            return Result.failure(str(e), "storage_error")
        return Result.success(message_id)

    def record_auto(
        self,
        user: str,
        tenant: Tenant,
        body: str,
        kind: MessageKind,
        customer_name: Optional[str] = None,
    ) -> Result[str]:
        """Record into the existing conversation or open a LISTENING one."""
        user = normalize_phone(user)
        store = self._store(tenant)
        try:
            conversation = self._find(user, tenant)
            if conversation is None:
                state = start_listening(AdvisorState.NONE)
                conversation_id = f"CONV-{epoch_ms()}-{random_token(5)}"
                now = now_iso()
                store.append_row(
                    tables.ADVISOR_CONVERSATIONS,
                    [conversation_id, now, customer_name or "Cliente", user, state.value, now, 0, "", tenant.id],
                )
            else:
                conversation_id = conversation.id
        except StorageError as e:
            logger.error(f"Failed to open conversation for {user}: {e}")
            return Result.failure(str(e), "storage_error")
        return self.record_message(tenant, conversation_id, user, body, kind)

    def build_context_summary(self, user: str, tenant: Tenant) -> str:
        records = BusinessRecords(self._store(tenant))
        customer = records.find_customer(user)
        lines = [
            "📋 RESUMEN DE CLIENTE",
            f"Negocio: {tenant.name}",
            f"Fecha: {datetime.now().strftime('%d/%m/%Y %H:%M')}",
            "",
        ]
        if customer:
            lines.append(f"👤 {customer.name or 'Sin nombre'}")
            if customer.phone:
                lines.append(f"📞 {customer.phone}")
            if customer.address:
                lines.append(f"📍 {customer.address}")
        else:
            lines.append(f"Cliente nuevo - WhatsApp: {normalize_phone(user)}")

        lines.append("")
        orders = records.get_orders_by_user(user)[-RECENT_ORDERS_IN_SUMMARY:]
        if orders:
            lines.append("📦 PEDIDOS RECIENTES:")
            for number, order in enumerate(reversed(orders), start=1):
                lines.append(f"{number}. {order.date} - {format_price(order.total)} - {order.status}")
        else:
            lines.append("Sin pedidos registrados")
        return "\n".join(lines)

    def _customer_name(self, user: str, tenant: Tenant) -> str:
        customer = BusinessRecords(self._store(tenant)).find_customer(user)
        if customer and customer.name:
            return customer.name
        return "Cliente"

    def _append_message(self, store: TableStore, conversation_id: str, user: str, body: str, kind: MessageKind) -> str:
        message_id = f"MSG-{epoch_ms()}-{random_token(5)}"
        store.append_row(tables.MESSAGES, [message_id, conversation_id, now_iso(), kind.value, body, user])
        return message_id

    def _touch(self, store: TableStore, conversation_id: str) -> None:
        for index, row in enumerate(store.get_rows(tables.ADVISOR_CONVERSATIONS)):
            if row and str(row[0]) == conversation_id:
                store.update_cell(tables.ADVISOR_CONVERSATIONS, cell(tables.ADVISOR_ACTIVITY_COL, index), now_iso())
                return

    def get_messages(self, tenant: Tenant, conversation_id: str) -> List[dict]:
        try:
            rows = self._store(tenant).get_rows(tables.MESSAGES)
        except StorageError as e:
            logger.warning(f"Message read failed for {conversation_id}: {e}")
            return []
        keys = ("id", "conversation_id", "timestamp", "kind", "body", "user")
        return [dict(zip(keys, row)) for row in rows if len(row) > 1 and str(row[1]) == conversation_id]
