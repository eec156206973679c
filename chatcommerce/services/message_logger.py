from typing import Optional

from chatcommerce.logging_config import get_logger
from chatcommerce.services.advisor_service import AdvisorHandoffService, MessageKind
from chatcommerce.services.formatting import truncate
from chatcommerce.services.result import Result
from chatcommerce.services.tenant_registry import Tenant

logger = get_logger("message_logger")

BOT_MESSAGE_LIMIT = 500
TRUNCATION_MARKER = "...[truncado]"


class MessageLogger:
    """Transcribes every exchanged message into the advisor conversation."""

    def __init__(self, advisor: AdvisorHandoffService, enabled: bool = True):
        self.advisor = advisor
        self.enabled = enabled

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Message logging {'enabled' if enabled else 'disabled'}")

    def log_customer(self, user: str, tenant: Tenant, body: str, customer_name: Optional[str] = None) -> Result[str]:
        if not self.enabled:
            return Result.success(None)
        return self.advisor.record_auto(user, tenant, body, MessageKind.CUSTOMER, customer_name=customer_name)

    def log_bot(self, user: str, tenant: Tenant, body: str) -> Result[str]:
        if not self.enabled:
            return Result.success(None)
        body = truncate(body, BOT_MESSAGE_LIMIT, TRUNCATION_MARKER)
        return self.advisor.record_auto(user, tenant, body, MessageKind.BOT)

    def log_advisor(self, user: str, tenant: Tenant, body: str) -> Result[str]:
        """Advisor replies only go to an existing conversation."""
        if not self.enabled:
            return Result.success(None)
        conversation_id = self.advisor.get_conversation_id(user, tenant)
        if not conversation_id:
            return Result.failure("No advisor conversation", "not_found")
        return self.advisor.record_message(tenant, conversation_id, user, body, MessageKind.ADVISOR)
