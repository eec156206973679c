"""Builds the orchestration objects once per process and owns their lifecycle."""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from chatcommerce.config import Settings
from chatcommerce.logging_config import get_logger
from chatcommerce.services.advisor_service import AdvisorHandoffService
from chatcommerce.services.dispatcher import ConversationDispatcher
from chatcommerce.services.flows import FlowRegistry
from chatcommerce.services.intent_service import IntentResolver
from chatcommerce.services.llm import LLMProvider, build_llm_provider
from chatcommerce.services.locks import KeyedLocks
from chatcommerce.services.message_logger import MessageLogger
from chatcommerce.services.outbound import OutboundChannel
from chatcommerce.services.records_service import BusinessRecords
from chatcommerce.services.session_store import SessionStore
from chatcommerce.services.shared_channel import SharedChannelBinder, UserTenantLinks
from chatcommerce.services.storage import TableStore
from chatcommerce.services.tenant_loader import LocalTenantLoader, SheetTenantLoader
from chatcommerce.services.tenant_registry import Tenant, TenantRegistry
from chatcommerce.services.whatsapp_service import WhatsAppService

logger = get_logger("engine")


class WhatsAppChannels:
    """One WhatsApp client per tenant credentials; shared tenants use the shared number."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._lock = threading.Lock()
        self._clients: Dict[str, WhatsAppService] = {}

    def __call__(self, tenant: Optional[Tenant]) -> OutboundChannel:
        if tenant is not None and not tenant.is_shared and tenant.phone_id and tenant.access_token:
            phone_id, token = tenant.phone_id, tenant.access_token
        else:
            phone_id = self.settings.whatsapp_shared_phone_id or ""
            token = self.settings.whatsapp_shared_token or ""
        with self._lock:
            client = self._clients.get(phone_id)
            if client is None:
                client = WhatsAppService(
                    phone_id,
                    token,
                    api_url=self.settings.whatsapp_api_url,
                    api_version=self.settings.whatsapp_api_version,
                )
                self._clients[phone_id] = client
            return client


@dataclass
class Engine:
    settings: Settings
    registry: TenantRegistry
    sessions: SessionStore
    binder: SharedChannelBinder
    advisor: AdvisorHandoffService
    message_logger: MessageLogger
    resolver: IntentResolver
    flows: FlowRegistry
    dispatcher: ConversationDispatcher
    store_for: Callable[[str], TableStore]

    def records_for(self, tenant: Tenant) -> BusinessRecords:
        return BusinessRecords(self.store_for(tenant.book_id))

    def init(self) -> None:
        self.registry.init()

    def reload(self) -> int:
        return self.registry.reload()

    def sweep(self, max_age_seconds: float, now: Optional[float] = None) -> Dict[str, int]:
        """Forget idle sessions and in-memory bindings; persisted data is untouched."""
        result = {
            "sessions": self.sessions.cleanup(max_age_seconds, now),
            "bindings": self.binder.cleanup(max_age_seconds, now),
        }
        if result["sessions"] or result["bindings"]:
            logger.info("Idle conversations swept", extra={"context": result})
        return result

    def teardown(self) -> None:
        self.sessions.clear()
        self.binder.clear()
        self.registry.teardown()


def build_engine(
    settings: Settings,
    store_for: Callable[[str], TableStore],
    channel_for: Optional[Callable[[Optional[Tenant]], OutboundChannel]] = None,
    provider: Optional[LLMProvider] = None,
    use_configured_provider: bool = True,
) -> Engine:
    locks = KeyedLocks()
    master = store_for(settings.master_book_id)
    registry = TenantRegistry(SheetTenantLoader(master), LocalTenantLoader(settings.local_tenants_file))
    sessions = SessionStore()
    binder = SharedChannelBinder(UserTenantLinks(master), locks=locks)
    advisor = AdvisorHandoffService(store_for)
    message_logger = MessageLogger(advisor)
    if provider is None and use_configured_provider:
        provider = build_llm_provider(settings)
    resolver = IntentResolver(provider, timeout_seconds=settings.llm_timeout_seconds)
    flows = FlowRegistry()

    def records_for(tenant: Tenant) -> BusinessRecords:
        return BusinessRecords(store_for(tenant.book_id))

    dispatcher = ConversationDispatcher(
        registry=registry,
        sessions=sessions,
        binder=binder,
        advisor=advisor,
        message_logger=message_logger,
        resolver=resolver,
        flows=flows,
        channel_for=channel_for or WhatsAppChannels(settings),
        records_for=records_for,
        locks=locks,
        default_tenant_id=settings.default_tenant_id,
    )
    logger.info(
        "Engine built",
        extra={"context": {"llm_provider": provider.name if provider else None}},
    )
    return Engine(
        settings=settings,
        registry=registry,
        sessions=sessions,
        binder=binder,
        advisor=advisor,
        message_logger=message_logger,
        resolver=resolver,
        flows=flows,
        dispatcher=dispatcher,
        store_for=store_for,
    )
