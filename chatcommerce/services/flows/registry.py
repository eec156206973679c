from typing import Dict, Optional

from chatcommerce.logging_config import get_logger
from chatcommerce.services.flows.assisted_flow import AssistedFlow
from chatcommerce.services.flows.base import Flow
from chatcommerce.services.flows.menu_flow import MenuFlow
from chatcommerce.services.tenant_registry import FlowType, Tenant

logger = get_logger("flow_registry")


class FlowRegistry:
    """Maps a tenant's flow type to a flow instance; custom flows are registered per tenant."""

    def __init__(self, standard: Optional[Flow] = None, assisted: Optional[Flow] = None):
        self._by_type: Dict[FlowType, Flow] = {
            FlowType.STANDARD: standard or MenuFlow(),
            FlowType.ASSISTED: assisted or AssistedFlow(),
        }
        self._custom: Dict[str, Flow] = {}

    def register_custom(self, tenant_id: str, flow: Flow) -> None:
        self._custom[tenant_id] = flow

    def for_tenant(self, tenant: Tenant) -> Flow:
        if tenant.flow_type == FlowType.CUSTOM:
            flow = self._custom.get(tenant.id)
            if flow is not None:
                return flow
            logger.warning(f"No custom flow registered for {tenant.id}, using the standard flow")
            return self._by_type[FlowType.STANDARD]
        return self._by_type.get(tenant.flow_type, self._by_type[FlowType.STANDARD])
