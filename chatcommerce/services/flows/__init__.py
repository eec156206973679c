from chatcommerce.services.flows.assisted_flow import AssistedFlow
from chatcommerce.services.flows.base import Flow, FlowContext, FlowOutcome, OrderFlow, Turn
from chatcommerce.services.flows.menu_flow import MenuFlow
from chatcommerce.services.flows.registry import FlowRegistry

__all__ = ["AssistedFlow", "Flow", "FlowContext", "FlowOutcome", "FlowRegistry", "MenuFlow", "OrderFlow", "Turn"]
