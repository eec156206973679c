import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from chatcommerce.logging_config import get_logger

logger = get_logger("tenant_registry")


class ChannelType(str, Enum):
    DEDICATED = "DEDICATED"
    SHARED = "SHARED"


class FlowType(str, Enum):
    STANDARD = "STANDARD"  # deterministic menu flow
    ASSISTED = "ASSISTED"  # free text through the intent resolver
    CUSTOM = "CUSTOM"  # flow registered for a single tenant


class LifecycleState(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


HUMAN_ADVISOR = "human_advisor"
FREE_SAMPLES = "free_samples"
CATALOG_WEB = "catalog_web"


class UnknownTenantError(Exception):
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"No tenant for {identifier}")


def normalize_routing_path(path: Optional[str]) -> str:
    path = (path or "").strip()
    if not path:
        return ""
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/") or "/"


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    channel_type: ChannelType = ChannelType.DEDICATED
    phone_id: Optional[str] = None
    access_token: Optional[str] = None
    book_id: Optional[str] = None
    routing_path: str = ""
    flow_type: FlowType = FlowType.STANDARD
    capabilities: FrozenSet[str] = frozenset()
    order_prefix: str = "PED"
    lifecycle: LifecycleState = LifecycleState.ACTIVE
    config: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        if not self.routing_path:
            object.__setattr__(self, "routing_path", f"/webhook/{self.id}")
        else:
            object.__setattr__(self, "routing_path", normalize_routing_path(self.routing_path))
        if not self.book_id:
            object.__setattr__(self, "book_id", self.id)

    @property
    def is_shared(self) -> bool:
        return self.channel_type == ChannelType.SHARED

    def has_capability(self, name: str) -> bool:
        return name in self.capabilities

    def option(self, key: str, default: Any = None) -> Any:
        value = self.config.get(key)
        return default if value is None else value


def tenant_from_mapping(data: Dict[str, Any]) -> Tenant:
    """Build a tenant from a loose mapping (YAML entry or parsed row)."""
    capabilities = data.get("capabilities") or []
    if isinstance(capabilities, str):
        capabilities = [item.strip() for item in capabilities.split(",")]
    config = data.get("config") or {}
    if isinstance(config, str):
        try:
            config = json.loads(config) if config.strip() else {}
        except json.JSONDecodeError:
            logger.warning(f"Invalid config json for tenant {data.get('id')}")
            config = {}

    return Tenant(
        id=str(data["id"]).strip(),
        name=str(data.get("name") or data["id"]).strip(),
        channel_type=ChannelType(str(data.get("channel_type") or "DEDICATED").upper()),
        phone_id=str(data["phone_id"]).strip() if data.get("phone_id") else None,
        access_token=data.get("access_token") or None,
        book_id=data.get("book_id") or None,
        routing_path=data.get("routing_path") or "",
        flow_type=FlowType(str(data.get("flow_type") or "STANDARD").upper()),
        capabilities=frozenset(item for item in capabilities if item),
        order_prefix=str(data.get("order_prefix") or "PED").strip().upper(),
        lifecycle=LifecycleState(str(data.get("lifecycle") or "ACTIVE").upper()),
        config=dict(config),
    )


class _Snapshot:
    def __init__(self, tenants: Iterable[Tenant]):
        self.by_id: Dict[str, Tenant] = {}
        self.by_channel_id: Dict[str, Tenant] = {}
        self.by_path: Dict[str, Tenant] = {}
        for tenant in tenants:
            if tenant.lifecycle != LifecycleState.ACTIVE:
                continue
            if tenant.id in self.by_id:
                logger.warning(f"Duplicate tenant id {tenant.id}, keeping the first one")
                continue
            self.by_id[tenant.id] = tenant
            self.by_path[tenant.routing_path] = tenant
            if tenant.phone_id and not tenant.is_shared:
                if tenant.phone_id in self.by_channel_id:
                    logger.warning(f"Channel {tenant.phone_id} already owned, ignoring it for {tenant.id}")
                else:
                    self.by_channel_id[tenant.phone_id] = tenant


class TenantRegistry:
    """Read-mostly tenant catalog. Reloads build a new snapshot and swap it in."""

    def __init__(self, loader, fallback_loader=None):
        self.loader = loader
        self.fallback_loader = fallback_loader
        self._reload_lock = threading.Lock()
        self._snapshot = _Snapshot([])

    def init(self) -> int:
        return self.reload()

    def reload(self) -> int:
        with self._reload_lock:
            tenants: List[Tenant] = []
            try:
                tenants = list(self.loader.load())
            except Exception as e:
                logger.error(f"Tenant loader failed: {e}")

            if not tenants and self.fallback_loader is not None:
                logger.warning("Using local tenant set")
                tenants = list(self.fallback_loader.load())

            snapshot = _Snapshot(tenants)
            self._snapshot = snapshot
            logger.info("Tenants loaded", extra={"context": {"count": len(snapshot.by_id)}})
            return len(snapshot.by_id)

    def teardown(self) -> None:
        self._snapshot = _Snapshot([])

    def get_by_id(self, tenant_id: Optional[str]) -> Optional[Tenant]:
        if not tenant_id:
            return None
        return self._snapshot.by_id.get(tenant_id)

    def get_by_channel_id(self, phone_id: Optional[str]) -> Optional[Tenant]:
        if not phone_id:
            return None
        return self._snapshot.by_channel_id.get(str(phone_id))

    def get_by_routing_path(self, path: Optional[str]) -> Optional[Tenant]:
        return self._snapshot.by_path.get(normalize_routing_path(path))

    def require(self, tenant_id: str) -> Tenant:
        tenant = self.get_by_id(tenant_id)
        if tenant is None:
            raise UnknownTenantError(tenant_id)
        return tenant

    def all(self) -> List[Tenant]:
        return list(self._snapshot.by_id.values())

    def shared(self) -> List[Tenant]:
        return [tenant for tenant in self._snapshot.by_id.values() if tenant.is_shared]

    def dedicated(self) -> List[Tenant]:
        return [tenant for tenant in self._snapshot.by_id.values() if not tenant.is_shared]

    def has_capability(self, tenant_id: str, name: str) -> bool:
        tenant = self.get_by_id(tenant_id)
        return bool(tenant and tenant.has_capability(name))

    def find_by_prefix(self, text: str) -> Optional[Tenant]:
        """Shared tenant whose order prefix opens the message, e.g. `CAFE quiero pedir`."""
        head = (text or "").strip().split(" ", 1)[0].upper()
        if not head:
            return None
        for tenant in self.shared():
            if tenant.order_prefix and head == tenant.order_prefix:
                return tenant
        return None
