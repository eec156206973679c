from pathlib import Path
from typing import List, Optional

import yaml

from chatcommerce.logging_config import get_logger
from chatcommerce.services import tables
from chatcommerce.services.storage import TableStore
from chatcommerce.services.tenant_registry import Tenant, tenant_from_mapping

logger = get_logger("tenant_loader")

_DEFAULT_LOCAL_FILE = Path(__file__).resolve().parent.parent / "data" / "local_tenants.yaml"

_ROW_FIELDS = (
    "id",
    "name",
    "channel_type",
    "phone_id",
    "access_token",
    "book_id",
    "routing_path",
    "flow_type",
    "capabilities",
    "order_prefix",
    "lifecycle",
    "config",
)


class SheetTenantLoader:
    """Reads tenants from the Tenants table of the master book."""

    def __init__(self, store: TableStore):
        self.store = store

    def load(self) -> List[Tenant]:
        tenants = []
        for row in self.store.get_rows(tables.TENANTS):
            if not row or not str(row[0]).strip():
                continue
            data = dict(zip(_ROW_FIELDS, list(row) + [""] * (len(_ROW_FIELDS) - len(row))))
            try:
                tenants.append(tenant_from_mapping(data))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping tenant row {row[0]}: {e}")
        return tenants


class LocalTenantLoader:
    """Minimal tenant set from a YAML file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else _DEFAULT_LOCAL_FILE

    def load(self) -> List[Tenant]:
        with self.path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return [tenant_from_mapping(entry) for entry in data.get("tenants", [])]
