import threading
import time
from typing import Dict, Optional, Tuple

from chatcommerce.logging_config import get_logger
from chatcommerce.services import tables
from chatcommerce.services.formatting import now_iso
from chatcommerce.services.locks import KeyedLocks
from chatcommerce.services.phone import normalize_phone
from chatcommerce.services.storage import StorageError, TableStore, cell

logger = get_logger("shared_channel")

LINK_CACHE_TTL_SECONDS = 300


class UserTenantLinks:
    """Persisted user -> tenant links in the UserTenants table of the master book."""

    def __init__(self, store: TableStore, ttl_seconds: float = LINK_CACHE_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._cache: Dict[str, Tuple[Optional[str], float]] = {}

    def _find(self, user: str) -> Tuple[Optional[int], Optional[list]]:
        for index, row in enumerate(self.store.get_rows(tables.USER_TENANTS)):
            if row and normalize_phone(row[0]) == user:
                return index, row
        return None, None

    def get_tenant(self, user: str) -> Optional[str]:
        user = normalize_phone(user)
        with self._lock:
            cached = self._cache.get(user)
        if cached and time.time() - cached[1] < self.ttl_seconds:
            return cached[0]

        try:
            _, row = self._find(user)
        except StorageError as e:
            logger.warning(f"Link lookup failed for {user}: {e}")
            return None

        tenant_id = str(row[1]).strip() if row and len(row) > 1 and row[1] else None
        with self._lock:
            self._cache[user] = (tenant_id, time.time())
        return tenant_id

    def link(self, user: str, tenant_id: str) -> bool:
        user = normalize_phone(user)
        now = now_iso()
        try:
            index, _ = self._find(user)
            if index is None:
                self.store.append_row(tables.USER_TENANTS, [user, tenant_id, now, now])
            else:
                self.store.batch_update(tables.USER_TENANTS, [(cell("B", index), tenant_id), (cell("D", index), now)])
        except StorageError as e:
            logger.error(f"Failed to link {user} to {tenant_id}: {e}")
            return False

        with self._lock:
            self._cache[user] = (tenant_id, time.time())
        return True

    def unlink(self, user: str) -> bool:
        user = normalize_phone(user)
        with self._lock:
            self._cache.pop(user, None)
        try:
            index, _ = self._find(user)
            if index is not None:
                self.store.batch_update(tables.USER_TENANTS, [(cell("B", index), ""), (cell("D", index), now_iso())])
        except StorageError as e:
            logger.error(f"Failed to unlink {user}: {e}")
            return False
        return True

    def prune_cache(self, now: Optional[float] = None) -> int:
        """Forget cached lookups older than the TTL."""
        now = time.time() if now is None else now
        with self._lock:
            stale = [user for user, (_, cached_at) in self._cache.items() if now - cached_at >= self.ttl_seconds]
            for user in stale:
                del self._cache[user]
            return len(stale)


class SharedChannelBinder:
    """User -> tenant binding for tenants that share one channel identity.

    Idle bindings can be dropped from memory; the persisted link brings them back.
    """

    def __init__(self, links: Optional[UserTenantLinks] = None, locks: Optional[KeyedLocks] = None):
        self.links = links
        self.locks = locks or KeyedLocks()
        self._active: Dict[str, str] = {}
        self._seen: Dict[str, float] = {}

    def get_active_tenant(self, user: str) -> Optional[str]:
        user = normalize_phone(user)
        with self.locks.lock(("binding", user)):
            tenant_id = self._active.get(user)
            if tenant_id is None and self.links is not None:
                tenant_id = self.links.get_tenant(user)
                if tenant_id:
                    self._active[user] = tenant_id
            if tenant_id:
                self._seen[user] = time.time()
            return tenant_id

    def set_active_tenant(self, user: str, tenant_id: str) -> None:
        user = normalize_phone(user)
        with self.locks.lock(("binding", user)):
            previous = self._active.get(user)
            self._active[user] = tenant_id
            self._seen[user] = time.time()
            if self.links is not None and previous != tenant_id:
                self.links.link(user, tenant_id)

    def clear_active_tenant(self, user: str) -> None:
        user = normalize_phone(user)
        with self.locks.lock(("binding", user)):
            self._active.pop(user, None)
            self._seen.pop(user, None)
            if self.links is not None:
                self.links.unlink(user)

    def cleanup(self, max_age_seconds: float, now: Optional[float] = None) -> int:
        """Drop in-memory bindings idle for longer than max_age_seconds."""
        now = time.time() if now is None else now
        stale = [user for user, seen in list(self._seen.items()) if now - seen > max_age_seconds]
        for user in stale:
            with self.locks.lock(("binding", user)):
                if now - self._seen.get(user, now) > max_age_seconds:
                    self._active.pop(user, None)
                    self._seen.pop(user, None)
        if self.links is not None:
            self.links.prune_cache(now)
        return len(stale)

    def count(self) -> int:
        return len(self._active)

    def clear(self) -> None:
        self._active.clear()
        self._seen.clear()
