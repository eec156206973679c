import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from chatcommerce.services.steps import Step
from chatcommerce.services.phone import normalize_phone

SessionKey = Tuple[str, str]


@dataclass
class CartLine:
    code: str
    name: str
    quantity: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price


@dataclass
class SessionState:
    step: Step = Step.INICIO
    data: Dict[str, Any] = field(default_factory=dict)


def session_key(user: str, tenant_id: str) -> SessionKey:
    return normalize_phone(user), tenant_id


class SessionStore:
    """Ephemeral per (user, tenant) conversation progress and cart.

    Callers serialize work on one key with the dispatcher's keyed locks; the
    internal lock only protects the maps themselves.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[SessionKey, SessionState] = {}
        self._carts: Dict[SessionKey, List[CartLine]] = {}
        self._touched: Dict[SessionKey, float] = {}

    def get_state(self, user: str, tenant_id: str) -> SessionState:
        key = session_key(user, tenant_id)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return SessionState()
            return SessionState(step=state.step, data=dict(state.data))

    def set_step(self, user: str, tenant_id: str, step: Step) -> None:
        key = session_key(user, tenant_id)
        with self._lock:
            state = self._states.setdefault(key, SessionState())
            state.step = Step(step)
            self._touched[key] = time.time()

    def update_data(self, user: str, tenant_id: str, values: Dict[str, Any]) -> None:
        key = session_key(user, tenant_id)
        with self._lock:
            state = self._states.setdefault(key, SessionState())
            state.data = {**state.data, **values}
            self._touched[key] = time.time()

    def reset_state(self, user: str, tenant_id: str) -> None:
        key = session_key(user, tenant_id)
        with self._lock:
            self._states.pop(key, None)
            self._carts.pop(key, None)
            self._touched.pop(key, None)

    def add_to_cart(self, user: str, tenant_id: str, code: str, name: str, quantity: int, unit_price: float) -> None:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        key = session_key(user, tenant_id)
        with self._lock:
            cart = self._carts.setdefault(key, [])
            for line in cart:
                if line.code == code:
                    line.quantity += quantity
                    break
            else:
                cart.append(CartLine(code=code, name=name, quantity=quantity, unit_price=float(unit_price)))
            self._touched[key] = time.time()

    def get_cart(self, user: str, tenant_id: str) -> List[CartLine]:
        key = session_key(user, tenant_id)
        with self._lock:
            return [
                CartLine(code=line.code, name=line.name, quantity=line.quantity, unit_price=line.unit_price)
                for line in self._carts.get(key, [])
            ]

    def clear_cart(self, user: str, tenant_id: str) -> None:
        with self._lock:
            self._carts.pop(session_key(user, tenant_id), None)

    def get_cart_total(self, user: str, tenant_id: str) -> float:
        return sum(line.subtotal for line in self.get_cart(user, tenant_id))

    def cleanup(self, max_age_seconds: float = 24 * 3600, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than max_age_seconds."""
        now = time.time() if now is None else now
        with self._lock:
            stale = [key for key, touched in self._touched.items() if now - touched > max_age_seconds]
            for key in stale:
                self._states.pop(key, None)
                self._carts.pop(key, None)
                self._touched.pop(key, None)
            return len(stale)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"sessions": len(self._states), "carts": len(self._carts)}

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._carts.clear()
            self._touched.clear()
