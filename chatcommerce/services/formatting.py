import random
import string
import time
from datetime import datetime
from typing import Optional

ORDER_STATUS_LABELS = {
    "PENDIENTE_PAGO": "⏳ Pendiente de pago",
    "PENDIENTE_VALIDACION": "🔍 Validando pago",
    "CONFIRMADO": "✅ Confirmado",
    "EN_PREPARACION": "👨‍🍳 En preparación",
    "ENVIADO": "🚚 Enviado",
    "ENTREGADO": "📦 Entregado",
    "CANCELADO": "❌ Cancelado",
}


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def epoch_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """`PREFIX-<last 6 digits of epoch ms><3 random uppercase chars>`."""
    tail = str(epoch_ms())[-6:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=3))
    return f"{prefix}-{tail}{suffix}"


def random_token(length: int = 5) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def format_price(amount: float) -> str:
    return f"S/ {float(amount or 0):.2f}"


def format_order_status(status: str) -> str:
    return ORDER_STATUS_LABELS.get(status, status or "-")


def greeting(hour: Optional[int] = None) -> str:
    hour = datetime.now().hour if hour is None else hour
    if 5 <= hour < 12:
        return "Buenos días"
    if 12 <= hour < 19:
        return "Buenas tardes"
    return "Buenas noches"


def truncate(text: str, limit: int, marker: str = "...") -> str:
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + marker
