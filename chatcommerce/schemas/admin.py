from typing import List, Optional

from pydantic import BaseModel, field_validator

ORDER_STATUSES = {
    "PENDIENTE_PAGO",
    "PENDIENTE_VALIDACION",
    "CONFIRMADO",
    "EN_PREPARACION",
    "ENVIADO",
    "ENTREGADO",
    "CANCELADO",
}


class AdvisorReplyRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("text cannot be empty")
        return value


class OrderStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def known_status(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in ORDER_STATUSES:
            raise ValueError(f"status must be one of {sorted(ORDER_STATUSES)}")
        return value


class ConversationOut(BaseModel):
    id: str
    user: str
    customer_name: str
    state: str
    last_activity: str
    handoff_count: int


class ProductOut(BaseModel):
    code: str
    name: str
    description: str = ""
    price: float
    available: int
    image_url: Optional[str] = None
    category: str = ""


class CatalogResponse(BaseModel):
    tenant_id: str
    tenant_name: str
    products: List[ProductOut]
