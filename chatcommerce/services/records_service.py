"""Customers, orders, inventory and settings of one tenant book."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chatcommerce.logging_config import get_logger
from chatcommerce.services import tables
from chatcommerce.services.formatting import generate_id, now_iso
from chatcommerce.services.locks import KeyedLocks
from chatcommerce.services.phone import normalize_phone
from chatcommerce.services.result import Result
from chatcommerce.services.storage import StorageError, TableStore, cell

logger = get_logger("records_service")

OFFERED_PRODUCT_STATUSES = {"ACTIVO", "PUBLICADO"}
CLOSED_ORDER_STATUSES = {"ENTREGADO", "CANCELADO"}

# Reserved stock is read-modify-write; one lock per (book, product code).
_stock_locks = KeyedLocks()


def _text(row: List[Any], index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index]).strip()
    return ""


def _float(row: List[Any], index: int) -> float:
    raw = _text(row, index).replace("S/", "").replace(",", ".").strip()
    try:
        return float(raw) if raw else 0.0
    except ValueError:
        return 0.0


def _int(row: List[Any], index: int) -> int:
    return int(_float(row, index))


@dataclass
class Product:
    code: str
    name: str
    description: str = ""
    price: float = 0.0
    stock: int = 0
    reserved: int = 0
    image_url: str = ""
    status: str = "ACTIVO"
    category: str = ""

    @property
    def available(self) -> int:
        return max(self.stock - self.reserved, 0)

    @classmethod
    def from_row(cls, row: List[Any]) -> "Product":
        return cls(
            code=_text(row, 0),
            name=_text(row, 1),
            description=_text(row, 2),
            price=_float(row, 3),
            stock=_int(row, 4),
            reserved=_int(row, 5),
            image_url=_text(row, 6),
            status=(_text(row, 7) or "ACTIVO").upper(),
            category=_text(row, 8),
        )


@dataclass
class Customer:
    id: str
    user: str
    name: str = ""
    phone: str = ""
    address: str = ""
    registered_at: str = ""
    last_purchase: str = ""
    region: str = ""
    city: str = ""

    @classmethod
    def from_row(cls, row: List[Any]) -> "Customer":
        return cls(
            id=_text(row, 0),
            user=normalize_phone(_text(row, 1)),
            name=_text(row, 2),
            phone=_text(row, 3),
            address=_text(row, 4),
            registered_at=_text(row, 5),
            last_purchase=_text(row, 6),
            region=_text(row, 7),
            city=_text(row, 8),
        )


@dataclass
class Order:
    id: str
    date: str
    customer_id: str
    user: str
    customer_name: str
    phone: str
    address: str
    lines: List[Dict[str, Any]] = field(default_factory=list)
    total: float = 0.0
    status: str = "PENDIENTE_PAGO"
    voucher_url: str = ""
    notes: str = ""
    region: str = ""
    city: str = ""

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_ORDER_STATUSES

    def to_row(self) -> List[Any]:
        return [
            self.id,
            self.date,
            self.customer_id,
            self.user,
            self.customer_name,
            self.phone,
            self.address,
            json.dumps(self.lines, ensure_ascii=False),
            round(self.total, 2),
            self.status,
            self.voucher_url,
            self.notes,
            self.region,
            self.city,
        ]

    @classmethod
    def from_row(cls, row: List[Any]) -> "Order":
        try:
            lines = json.loads(_text(row, 7) or "[]")
        except json.JSONDecodeError:
            lines = []
        return cls(
            id=_text(row, 0),
            date=_text(row, 1),
            customer_id=_text(row, 2),
            user=normalize_phone(_text(row, 3)),
            customer_name=_text(row, 4),
            phone=_text(row, 5),
            address=_text(row, 6),
            lines=lines,
            total=_float(row, 8),
            status=_text(row, 9),
            voucher_url=_text(row, 10),
            notes=_text(row, 11),
            region=_text(row, 12),
            city=_text(row, 13),
        )


class BusinessRecords:
    """Storage adapter for one tenant. Reads degrade to empty, writes return Result."""

    def __init__(self, store: TableStore, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.locks = locks or _stock_locks
        self.book_key = getattr(store, "book_id", None) or id(store)

    # === INVENTORY ===

    def get_products(self, offered_only: bool = True) -> List[Product]:
        try:
            rows = self.store.get_rows(tables.INVENTORY)
        except StorageError as e:
            logger.error(f"Inventory read failed: {e}")
            return []
        products = [Product.from_row(row) for row in rows if row and _text(row, 0)]
        if offered_only:
            products = [p for p in products if p.status in OFFERED_PRODUCT_STATUSES]
        return products

    def get_product(self, code: str) -> Optional[Product]:
        code = (code or "").strip().upper()
        for product in self.get_products(offered_only=False):
            if product.code.upper() == code:
                return product
        return None

    def search_products(self, term: str) -> List[Product]:
        term = (term or "").strip().lower()
        if not term:
            return []
        return [p for p in self.get_products() if term in p.name.lower() or term in p.category.lower()]

    def reserve_stock(self, code: str, quantity: int) -> Result[int]:
        return self._adjust_reserved(code, quantity)

    def release_stock(self, code: str, quantity: int) -> Result[int]:
        return self._adjust_reserved(code, -quantity)

    def _adjust_reserved(self, code: str, delta: int) -> Result[int]:
        code = (code or "").upper()
        with self.locks.lock((self.book_key, code)):
            try:
                rows = self.store.get_rows(tables.INVENTORY)
                for index, row in enumerate(rows):
                    if _text(row, 0).upper() != code:
                        continue
                    product = Product.from_row(row)
                    if delta > 0 and product.available < delta:
                        return Result.failure(f"Stock insuficiente para {product.name}", "insufficient_stock")
                    reserved = max(product.reserved + delta, 0)
                    self.store.update_cell(tables.INVENTORY, cell(tables.INVENTORY_RESERVED_COL, index), reserved)
                    return Result.success(reserved)
            except StorageError as e:
                logger.error(f"Stock update failed for {code}: {e}")
                return Result.failure(str(e), "storage_error")
        return Result.failure(f"Producto {code} no encontrado", "not_found")

    # === CUSTOMERS ===

    def find_customer(self, user: str) -> Optional[Customer]:
        user = normalize_phone(user)
        try:
            rows = self.store.get_rows(tables.CUSTOMERS)
        except StorageError as e:
            logger.error(f"Customer read failed: {e}")
            return None
        for row in rows:
            if row and normalize_phone(_text(row, 1)) == user:
                return Customer.from_row(row)
        return None

    def upsert_customer(
        self,
        user: str,
        name: str = "",
        phone: str = "",
        address: str = "",
        region: str = "",
        city: str = "",
    ) -> Result[Customer]:
        user = normalize_phone(user)
        now = now_iso()
        try:
            rows = self.store.get_rows(tables.CUSTOMERS)
            for index, row in enumerate(rows):
                if not row or normalize_phone(_text(row, 1)) != user:
                    continue
                customer = Customer.from_row(row)
                updates = [("G", now)]
                for column, attr, value in (
                    ("C", "name", name),
                    ("D", "phone", phone),
                    ("E", "address", address),
                    ("H", "region", region),
                    ("I", "city", city),
                ):
                    if value:
                        setattr(customer, attr, value)
                        updates.append((column, value))
                customer.last_purchase = now
                self.store.batch_update(tables.CUSTOMERS, [(cell(col, index), val) for col, val in updates])
                return Result.success(customer)

            customer = Customer(
                id=generate_id("CLI"),
                user=user,
                name=name,
                phone=phone or user,
                address=address,
                registered_at=now,
                last_purchase=now,
                region=region,
                city=city,
            )
            self.store.append_row(
                tables.CUSTOMERS,
                [
                    customer.id,
                    customer.user,
                    customer.name,
                    customer.phone,
                    customer.address,
                    customer.registered_at,
                    customer.last_purchase,
                    customer.region,
                    customer.city,
                ],
            )
            return Result.success(customer)
        except StorageError as e:
            logger.error(f"Customer upsert failed for {user}: {e}")
            return Result.failure(str(e), "storage_error")

    # === ORDERS ===

    def get_orders_by_user(self, user: str) -> List[Order]:
        user = normalize_phone(user)
        try:
            rows = self.store.get_rows(tables.ORDERS)
        except StorageError as e:
            logger.error(f"Order read failed: {e}")
            return []
        return [Order.from_row(row) for row in rows if row and normalize_phone(_text(row, 3)) == user]

    def get_open_orders(self, user: str) -> List[Order]:
        return [order for order in self.get_orders_by_user(user) if order.is_open]

    def create_order(self, order: Order) -> Result[Order]:
        try:
            self.store.append_row(tables.ORDERS, order.to_row())
        except StorageError as e:
            logger.error(f"Order append failed for {order.id}: {e}")
            return Result.failure(str(e), "storage_error")
        logger.info("Order created", extra={"context": {"order_id": order.id, "total": order.total}})
        return Result.success(order)

    def update_order_status(self, order_id: str, status: str, voucher_url: Optional[str] = None) -> Result[str]:
        try:
            rows = self.store.get_rows(tables.ORDERS)
            for index, row in enumerate(rows):
                if _text(row, 0) != order_id:
                    continue
                updates = [(cell(tables.ORDER_STATUS_COL, index), status)]
                if voucher_url:
                    updates.append((cell(tables.ORDER_VOUCHER_COL, index), voucher_url))
                self.store.batch_update(tables.ORDERS, updates)
                return Result.success(status)
        except StorageError as e:
            logger.error(f"Order update failed for {order_id}: {e}")
            return Result.failure(str(e), "storage_error")
        return Result.failure(f"Pedido {order_id} no encontrado", "not_found")

    # === SETTINGS ===

    def get_settings(self) -> Dict[str, str]:
        try:
            rows = self.store.get_rows(tables.SETTINGS)
        except StorageError as e:
            logger.error(f"Settings read failed: {e}")
            return {}
        return {_text(row, 0): _text(row, 1) for row in rows if row and _text(row, 0)}

    def get_payment_methods(self) -> Dict[str, str]:
        settings = self.get_settings()
        keys = ("yape", "plin", "bank_name", "bank_account", "account_holder")
        return {key: settings[key] for key in keys if settings.get(key)}
