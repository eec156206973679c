import json
import threading
import time
from unittest.mock import Mock

import pytest

from chatcommerce.services import tables
from chatcommerce.services.records_service import BusinessRecords, Order, Product
from chatcommerce.services.storage import InMemoryTableStore, StorageError

USER = "51987654321"


@pytest.fixture
def store():
    return InMemoryTableStore(
        {
            tables.INVENTORY: [
                ["CAF01", "Café molido 250g", "", "25.00", "10", "2", "", "activo", "cafe"],
                ["CAF02", "Café en grano", "", "S/ 80,50", "5", "", "", "PUBLICADO", "cafe"],
                ["CAF04", "Prensa francesa", "", 120, 3, 0, "", "INACTIVO", "accesorios"],
            ],
            tables.SETTINGS: [["yape", "999888777"], ["plin", ""], ["bank_account", "191-123"]],
        }
    )


@pytest.fixture
def records(store):
    return BusinessRecords(store)


def make_order(order_id="CAFE-1", status="PENDIENTE_PAGO"):
    return Order(
        id=order_id,
        date="2024-01-01T10:00:00",
        customer_id="CLI-1",
        user=USER,
        customer_name="Ana",
        phone="987654321",
        address="Av. Larco 123",
        lines=[{"code": "CAF01", "quantity": 2, "unit_price": 25.0, "subtotal": 50.0}],
        total=50.0,
        status=status,
    )


class TestInventory:
    def test_offered_products_only(self, records):
        assert [p.code for p in records.get_products()] == ["CAF01", "CAF02"]
        assert len(records.get_products(offered_only=False)) == 3

    def test_parses_loose_numbers(self, records):
        product = records.get_product("caf02")
        assert product.price == 80.5
        assert product.reserved == 0
        assert records.get_product("CAF01").available == 8

    def test_search_by_name_or_category(self, records):
        assert [p.code for p in records.search_products("grano")] == ["CAF02"]
        assert len(records.search_products("CAFE")) == 2
        assert records.search_products("  ") == []

    def test_reserve_and_release(self, records, store):
        assert records.reserve_stock("CAF01", 3).value == 5
        assert store.get_rows(tables.INVENTORY)[0][5] == 5
        assert records.release_stock("CAF01", 10).value == 0

    def test_reserve_more_than_available(self, records):
        result = records.reserve_stock("CAF01", 9)
        assert not result.ok
        assert result.error_code == "insufficient_stock"

    def test_reserve_unknown_product(self, records):
        assert records.reserve_stock("NOPE", 1).error_code == "not_found"

    def test_concurrent_reservations_do_not_oversell(self):
        class SlowInventory(InMemoryTableStore):
            def get_rows(self, table):
                rows = super().get_rows(table)
                time.sleep(0.005)
                return rows

        store = SlowInventory({tables.INVENTORY: [["CAF01", "Café", "", 25, 5, 0, "", "ACTIVO", ""]]})
        start = threading.Barrier(10)
        results = []

        def buy():
            start.wait()
            results.append(BusinessRecords(store).reserve_stock("CAF01", 1).ok)

        threads = [threading.Thread(target=buy) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 5
        assert store.get_rows(tables.INVENTORY)[0][5] == 5

    def test_read_failure_degrades_to_empty(self):
        store = Mock()
        store.get_rows.side_effect = StorageError("down")
        records = BusinessRecords(store)
        assert records.get_products() == []
        assert records.get_product("CAF01") is None
        assert records.find_customer(USER) is None
        assert records.get_open_orders(USER) == []
        assert records.get_settings() == {}
        assert records.reserve_stock("CAF01", 1).error_code == "storage_error"


class TestCustomers:
    def test_create_then_update(self, records, store):
        created = records.upsert_customer("+" + USER, name="Ana")
        assert created.ok
        assert created.value.id.startswith("CLI-")
        assert created.value.phone == USER

        updated = records.upsert_customer(USER, address="Av. Larco 123")
        assert updated.value.id == created.value.id
        assert updated.value.name == "Ana"
        assert updated.value.address == "Av. Larco 123"
        assert len(store.get_rows(tables.CUSTOMERS)) == 1
        assert records.find_customer(USER).address == "Av. Larco 123"

    def test_write_failure(self):
        store = Mock()
        store.get_rows.return_value = []
        store.append_row.side_effect = StorageError("quota")
        result = BusinessRecords(store).upsert_customer(USER, name="Ana")
        assert result.error_code == "storage_error"


class TestOrders:
    def test_create_and_read(self, records, store):
        assert records.create_order(make_order()).ok
        row = store.get_rows(tables.ORDERS)[0]
        assert len(row) == 14
        assert json.loads(row[7])[0]["code"] == "CAF01"

        order = records.get_orders_by_user("whatsapp:+" + USER)[0]
        assert order.total == 50.0
        assert order.lines[0]["quantity"] == 2

    def test_open_orders_exclude_closed(self, records):
        records.create_order(make_order("CAFE-1", "ENTREGADO"))
        records.create_order(make_order("CAFE-2", "PENDIENTE_PAGO"))
        records.create_order(make_order("CAFE-3", "CANCELADO"))
        assert [o.id for o in records.get_open_orders(USER)] == ["CAFE-2"]

    def test_update_status_with_voucher(self, records, store):
        records.create_order(make_order("CAFE-1"))
        records.create_order(make_order("CAFE-2"))
        result = records.update_order_status("CAFE-2", "PENDIENTE_VALIDACION", voucher_url="media:9")
        assert result.ok
        row = store.get_rows(tables.ORDERS)[1]
        assert row[9] == "PENDIENTE_VALIDACION"
        assert row[10] == "media:9"

    def test_update_unknown_order(self, records):
        assert records.update_order_status("NOPE", "CONFIRMADO").error_code == "not_found"

    def test_malformed_lines_do_not_break_reads(self):
        row = ["CAFE-1", "", "", USER, "", "", "", "{bad", "10", "CONFIRMADO"]
        assert Order.from_row(row).lines == []


class TestSettings:
    def test_payment_methods_skip_blank_values(self, records):
        assert records.get_payment_methods() == {"yape": "999888777", "bank_account": "191-123"}

    def test_product_defaults(self):
        product = Product.from_row(["X1", "Algo"])
        assert product.status == "ACTIVO"
        assert product.available == 0
