import threading
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatcommerce.database import init_db
from chatcommerce.services.storage import InMemoryBooks, InMemoryTableStore, SqlBooks, StorageError, cell
from chatcommerce.services.storage.base import column_index, column_letter, parse_address


class TestAddresses:
    def test_cell_skips_header_row(self):
        assert cell("B", 0) == "B2"
        assert cell("J", 4) == "J6"

    def test_parse_address(self):
        assert parse_address("F3") == (3, 5)
        assert parse_address("aa10") == (10, 26)

    def test_invalid_address(self):
        with pytest.raises(StorageError):
            parse_address("3F")

    def test_column_round_trip_edges(self):
        assert column_index("A") == 0
        assert column_letter(25) == "Z"
        assert column_letter(26) == "AA"


class TestInMemoryTableStore:
    def test_append_and_read(self):
        store = InMemoryTableStore()
        store.append_row("Orders", ["PED-1", "2024-01-01"])
        store.append_row("Orders", ["PED-2", "2024-01-02"])
        assert [row[0] for row in store.get_rows("Orders")] == ["PED-1", "PED-2"]

    def test_unknown_table_is_empty(self):
        assert InMemoryTableStore().get_rows("Nope") == []

    def test_update_cell_extends_short_rows(self):
        store = InMemoryTableStore({"Orders": [["PED-1"]]})
        store.update_cell("Orders", cell("C", 0), "x")
        assert store.get_rows("Orders") == [["PED-1", "", "x"]]

    def test_update_missing_row_raises(self):
        store = InMemoryTableStore({"Orders": [["PED-1"]]})
        with pytest.raises(StorageError):
            store.update_cell("Orders", "A5", "x")
        with pytest.raises(StorageError):
            store.update_cell("Orders", "A1", "header")

    def test_rows_are_copies(self):
        store = InMemoryTableStore({"Orders": [["PED-1"]]})
        store.get_rows("Orders")[0][0] = "changed"
        assert store.get_rows("Orders")[0][0] == "PED-1"

    def test_books_are_isolated(self):
        books = InMemoryBooks()
        books("a").append_row("T", [1])
        assert books("b").get_rows("T") == []
        assert books("a") is books("a")


@pytest.fixture
def sql_books():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    return SqlBooks(sessionmaker(bind=engine, autoflush=False))


class TestSqlTableStore:
    def test_append_and_read_in_order(self, sql_books):
        store = sql_books("T-CAFE")
        store.append_row("Inventory", ["CAF01", "Café", 25.0])
        store.append_row("Inventory", ["CAF02", "Grano", 80.0])
        assert store.get_rows("Inventory") == [["CAF01", "Café", 25.0], ["CAF02", "Grano", 80.0]]

    def test_batch_update(self, sql_books):
        store = sql_books("T-CAFE")
        store.append_row("Orders", ["PED-1", "PENDIENTE_PAGO"])
        store.append_row("Orders", ["PED-2", "PENDIENTE_PAGO"])
        store.batch_update("Orders", [(cell("B", 1), "PENDIENTE_VALIDACION"), (cell("D", 1), "media:1")])
        assert store.get_rows("Orders")[1] == ["PED-2", "PENDIENTE_VALIDACION", "", "media:1"]
        assert store.get_rows("Orders")[0] == ["PED-1", "PENDIENTE_PAGO"]

    def test_books_are_isolated(self, sql_books):
        sql_books("T-CAFE").append_row("Orders", ["PED-1"])
        assert sql_books("T-FLOR").get_rows("Orders") == []

    def test_update_missing_row_raises(self, sql_books):
        store = sql_books("T-CAFE")
        with pytest.raises(StorageError):
            store.update_cell("Orders", "B2", "x")

    def test_collision_from_another_writer_is_retried(self, sql_books):
        store = sql_books("T-CAFE")
        collision = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        with patch.object(store, "_insert_next", side_effect=[collision, None]) as insert:
            store.append_row("Messages", ["MSG-1"])
        assert insert.call_count == 2

    def test_persistent_collision_raises_storage_error(self, sql_books):
        store = sql_books("T-CAFE")
        collision = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        with patch.object(store, "_insert_next", side_effect=collision):
            with pytest.raises(StorageError):
                store.append_row("Messages", ["MSG-1"])


class TestSqlTableStoreConcurrency:
    def test_parallel_appends_keep_every_row(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'books.db'}", connect_args={"check_same_thread": False, "timeout": 30}
        )
        init_db(bind=engine)
        books = SqlBooks(sessionmaker(bind=engine, autoflush=False))
        errors = []

        def writer(worker):
            store = books("T-CAFE")
            for n in range(10):
                try:
                    store.append_row("Messages", [f"MSG-{worker}-{n}"])
                except StorageError as e:
                    errors.append(e)

        threads = [threading.Thread(target=writer, args=(worker,)) for worker in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        rows = books("T-CAFE").get_rows("Messages")
        assert errors == []
        assert len(rows) == 80
        assert len({row[0] for row in rows}) == 80
        engine.dispose()
