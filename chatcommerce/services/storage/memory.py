import copy
import threading
from typing import Any, Dict, Iterable, List, Tuple

from chatcommerce.services.storage.base import FIRST_DATA_ROW, StorageError, TableStore, parse_address


class InMemoryTableStore(TableStore):
    """Table store kept in process memory. Used for demos and tests."""

    def __init__(self, tables: Dict[str, List[List[Any]]] | None = None, book_id: str | None = None):
        self.book_id = book_id
        self._lock = threading.Lock()
        self._tables: Dict[str, List[List[Any]]] = copy.deepcopy(tables) if tables else {}

    def get_rows(self, table: str) -> List[List[Any]]:
        with self._lock:
            return [list(row) for row in self._tables.get(table, [])]

    def append_row(self, table: str, values: List[Any]) -> None:
        with self._lock:
            self._tables.setdefault(table, []).append(list(values))

    def update_cell(self, table: str, address: str, value: Any) -> None:
        with self._lock:
            self._set(table, address, value)

    def batch_update(self, table: str, updates: Iterable[Tuple[str, Any]]) -> None:
        with self._lock:
            for address, value in updates:
                self._set(table, address, value)

    def _set(self, table: str, address: str, value: Any) -> None:
        row_number, col = parse_address(address)
        rows = self._tables.get(table, [])
        index = row_number - FIRST_DATA_ROW
        if index < 0 or index >= len(rows):
            raise StorageError(f"Row {row_number} not found in {table}")
        row = rows[index]
        if col >= len(row):
            row.extend([""] * (col + 1 - len(row)))
        row[col] = value


class InMemoryBooks:
    """One in-memory store per book id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._books: Dict[str, InMemoryTableStore] = {}

    def __call__(self, book_id: str) -> InMemoryTableStore:
        with self._lock:
            store = self._books.get(book_id)
            if store is None:
                store = InMemoryTableStore(book_id=book_id)
                self._books[book_id] = store
            return store
