from chatcommerce.services.storage.base import StorageError, TableStore, cell
from chatcommerce.services.storage.memory import InMemoryBooks, InMemoryTableStore
from chatcommerce.services.storage.sql import SqlBooks, SqlTableStore

__all__ = [
    "StorageError",
    "TableStore",
    "cell",
    "InMemoryBooks",
    "InMemoryTableStore",
    "SqlBooks",
    "SqlTableStore",
]
