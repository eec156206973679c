from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatcommerce.logging_config import get_logger
from chatcommerce.models import SheetRow
from chatcommerce.services.locks import KeyedLocks
from chatcommerce.services.storage.base import FIRST_DATA_ROW, StorageError, TableStore, parse_address

logger = get_logger("storage.sql")

# Another process may take the same row number between our read and insert.
APPEND_ATTEMPTS = 3


class SqlTableStore(TableStore):
    """Table store backed by the `sheet_rows` table, one book per tenant.

    Row numbers are allocated under a per-(book, table) lock; stores built by the
    same `SqlBooks` share those locks.
    """

    def __init__(self, session_factory: sessionmaker, book_id: str, locks: Optional[KeyedLocks] = None):
        self.session_factory = session_factory
        self.book_id = book_id
        self.locks = locks or KeyedLocks()

    def _rows_query(self, db: Session, table: str):
        return db.query(SheetRow).filter(SheetRow.book_id == self.book_id, SheetRow.table_name == table)

    def get_rows(self, table: str) -> List[List[Any]]:
        try:
            with self.session_factory() as db:
                rows = self._rows_query(db, table).order_by(SheetRow.row_number).all()
                return [list(row.values or []) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Read failed for {self.book_id}/{table}: {e}")
            raise StorageError(str(e)) from e

    def append_row(self, table: str, values: List[Any]) -> None:
        with self.locks.lock((self.book_id, table)):
            for attempt in range(1, APPEND_ATTEMPTS + 1):
                try:
                    self._insert_next(table, values)
                    return
                except IntegrityError as e:
                    if attempt == APPEND_ATTEMPTS:
                        logger.error(f"Append failed for {self.book_id}/{table}: row number taken {attempt} times")
                        raise StorageError(str(e)) from e
                    logger.warning(f"Row number collision on {self.book_id}/{table}, retrying")
                except SQLAlchemyError as e:
                    logger.error(f"Append failed for {self.book_id}/{table}: {e}")
                    raise StorageError(str(e)) from e

    def _insert_next(self, table: str, values: List[Any]) -> None:
        with self.session_factory() as db:
            last = (
                db.query(func.max(SheetRow.row_number))
                .filter(SheetRow.book_id == self.book_id, SheetRow.table_name == table)
                .scalar()
            )
            row_number = (last + 1) if last else FIRST_DATA_ROW
            db.add(SheetRow(book_id=self.book_id, table_name=table, row_number=row_number, values=list(values)))
            db.commit()

    def update_cell(self, table: str, address: str, value: Any) -> None:
        self.batch_update(table, [(address, value)])

    def batch_update(self, table: str, updates: Iterable[Tuple[str, Any]]) -> None:
        parsed = [(parse_address(address), value) for address, value in updates]
        with self.locks.lock((self.book_id, table)):
            try:
                with self.session_factory() as db:
                    for (row_number, col), value in parsed:
                        row = self._rows_query(db, table).filter(SheetRow.row_number == row_number).first()
                        if row is None:
                            raise StorageError(f"Row {row_number} not found in {table}")
                        values = list(row.values or [])
                        if col >= len(values):
                            values.extend([""] * (col + 1 - len(values)))
                        values[col] = value
                        row.values = values
                    db.commit()
            except SQLAlchemyError as e:
                logger.error(f"Update failed for {self.book_id}/{table}: {e}")
                raise StorageError(str(e)) from e


class SqlBooks:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.locks = KeyedLocks()

    def __call__(self, book_id: str) -> SqlTableStore:
        return SqlTableStore(self.session_factory, book_id, self.locks)
