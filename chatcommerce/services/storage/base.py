import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Tuple

FIRST_DATA_ROW = 2

_A1 = re.compile(r"^([A-Z]+)(\d+)$")


class StorageError(Exception):
    """Raised by table stores when a read or write cannot be completed."""


def column_index(letters: str) -> int:
    """Zero-based index of a column letter (A -> 0, AA -> 26)."""
    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def column_letter(index: int) -> str:
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def parse_address(address: str) -> Tuple[int, int]:
    """Split an A1 address into (row number, zero-based column index)."""
    match = _A1.match(address.strip().upper())
    if not match:
        raise StorageError(f"Invalid cell address: {address}")
    return int(match.group(2)), column_index(match.group(1))


def cell(column: str, data_index: int) -> str:
    """A1 address for the given column of the n-th data row returned by get_rows."""
    return f"{column}{data_index + FIRST_DATA_ROW}"


class TableStore(ABC):
    """Row-oriented table store; row 1 of every table is reserved for headers."""

    @abstractmethod
    def get_rows(self, table: str) -> List[List[Any]]:
        """Data rows in sheet order."""

    @abstractmethod
    def append_row(self, table: str, values: List[Any]) -> None:
        pass

    @abstractmethod
    def update_cell(self, table: str, address: str, value: Any) -> None:
        pass

    def batch_update(self, table: str, updates: Iterable[Tuple[str, Any]]) -> None:
        for address, value in updates:
            self.update_cell(table, address, value)
