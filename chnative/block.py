"""Blocks: named columns of equal length sent and received as a unit."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Iterator, List

from .errors import ValidationError
from .streams import InputStream, OutputStream


class Column(abc.ABC):
    """A column of values of one type."""

    @abc.abstractmethod
    def size(self) -> int:
        """Number of rows in the column."""

    @abc.abstractmethod
    def type_name(self) -> str:
        """The server-side name of the column's type."""

    @abc.abstractmethod
    def save(self, stream: OutputStream) -> None:
        """Write the column's values to ``stream``."""

    @abc.abstractmethod
    def load(self, stream: InputStream, rows: int) -> None:
        """Append ``rows`` values read from ``stream``; raise if data runs short."""


@dataclass
class BlockInfo:
    """Extra information carried with a block."""

    is_overflows: int = 0
    bucket_num: int = -1


@dataclass(frozen=True)
class BlockColumn:
    """A column of a block together with its name and position."""

    name: str
    column: Column
    index: int

    @property
    def type_name(self) -> str:
        """The type name of the column."""
        return self.column.type_name()


def _row_mismatch(name: str, rows: int, column_rows: int) -> ValidationError:
    return ValidationError(
        f"all columns in block must have same count of rows. Name: [{name}], "
        f"rows: [{rows}], columns: [{column_rows}]"
    )


class Block:
    """An ordered set of named columns that all hold the same number of rows."""

    def __init__(self) -> None:
        self._info = BlockInfo()
        self._columns: List[BlockColumn] = []
        self._rows = 0

    def append_column(self, name: str, column: Column) -> None:
        """Add a named column; its length must match the columns already present."""
        if not self._columns:
            self._rows = column.size()
        elif column.size() != self._rows:
            raise _row_mismatch(name, self._rows, column.size())
        self._columns.append(BlockColumn(name, column, len(self._columns)))

    def column_count(self) -> int:
        """Number of columns in the block."""
        return len(self._columns)

    def row_count(self) -> int:
        """Number of rows in the block."""
        return self._rows

    def info(self) -> BlockInfo:
        """The block's extra information."""
        return self._info

    def refresh_row_count(self) -> int:
        """Recompute the row count from the columns, checking they agree."""
        rows = 0
        for item in self._columns:
            size = item.column.size()
            if item.index == 0:
                rows = size
            elif size != rows:
                raise _row_mismatch(item.name, rows, size)
        self._rows = rows
        return rows

    def column_name(self, index: int) -> str:
        """Name of the column at ``index``."""
        return self._entry(index).name

    def __getitem__(self, index: int) -> Column:
        return self._entry(index).column

    def _entry(self, index: int) -> BlockColumn:
        if 0 <= index < len(self._columns):
            return self._columns[index]
        raise IndexError(
            f"column index is out of range. Index: [{index}], columns: [{len(self._columns)}]"
        )

    def __iter__(self) -> Iterator[BlockColumn]:
        return iter(list(self._columns))

    def __len__(self) -> int:
        return len(self._columns)