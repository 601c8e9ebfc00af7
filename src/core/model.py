from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple

Row = Tuple[Any, ...]

DEFAULT_RESULT_NAME = "_result"

# Labels the wire format reserves for framing; user columns may not take them
RESULT_LABEL = "result"
TABLE_LABEL = "table"
RESERVED_LABELS = (RESULT_LABEL, TABLE_LABEL)
ERROR_LABELS = ["error", "reference"]


class DataType(Enum):
    """Column datatypes, valued by their annotation names on the wire"""
    STRING = "string"
    LONG = "long"
    UNSIGNED_LONG = "unsignedLong"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    TIME = "dateTime:RFC3339"
    TIME_NANO = "dateTime:RFC3339Nano"
    DURATION = "duration"

    @classmethod
    def from_annotation(cls, name: str) -> "DataType":
        return cls(name)


@dataclass(frozen=True)
class Column:
    """A labelled, typed column. ``group`` marks membership in the group key."""
    label: str
    data_type: DataType
    group: bool = False


@dataclass(frozen=True)
class GroupKey:
    """Group key columns of a table and the values they hold on every row"""
    columns: Tuple[Column, ...] = ()
    values: Tuple[Any, ...] = ()

    def value(self, label: str) -> Any:
        for column, value in zip(self.columns, self.values):
            if column.label == label:
                return value
        raise KeyError(label)

    def labels(self) -> List[str]:
        return [c.label for c in self.columns]

    def __str__(self) -> str:
        pairs = ",".join(f"{c.label}={v}" for c, v in zip(self.columns, self.values))
        return "{" + pairs + "}"


@dataclass
class Table:
    """
    Ordered rows sharing one schema and one group key.

    ``rows`` is either a list or a lazy single-pass iterator handed out by the
    decoder; call ``materialize`` to get a list-backed copy that can be read
    more than once and compared.
    """
    columns: List[Column]
    key: GroupKey = field(default_factory=GroupKey)
    rows: Iterable[Row] = field(default_factory=list)
    table_id: int = field(default=0, compare=False)

    def __iter__(self):
        return iter(self.rows)

    def column_index(self, label: str) -> int:
        for i, column in enumerate(self.columns):
            if column.label == label:
                return i
        raise KeyError(label)

    def group_indices(self) -> List[int]:
        return [i for i, c in enumerate(self.columns) if c.group]

    def materialize(self) -> "Table":
        return Table(
            columns=list(self.columns),
            key=self.key,
            rows=[tuple(r) for r in self.rows],
            table_id=self.table_id,
        )

    @classmethod
    def from_rows(cls, columns: Sequence[Column], rows: Iterable[Sequence[Any]],
                  table_id: int = 0) -> "Table":
        """Build a table, taking the group key values from the first row."""
        rows = [tuple(r) for r in rows]
        group_columns = tuple(c for c in columns if c.group)
        if rows:
            indices = [i for i, c in enumerate(columns) if c.group]
            values = tuple(rows[0][i] for i in indices)
        else:
            values = tuple(None for _ in group_columns)
        return cls(
            columns=list(columns),
            key=GroupKey(group_columns, values),
            rows=rows,
            table_id=table_id,
        )


@dataclass
class Result:
    """A named, ordered sequence of tables returned by one query"""
    name: str
    tables: Iterable[Table] = field(default_factory=list)

    def __iter__(self):
        return iter(self.tables)

    def materialize(self) -> "Result":
        return Result(self.name, [t.materialize() for t in self.tables])


def check_columns(columns: Sequence[Column]) -> None:
    """Raise ValueError if a label would be read back as framing or as an error table."""
    labels = [c.label for c in columns]
    for label in labels:
        if label in RESERVED_LABELS:
            raise ValueError(f"column label {label!r} is reserved")
    if labels == ERROR_LABELS:
        raise ValueError(f"columns {labels} would be read back as an error table")


def check_row(table: Table, row: Row, group_indices: Optional[List[int]] = None) -> None:
    """Raise ValueError if a row breaks the table's shape or group key."""
    if len(row) != len(table.columns):
        raise ValueError(
            f"row has {len(row)} values, table {table.key} has {len(table.columns)} columns")
    if group_indices is None:
        group_indices = table.group_indices()
    for i, expected in zip(group_indices, table.key.values):
        if row[i] != expected:
            raise ValueError(
                f"row value {row[i]!r} for group column {table.columns[i].label!r} "
                f"does not match table key {table.key}")
