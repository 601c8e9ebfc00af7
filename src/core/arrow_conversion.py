from typing import Dict, List, Optional, Sequence

import pyarrow as pa

from core.model import Column, DataType, Table, check_columns

DATATYPE_METADATA_KEY = b"datatype"
GROUP_METADATA_KEY = b"group"

_ARROW_TYPES: Dict[DataType, pa.DataType] = {
    DataType.STRING: pa.string(),
    DataType.LONG: pa.int64(),
    DataType.UNSIGNED_LONG: pa.uint64(),
    DataType.DOUBLE: pa.float64(),
    DataType.BOOLEAN: pa.bool_(),
    DataType.TIME: pa.timestamp("us", tz="UTC"),
    DataType.TIME_NANO: pa.timestamp("us", tz="UTC"),
    DataType.DURATION: pa.duration("us"),
}


def arrow_type(data_type: DataType) -> pa.DataType:
    return _ARROW_TYPES[data_type]


def infer_data_type(arrow_type: pa.DataType) -> DataType:
    """Map an Arrow type onto the closest annotated datatype"""
    if pa.types.is_string(arrow_type) or pa.types.is_large_string(arrow_type):
        return DataType.STRING
    if pa.types.is_boolean(arrow_type):
        return DataType.BOOLEAN
    if pa.types.is_unsigned_integer(arrow_type):
        return DataType.UNSIGNED_LONG
    if pa.types.is_integer(arrow_type):
        return DataType.LONG
    if pa.types.is_floating(arrow_type):
        return DataType.DOUBLE
    if pa.types.is_timestamp(arrow_type):
        return DataType.TIME
    if pa.types.is_duration(arrow_type):
        return DataType.DURATION
    raise ValueError(f"No annotated datatype for Arrow type {arrow_type}")


def arrow_schema(columns: Sequence[Column]) -> pa.Schema:
    """Arrow schema for a table's columns; datatype and group flag ride along as field metadata"""
    fields = []
    for column in columns:
        metadata = {
            DATATYPE_METADATA_KEY: column.data_type.value.encode(),
            GROUP_METADATA_KEY: b"true" if column.group else b"false",
        }
        fields.append(pa.field(column.label, arrow_type(column.data_type), metadata=metadata))
    return pa.schema(fields)


def table_to_arrow(table: Table) -> pa.Table:
    """Convert a table to Arrow. Lazy tables are consumed."""
    schema = arrow_schema(table.columns)
    rows = [tuple(r) for r in table.rows]
    arrays = [
        pa.array([row[i] for row in rows], type=schema.field(i).type)
        for i in range(len(table.columns))
    ]
    return pa.Table.from_arrays(arrays, schema=schema)


def table_from_arrow(arrow_table: pa.Table, group_columns: Optional[List[str]] = None,
                     table_id: int = 0) -> Table:
    """
    Build a table from Arrow data.

    Field metadata written by ``arrow_schema`` takes precedence; otherwise the datatype
    is inferred and ``group_columns`` names the group key.
    """
    group_columns = set(group_columns or [])
    columns = []
    for f in arrow_table.schema:
        metadata = f.metadata or {}
        if DATATYPE_METADATA_KEY in metadata:
            data_type = DataType(metadata[DATATYPE_METADATA_KEY].decode())
        else:
            data_type = infer_data_type(f.type)
        if GROUP_METADATA_KEY in metadata:
            group = metadata[GROUP_METADATA_KEY] == b"true"
        else:
            group = f.name in group_columns
        columns.append(Column(f.name, data_type, group))
    check_columns(columns)

    pylists = [arrow_table.column(i).to_pylist() for i in range(arrow_table.num_columns)]
    rows = list(zip(*pylists)) if pylists else []
    return Table.from_rows(columns, rows, table_id=table_id)
