from core.config import ClientConfig
from core.model import Column, DataType, GroupKey, Result, Row, Table

__all__ = [
    "ClientConfig",
    "Column",
    "DataType",
    "GroupKey",
    "Result",
    "Row",
    "Table",
]
