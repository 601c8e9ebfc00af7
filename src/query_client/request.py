from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from annotated_csv.datatypes import format_value
from annotated_csv.dialect import Dialect
from core.model import DataType


@dataclass(frozen=True)
class QueryRequest:
    """A compiled query as understood by the remote service. The text is opaque here."""
    query: str
    compiler_type: str = "flux"
    now: Optional[datetime] = None

    def validate(self) -> None:
        if not self.query or not self.query.strip():
            raise ValueError("query must not be empty")
        if not self.compiler_type:
            raise ValueError("compiler type must be set")

    def to_dict(self, dialect: Optional[Dialect] = None) -> Dict[str, Any]:
        self.validate()
        payload: Dict[str, Any] = {"query": self.query, "type": self.compiler_type}
        if self.now is not None:
            payload["now"] = format_value(DataType.TIME, self.now)
        if dialect is not None:
            payload["dialect"] = dialect.to_dict()
        return payload


@dataclass(frozen=True)
class ProxyRequest:
    """A query plus the dialect the raw response body should be rendered in"""
    request: QueryRequest
    dialect: Dialect = field(default_factory=Dialect)

    def to_dict(self) -> Dict[str, Any]:
        return self.request.to_dict(self.dialect)
