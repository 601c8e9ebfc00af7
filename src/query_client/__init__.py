from query_client.proxy import ProxyQueryService
from query_client.request import ProxyRequest, QueryRequest
from query_client.structured import QueryService

__all__ = [
    "ProxyQueryService",
    "ProxyRequest",
    "QueryRequest",
    "QueryService",
]
