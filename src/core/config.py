"""
ClientConfig holds the read-only settings shared by the query services. Nothing else is
shared between concurrent queries issued through one service.

Example:
{
    'url': 'http://localhost:8086',
    'token': 'my-token',
    'org': 'my-org',
    'timeout': 30.0,
}
"""
import os
from dataclasses import dataclass
from typing import Optional

ENV_PREFIX = "QUERY_SERVICE_"


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for the structured and proxy query services"""

    url: str
    token: str = ""
    org: Optional[str] = None

    # Request
    path: str = "/api/v2/query"
    auth_scheme: str = "Token"
    timeout: float = 30.0  # seconds, applies to connect and to each read

    # Non-2xx responses carry a short diagnostic body, never a table stream
    max_error_body_bytes: int = 4096

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "ClientConfig":
        """Load configuration from environment variables"""
        url = os.getenv(f"{prefix}URL")
        if not url:
            raise ValueError(f"{prefix}URL must be set")
        return cls(
            url=url,
            token=os.getenv(f"{prefix}TOKEN", ""),
            org=os.getenv(f"{prefix}ORG") or None,
            timeout=float(os.getenv(f"{prefix}TIMEOUT", str(cls.timeout))),
        )

    def authorization(self) -> str:
        return f"{self.auth_scheme} {self.token}"
