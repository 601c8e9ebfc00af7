import json
import logging
from typing import Any, Dict, Iterator, Optional

import httpx

from core.config import ClientConfig
from core.errors import QueryTimeoutError, RemoteQueryError, TransportError

logger = logging.getLogger(__name__)


class BaseQueryService:
    """
    Request construction and status handling shared by the structured and proxy
    services. Holds only read-only configuration and a thread-safe httpx client, so
    concurrent queries through one service are independent.
    """

    def __init__(self, config: ClientConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.client = httpx.Client(
            base_url=config.url,
            timeout=config.timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": self.config.authorization(),
            "Content-Type": "application/json",
            "Accept": "text/csv",
        }

    def _send(self, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST the payload and return the streaming response once its status is known
        to be 2xx. Non-success responses are closed and raised as RemoteQueryError.
        """
        params = {"org": self.config.org} if self.config.org else None
        request = self.client.build_request(
            "POST", self.config.path, json=payload, headers=self._headers(), params=params)
        logger.info(f"Dispatching {payload.get('type')} query to {request.url}")
        try:
            response = self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Query to {request.url} timed out: {e}")
            raise QueryTimeoutError("query request timed out", e) from e
        except httpx.HTTPError as e:
            logger.error(f"Query to {request.url} failed: {e}")
            raise TransportError("query request failed", e) from e

        if not response.is_success:
            error = self._remote_error(response)
            logger.warning(f"Query rejected with status {response.status_code}: {error.message}")
            raise error
        return response

    def _remote_error(self, response: httpx.Response) -> RemoteQueryError:
        limit = self.config.max_error_body_bytes
        body = bytearray()
        try:
            for chunk in response.iter_bytes():
                body.extend(chunk)
                if len(body) >= limit:
                    break
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.warning(f"Could not read error body: {e}")
        finally:
            response.close()

        text = bytes(body[:limit]).decode("utf-8", errors="replace").strip()
        message, code = text, None
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            message = str(data.get("message") or text)
            code = data.get("code")
        return RemoteQueryError(response.status_code, message or response.reason_phrase, code)


def iter_body(response: httpx.Response) -> Iterator[bytes]:
    """Yield decoded body chunks, mapping httpx failures onto TransportError."""
    try:
        yield from response.iter_bytes()
    except httpx.TimeoutException as e:
        raise QueryTimeoutError("reading the response body timed out", e) from e
    except (httpx.HTTPError, httpx.StreamError) as e:
        raise TransportError("reading the response body failed", e) from e
