import logging
from typing import BinaryIO

import httpx

from core.errors import QueryTimeoutError, SinkWriteError, TransportError
from query_client.request import ProxyRequest
from query_client.service import BaseQueryService

logger = logging.getLogger(__name__)


class ProxyQueryService(BaseQueryService):
    """Runs a query and copies the response body to a sink without interpreting it"""

    def query(self, sink: BinaryIO, request: ProxyRequest) -> int:
        """
        Returns the number of bytes copied. Failures after a partial copy carry the
        count so far as ``bytes_written``; a rejected query writes nothing.
        """
        response = self._send(request.to_dict())
        written = 0
        try:
            for chunk in response.iter_bytes():
                try:
                    sink.write(chunk)
                except (OSError, ValueError) as e:
                    raise SinkWriteError(
                        f"writing to sink failed after {written} bytes", e, bytes_written=written) from e
                written += len(chunk)
        except httpx.TimeoutException as e:
            logger.error(f"Proxy read timed out after {written} bytes")
            raise QueryTimeoutError("reading the response body timed out", e, bytes_written=written) from e
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.error(f"Proxy read failed after {written} bytes: {e}")
            raise TransportError("reading the response body failed", e, bytes_written=written) from e
        finally:
            response.close()

        logger.info(f"Proxied {written} bytes from {response.url}")
        return written
