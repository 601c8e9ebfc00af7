import logging

from annotated_csv.decoder import MultiResultDecoder, ResultIterator
from annotated_csv.dialect import Dialect
from query_client.request import QueryRequest
from query_client.service import BaseQueryService, iter_body

logger = logging.getLogger(__name__)


class QueryService(BaseQueryService):
    """Runs a query and decodes the annotated CSV response into results"""

    dialect = Dialect()

    def query(self, request: QueryRequest) -> ResultIterator:
        """
        Issue the query and return a lazy iterator over its results.

        The iterator owns the HTTP response body; exhausting it or calling ``cancel``
        releases the connection. Decode and read failures show up on ``err`` once
        iteration stops.
        """
        response = self._send(request.to_dict(self.dialect))
        decoder = MultiResultDecoder(self.dialect.decoder_config())

        def release():
            logger.debug(f"Closing response body for {response.url}")
            response.close()

        return decoder.decode(iter_body(response), on_cancel=release)
