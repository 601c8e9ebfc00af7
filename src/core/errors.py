from typing import Optional


class QueryError(Exception):
    """
    Base class for every error raised while dispatching a query or moving its
    result through the annotated table format.
    Attributes:
        message (str): A human-readable error message.
        original_exception (Exception, optional): The exception that triggered this one.
    """

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception

    def __str__(self):
        if self.original_exception:
            return f"{self.message} (Caused by: {repr(self.original_exception)})"
        return self.message

    def __repr__(self):
        return f"{self.__class__.__name__}(message={self.message!r}, original_exception={self.original_exception!r})"


class TransportError(QueryError):
    """Connection, timeout or cancellation failure. Never retried here."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None,
                 bytes_written: int = 0):
        super().__init__(message, original_exception)
        self.bytes_written = bytes_written


class QueryCancelledError(TransportError):
    """The result was cancelled before it was fully read."""


class QueryTimeoutError(TransportError):
    """The request or an in-flight read exceeded its timeout."""


class RemoteQueryError(QueryError):
    """The remote service answered with a non-success status."""

    def __init__(self, status_code: Optional[int], message: str, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def __str__(self):
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"

    def __repr__(self):
        return (f"{self.__class__.__name__}(status_code={self.status_code!r}, "
                f"message={self.message!r}, code={self.code!r})")


class StreamedQueryError(RemoteQueryError):
    """A query failure reported in-band as an error table inside a 200 response."""

    def __init__(self, message: str, reference: str = ""):
        super().__init__(None, message)
        self.reference = reference


class DecodeError(QueryError):
    """Base for malformed annotated table input. Always fatal to the current result."""

    def __init__(self, message: str, line: Optional[int] = None,
                 original_exception: Optional[Exception] = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message, original_exception)
        self.line = line


class MalformedAnnotation(DecodeError):
    pass


class ColumnCountMismatch(DecodeError):
    pass


class RowShapeMismatch(DecodeError):
    pass


class TruncatedStream(DecodeError):
    pass


class FieldTooLarge(DecodeError):
    """A single cell is longer than the csv module's field size limit."""


class TypeMismatch(DecodeError):
    """A cell could not be parsed as its column's datatype."""

    def __init__(self, column: str, row: Optional[int], text: str, data_type: str,
                 original_exception: Optional[Exception] = None):
        super().__init__(
            f"column {column!r}: cannot parse {text!r} as {data_type}",
            line=row,
            original_exception=original_exception,
        )
        self.column = column
        self.row = row
        self.text = text


class SinkWriteError(QueryError):
    """Writing to a caller supplied sink failed. Output already written is not rolled back."""

    def __init__(self, message: str, original_exception: Optional[Exception] = None,
                 bytes_written: int = 0):
        super().__init__(message, original_exception)
        self.bytes_written = bytes_written


class EncodeWriteError(SinkWriteError):
    pass
