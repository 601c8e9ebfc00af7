import csv
import io
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple

from annotated_csv.datatypes import empty_value, parse_value
from annotated_csv.dialect import (
    ANNOTATION_DATATYPE,
    ANNOTATION_DEFAULT,
    ANNOTATION_GROUP,
    ANNOTATIONS,
    COMMENT_PREFIX,
    DecoderConfig,
)
from core.errors import (
    ColumnCountMismatch,
    DecodeError,
    FieldTooLarge,
    MalformedAnnotation,
    QueryCancelledError,
    QueryError,
    RowShapeMismatch,
    StreamedQueryError,
    TransportError,
    TruncatedStream,
    TypeMismatch,
)
from core.model import (
    DEFAULT_RESULT_NAME,
    ERROR_LABELS,
    RESULT_LABEL,
    TABLE_LABEL,
    Column,
    DataType,
    GroupKey,
    Result,
    Row,
    Table,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class _ChunkReader(io.RawIOBase):
    """Raw binary stream over an iterator of byte chunks"""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n


def _read_chunks(source) -> Iterator[bytes]:
    while True:
        chunk = source.read(READ_CHUNK_SIZE)
        if isinstance(chunk, str):
            raise TypeError("source must be opened in binary mode")
        if not chunk:
            return
        yield chunk


def _text_stream(source) -> io.TextIOWrapper:
    if isinstance(source, (str, io.TextIOBase)):
        raise TypeError("source must be bytes or a binary stream, not text")
    if isinstance(source, (bytes, bytearray)):
        chunks: Iterable[bytes] = [bytes(source)]
    elif hasattr(source, "read"):
        chunks = _read_chunks(source)
    else:
        chunks = source
    return io.TextIOWrapper(io.BufferedReader(_ChunkReader(chunks)), encoding="utf-8", newline="")


class _State(Enum):
    AWAIT_ANNOTATIONS = "await_annotations"
    READ_HEADER = "read_header"
    READ_ROWS = "read_rows"
    DONE = "done"


@dataclass
class _Block:
    """Metadata shared by every table of one annotation block"""
    line: int
    annotations: Dict[str, Tuple[int, List[str]]] = field(default_factory=dict)
    columns: List[Column] = field(default_factory=list)
    column_fields: List[int] = field(default_factory=list)  # field index of each column
    defaults: List[Any] = field(default_factory=list)        # per field, parsed or None
    result_field: Optional[int] = None
    table_field: Optional[int] = None
    is_error: bool = False
    has_rows: bool = False

    @property
    def width(self) -> int:
        return len(self.annotations[ANNOTATION_DATATYPE][1])

    def group_positions(self) -> List[int]:
        return [i for i, c in enumerate(self.columns) if c.group]

    def default_result(self) -> str:
        if self.result_field is not None and self.defaults[self.result_field]:
            return self.defaults[self.result_field]
        return DEFAULT_RESULT_NAME

    def default_table_id(self) -> Optional[int]:
        if self.table_field is None:
            return None
        return self.defaults[self.table_field]


@dataclass(eq=False)
class _TableHeader:
    result_name: str
    table_id: int
    columns: List[Column]
    key: GroupKey


class _Record(NamedTuple):
    header: _TableHeader
    values: Optional[Row]  # None marks a table without rows


class _RecordReader:
    """
    Line level state machine. Each call to next_record returns one decoded row tagged
    with the table it belongs to, so table and result boundaries fall out of comparing
    consecutive records.
    """

    def __init__(self, source, config: DecoderConfig):
        self._text = _text_stream(source)
        self._reader = csv.reader(self._text, delimiter=config.delimiter, strict=True)
        self._state = _State.AWAIT_ANNOTATIONS
        self._block: Optional[_Block] = None
        self._table: Optional[_TableHeader] = None

    @property
    def line(self) -> int:
        return self._reader.line_num

    def _read_line(self) -> Optional[List[str]]:
        try:
            return next(self._reader)
        except StopIteration:
            return None
        except csv.Error as e:
            if "unexpected end of data" in str(e):
                raise TruncatedStream("stream ended inside a quoted field", self.line, e) from e
            if "field larger than field limit" in str(e):
                raise FieldTooLarge(
                    f"cell exceeds csv.field_size_limit() of {csv.field_size_limit()} characters",
                    self.line, e) from e
            raise RowShapeMismatch(f"malformed row: {e}", self.line, e) from e
        except UnicodeDecodeError as e:
            raise DecodeError("stream is not valid UTF-8", self.line, e) from e
        except OSError as e:
            raise TransportError("reading the result stream failed", e) from e

    def next_record(self) -> Optional[_Record]:
        while self._state is not _State.DONE:
            fields = self._read_line()
            if fields is None:
                return self._finish()

            if self._state is _State.READ_ROWS:
                if not fields:
                    self._state = _State.AWAIT_ANNOTATIONS
                    record = self._end_block()
                    if record is not None:
                        return record
                    continue
                if fields[0].startswith(COMMENT_PREFIX):
                    raise MalformedAnnotation(
                        "annotation row inside table data, expected a blank line first", self.line)
                return self._read_row(fields)

            if fields and fields[0].startswith(COMMENT_PREFIX):
                self._read_annotation(fields)
                self._state = _State.READ_HEADER
            elif self._state is _State.READ_HEADER:
                if not fields:
                    raise MalformedAnnotation("blank line between annotations and header", self.line)
                self._read_header(fields)
                self._state = _State.READ_ROWS
            elif fields:
                raise MalformedAnnotation(
                    f"missing #{ANNOTATION_DATATYPE} annotation before header", self.line)
        return None

    def _finish(self) -> Optional[_Record]:
        state, self._state = self._state, _State.DONE
        if state is _State.READ_HEADER:
            raise TruncatedStream("stream ended before the header row", self.line)
        if state is _State.READ_ROWS:
            return self._end_block()
        return None

    def _end_block(self) -> Optional[_Record]:
        block, self._block = self._block, None
        self._table = None
        if block.has_rows or block.is_error:
            return None
        # A block without rows is an empty table whose key lives in #default
        key_values = []
        for i in block.group_positions():
            default = block.defaults[block.column_fields[i]]
            key_values.append(default if default is not None else empty_value(block.columns[i].data_type))
        group_columns = tuple(c for c in block.columns if c.group)
        header = _TableHeader(
            result_name=block.default_result(),
            table_id=block.default_table_id() or 0,
            columns=block.columns,
            key=GroupKey(group_columns, tuple(key_values)),
        )
        return _Record(header, None)

    def _read_annotation(self, fields: List[str]) -> None:
        kind = fields[0][len(COMMENT_PREFIX):]
        if kind not in ANNOTATIONS:
            raise MalformedAnnotation(f"unknown annotation {fields[0]!r}", self.line)
        if self._block is None:
            self._block = _Block(line=self.line)
        if kind in self._block.annotations:
            raise MalformedAnnotation(f"duplicate annotation {fields[0]!r}", self.line)
        self._block.annotations[kind] = (self.line, fields)

    def _read_header(self, fields: List[str]) -> None:
        block = self._block
        if ANNOTATION_DATATYPE not in block.annotations:
            raise MalformedAnnotation(
                f"missing #{ANNOTATION_DATATYPE} annotation before header", self.line)
        width = block.width
        for kind, (line, row) in block.annotations.items():
            if len(row) != width:
                raise ColumnCountMismatch(
                    f"#{kind} has {len(row)} fields, #{ANNOTATION_DATATYPE} has {width}", line)
        if len(fields) != width:
            raise ColumnCountMismatch(
                f"header has {len(fields)} fields, #{ANNOTATION_DATATYPE} has {width}", self.line)

        labels = fields[1:]
        datatype_line, datatype_row = block.annotations[ANNOTATION_DATATYPE]
        data_types = []
        for name in datatype_row[1:]:
            try:
                data_types.append(DataType.from_annotation(name))
            except ValueError:
                raise MalformedAnnotation(f"unknown datatype {name!r}", datatype_line) from None

        groups = [False] * len(labels)
        if ANNOTATION_GROUP in block.annotations:
            group_line, group_row = block.annotations[ANNOTATION_GROUP]
            for i, flag in enumerate(group_row[1:]):
                if flag not in ("true", "false"):
                    raise MalformedAnnotation(f"invalid group flag {flag!r}", group_line)
                groups[i] = flag == "true"

        block.is_error = labels == ERROR_LABELS
        for i, (label, data_type) in enumerate(zip(labels, data_types)):
            if label == RESULT_LABEL and not block.is_error:
                if data_type is not DataType.STRING:
                    raise MalformedAnnotation(
                        f"{RESULT_LABEL} column must be {DataType.STRING.value}", datatype_line)
                block.result_field = i
            elif label == TABLE_LABEL and not block.is_error:
                if data_type is not DataType.LONG:
                    raise MalformedAnnotation(
                        f"{TABLE_LABEL} column must be {DataType.LONG.value}", datatype_line)
                block.table_field = i
            else:
                block.columns.append(Column(label, data_type, groups[i]))
                block.column_fields.append(i)

        defaults: List[Any] = [None] * len(labels)
        if ANNOTATION_DEFAULT in block.annotations:
            default_line, default_row = block.annotations[ANNOTATION_DEFAULT]
            for i, text in enumerate(default_row[1:]):
                if text:
                    defaults[i] = self._parse_cell(labels[i], data_types[i], text, default_line)
        block.defaults = defaults
        logger.debug(f"Block at line {block.line}: {len(block.columns)} columns, "
                     f"group key {[c.label for c in block.columns if c.group]}")

    def _parse_cell(self, label: str, data_type: DataType, text: str, line: int) -> Any:
        try:
            return parse_value(data_type, text)
        except ValueError as e:
            raise TypeMismatch(label, line, text, data_type.value, e) from e

    def _read_row(self, fields: List[str]) -> _Record:
        block = self._block
        if len(fields) != block.width:
            raise RowShapeMismatch(
                f"row has {len(fields)} fields, expected {block.width}", self.line)
        cells = fields[1:]
        if block.is_error:
            message, reference = cells
            raise StreamedQueryError(message or "unknown query error", reference)

        current = self._table
        result_name = block.default_result()
        if block.result_field is not None and cells[block.result_field]:
            result_name = cells[block.result_field]
        table_id = block.default_table_id()
        if block.table_field is not None and cells[block.table_field]:
            table_id = self._parse_cell(
                TABLE_LABEL, DataType.LONG, cells[block.table_field], self.line)
        if table_id is None:
            table_id = current.table_id if current is not None else 0

        # Empty group cells inherit the key only while the row stays in the current table
        inherit = (current is not None and current.result_name == result_name
                   and current.table_id == table_id)
        group_positions = block.group_positions()
        values = []
        for position, (column, i) in enumerate(zip(block.columns, block.column_fields)):
            text = cells[i]
            if text:
                value = self._parse_cell(column.label, column.data_type, text, self.line)
            elif block.defaults[i] is not None:
                value = block.defaults[i]
            elif column.group and inherit:
                value = current.key.values[group_positions.index(position)]
            else:
                value = empty_value(column.data_type)
            values.append(value)

        key_values = tuple(values[p] for p in block.group_positions())
        if (current is None or current.result_name != result_name
                or current.table_id != table_id or current.key.values != key_values):
            group_columns = tuple(c for c in block.columns if c.group)
            current = _TableHeader(result_name, table_id, block.columns,
                                   GroupKey(group_columns, key_values))
            self._table = current
        block.has_rows = True
        return _Record(current, tuple(values))


class ResultIterator:
    """
    Lazily decoded results of one annotated table stream.

    Iterating yields Result objects whose ``tables`` and each table's ``rows`` are
    single-pass iterators pulling from the same stream. Moving on to the next table
    or result skips whatever the caller left unread. Errors never escape iteration:
    it stops after the last complete row and the error is kept on ``err``.
    """

    def __init__(self, reader: _RecordReader, on_cancel: Optional[Callable[[], None]] = None):
        self._reader = reader
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self._pending: Optional[_Record] = None
        self._current: Optional[Iterator[Table]] = None
        self._done = False
        self._released = False
        self._cancelled = False
        self._err: Optional[QueryError] = None

    @property
    def err(self) -> Optional[QueryError]:
        """Terminal error, checked after iteration ends."""
        return self._err

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __iter__(self) -> "ResultIterator":
        return self

    def __next__(self) -> Result:
        if self._current is not None:
            for _ in self._current:
                pass
            self._current = None
        record = self._peek()
        if record is None:
            raise StopIteration
        name = record.header.result_name
        self._current = self._tables(name)
        return Result(name, self._current)

    def __enter__(self) -> "ResultIterator":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.cancel()

    def _tables(self, name: str) -> Iterator[Table]:
        while True:
            record = self._peek()
            if record is None or record.header.result_name != name:
                return
            header = record.header
            rows = self._rows(header)
            yield Table(columns=header.columns, key=header.key, rows=rows, table_id=header.table_id)
            for _ in rows:
                pass

    def _rows(self, header: _TableHeader) -> Iterator[Row]:
        while True:
            record = self._peek()
            if record is None or record.header is not header:
                return
            self._pending = None
            if record.values is not None:
                yield record.values

    def _peek(self) -> Optional[_Record]:
        if self._pending is None and not self._done:
            try:
                self._pending = self._reader.next_record()
            except QueryError as e:
                self._fail(e)
            else:
                if self._pending is None:
                    self._done = True
                    self._release()
        return self._pending

    def _fail(self, error: QueryError) -> None:
        with self._lock:
            if self._cancelled and not isinstance(error, DecodeError):
                error = QueryCancelledError("query result cancelled while reading", error)
            if self._err is None:
                self._err = error
            self._done = True
            self._pending = None
        logger.warning(f"Result stream stopped at line {self._reader.line}: {error}")
        self._release()

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        if self._on_cancel is not None:
            self._on_cancel()

    def cancel(self) -> None:
        """Release the underlying stream. Idempotent and safe after exhaustion."""
        with self._lock:
            if not self._done:
                self._cancelled = True
                self._done = True
                self._pending = None
                if self._err is None:
                    self._err = QueryCancelledError("query result cancelled before it was fully read")
        self._release()


class MultiResultDecoder:
    """Decodes an annotated table stream holding any number of results"""

    def __init__(self, config: Optional[DecoderConfig] = None):
        self.config = config or DecoderConfig()

    def decode(self, source, on_cancel: Optional[Callable[[], None]] = None) -> ResultIterator:
        """
        Args:
            source: bytes, a binary file-like object, or an iterable of byte chunks.
            on_cancel: Called exactly once when the stream is released.
        """
        return ResultIterator(_RecordReader(source, self.config), on_cancel=on_cancel)
