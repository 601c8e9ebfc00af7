import csv
import io
import itertools
import logging
from typing import BinaryIO, Iterable, Iterator, List, Optional

from annotated_csv.datatypes import format_value
from annotated_csv.dialect import (
    ANNOTATION_DATATYPE,
    ANNOTATION_DEFAULT,
    ANNOTATION_GROUP,
    ANNOTATIONS,
    COMMENT_PREFIX,
    EncoderConfig,
)
from core.errors import EncodeWriteError, StreamedQueryError
from core.model import (
    ERROR_LABELS,
    RESULT_LABEL,
    TABLE_LABEL,
    Column,
    DataType,
    Result,
    Row,
    Table,
    check_columns,
    check_row,
)

logger = logging.getLogger(__name__)

_CRLF = "\r\n"


class _LineWriter:
    """Formats one CSV line at a time and writes it straight through to the sink"""

    def __init__(self, sink: BinaryIO, config: EncoderConfig):
        self.sink = sink
        self.config = config
        self.bytes_written = 0
        self._buffer = io.StringIO()
        # Always CRLF here so both \r and \n inside a field force quoting
        self._writer = csv.writer(
            self._buffer,
            delimiter=config.delimiter,
            lineterminator=_CRLF,
            quoting=csv.QUOTE_MINIMAL,
        )

    def row(self, fields: List[str]) -> None:
        self._buffer.seek(0)
        self._buffer.truncate()
        self._writer.writerow(fields)
        line = self._buffer.getvalue()
        self._write(line[:-len(_CRLF)] + self.config.line_terminator)

    def blank(self) -> None:
        self._write(self.config.line_terminator)

    def _write(self, text: str) -> None:
        data = text.encode("utf-8")
        try:
            self.sink.write(data)
        except (OSError, ValueError) as e:
            raise EncodeWriteError(
                f"writing to sink failed after {self.bytes_written} bytes", e,
                bytes_written=self.bytes_written) from e
        self.bytes_written += len(data)


class MultiResultEncoder:
    """
    Writes results as annotated CSV: per block the annotation rows, the header row,
    one line per row and a blank line. Output is streamed line by line; nothing is
    rolled back when the sink fails part way.
    """

    def __init__(self, config: Optional[EncoderConfig] = None):
        self.config = config or EncoderConfig()

    def encode(self, sink: BinaryIO, results: Iterable[Result]) -> int:
        """
        Encode every result to ``sink`` and return the number of bytes written.

        If ``results`` carries a terminal ``err`` once iteration ends (as a
        ResultIterator does) that error is raised after the output is flushed.
        """
        writer = _LineWriter(sink, self.config)
        pending_blank = False
        tables_written = 0
        for result in results:
            previous: Optional[Table] = None
            table_id = 0
            for table in result.tables:
                rows = iter(table.rows)
                first = next(rows, None)
                merge = first is not None and self._can_merge(previous, table)
                if pending_blank and not merge:
                    writer.blank()
                self._write_table(writer, result.name, table, table_id, first, rows, merge)
                pending_blank = True
                previous = table if first is not None else None
                table_id += 1
                tables_written += 1
        if pending_blank and self.config.terminate_last_table:
            writer.blank()

        err = getattr(results, "err", None)
        if err is not None:
            raise err
        logger.info(f"Encoded {tables_written} tables ({writer.bytes_written} bytes)")
        return writer.bytes_written

    def encode_error(self, sink: BinaryIO, error: Exception) -> int:
        """Write a query failure as an in-band error table."""
        writer = _LineWriter(sink, self.config)
        message = getattr(error, "message", None) or str(error)
        reference = getattr(error, "reference", "") if isinstance(error, StreamedQueryError) else ""
        if not self.config.no_header:
            annotations = {
                ANNOTATION_DATATYPE: [DataType.STRING.value] * 2,
                ANNOTATION_GROUP: ["true", "true"],
                ANNOTATION_DEFAULT: ["", ""],
            }
            for kind in self._annotations():
                writer.row([COMMENT_PREFIX + kind] + annotations[kind])
            writer.row([""] + ERROR_LABELS)
        writer.row(["", message, reference])
        if self.config.terminate_last_table:
            writer.blank()
        return writer.bytes_written

    def _annotations(self) -> List[str]:
        return [a for a in ANNOTATIONS if a in self.config.annotations]

    def _can_merge(self, previous: Optional[Table], table: Table) -> bool:
        # previous is None at the start of a result and after an empty table
        return self.config.merge_tables and previous is not None and previous.columns == table.columns

    def _write_table(self, writer: _LineWriter, result_name: str, table: Table, table_id: int,
                     first: Optional[Row], rows: Iterator[Row], merged: bool) -> None:
        check_columns(table.columns)
        empty = first is None
        id_in_rows = self.config.merge_tables and not empty
        if not merged and not self.config.no_header:
            self._write_header(writer, result_name, table, table_id, id_in_rows, empty)
        if empty:
            return

        columns: List[Column] = table.columns
        group_indices = table.group_indices()
        id_cell = str(table_id) if id_in_rows else ""
        for row in itertools.chain([first], rows):
            check_row(table, row, group_indices)
            writer.row(["", "", id_cell] + self._format_row(columns, row))

    def _write_header(self, writer: _LineWriter, result_name: str, table: Table,
                      table_id: int, id_in_rows: bool, empty: bool) -> None:
        columns = table.columns
        defaults = [""] * len(columns)
        if empty:
            # Group key of an empty table can only travel in #default
            for i, value in zip(table.group_indices(), table.key.values):
                defaults[i] = self._format_cell(columns[i], value)
        annotations = {
            ANNOTATION_DATATYPE: [DataType.STRING.value, DataType.LONG.value]
                                 + [c.data_type.value for c in columns],
            ANNOTATION_GROUP: ["false", "false"] + ["true" if c.group else "false" for c in columns],
            ANNOTATION_DEFAULT: [result_name, "" if id_in_rows else str(table_id)] + defaults,
        }
        for kind in self._annotations():
            writer.row([COMMENT_PREFIX + kind] + annotations[kind])
        writer.row(["", RESULT_LABEL, TABLE_LABEL] + [c.label for c in columns])

    def _format_row(self, columns: List[Column], row) -> List[str]:
        return [self._format_cell(c, v) for c, v in zip(columns, row)]

    def _format_cell(self, column: Column, value) -> str:
        try:
            return format_value(column.data_type, value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"column {column.label!r}: {e}") from e
